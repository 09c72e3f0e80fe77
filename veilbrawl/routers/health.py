"""Health check router for VeilBrawl."""

from fastapi import APIRouter, Depends

from veilbrawl.config import settings
from veilbrawl.dependencies import get_protocol
from veilbrawl.models.responses import HealthResponse
from veilbrawl.services.round_protocol import RoundProtocol

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(protocol: RoundProtocol = Depends(get_protocol)):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        env=settings.app_env,
        version=settings.app_version,
        zk_backend=protocol.oracle.backend,
    )
