import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dotenv import load_dotenv

# --- .env support ---
load_dotenv()

from veilbrawl.config import settings
from veilbrawl.errors import ProtocolError

# Import routers
from veilbrawl.routers import health, matches, rounds, websocket

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("veilbrawl")

# ------------------------------------------------------------------------------
# FastAPI
# ------------------------------------------------------------------------------
app = FastAPI(title="VeilBrawl Backend", version=settings.app_version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProtocolError)
async def protocol_error_handler(request: Request, exc: ProtocolError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    body = {"success": False, "error": "invalid_request", "message": "Request validation failed",
            "details": {"errors": errors}}
    return JSONResponse(status_code=400, content=body)


# ------------------------------------------------------------------------------
# Include routers
# ------------------------------------------------------------------------------
app.include_router(health.router)
app.include_router(matches.router)
app.include_router(rounds.router)
app.include_router(websocket.router)
