"""Private round commit/reveal router for VeilBrawl."""

from fastapi import APIRouter, Depends, Path

from veilbrawl.dependencies import get_protocol
from veilbrawl.models.requests import CommitRoundPlanRequest, RevealRoundPlanRequest
from veilbrawl.models.responses import CommitResponse, RevealResponse, RoundStatusResponse
from veilbrawl.services.round_protocol import RoundProtocol

router = APIRouter(prefix="/matches/{match_id}/rounds", tags=["rounds"])


@router.post("/commit", response_model=CommitResponse)
async def commit_round_plan(
    match_id: str,
    body: CommitRoundPlanRequest,
    protocol: RoundProtocol = Depends(get_protocol),
):
    """Commit a hidden 10-move plan with its proof.

    Returns whether each player has committed for the round.
    """
    return await protocol.commit(match_id, body)


@router.post("/reveal", response_model=RevealResponse, response_model_exclude_none=True)
async def reveal_round_plan(
    match_id: str,
    body: RevealRoundPlanRequest,
    protocol: RoundProtocol = Depends(get_protocol),
):
    """Reveal a committed plan; resolves the round once both plans are revealed.

    Returns one of: awaitingOpponent, awaitingResolver, alreadyResolved, resolution
    """
    return await protocol.reveal(match_id, body)


@router.get("/{round_number}/status", response_model=RoundStatusResponse)
async def round_status(
    match_id: str,
    round_number: int = Path(..., ge=1),
    protocol: RoundProtocol = Depends(get_protocol),
):
    """Poll a round's protocol state. Read-only."""
    return await protocol.status(match_id, round_number)


@router.post("/{round_number}/timeout", response_model=RoundStatusResponse)
async def round_timeout(
    match_id: str,
    round_number: int = Path(..., ge=1),
    protocol: RoundProtocol = Depends(get_protocol),
):
    """Apply forced stunned commits once the move deadline has passed."""
    return await protocol.timeout(match_id, round_number)
