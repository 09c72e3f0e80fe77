"""Match lifecycle router for VeilBrawl."""

from fastapi import APIRouter, Depends

from veilbrawl.dependencies import get_protocol
from veilbrawl.models.match import Match
from veilbrawl.models.requests import CreateMatchRequest, ForfeitRequest
from veilbrawl.models.responses import MatchResponse
from veilbrawl.services.round_protocol import RoundProtocol

router = APIRouter(prefix="/matches", tags=["matches"])


def _to_response(match: Match) -> MatchResponse:
    return MatchResponse(
        id=match.id,
        player1_address=match.player1_address,
        player2_address=match.player2_address,
        format=match.format,
        status=match.status,
        player1_rounds_won=match.player1_rounds_won,
        player2_rounds_won=match.player2_rounds_won,
        current_round=match.current_round,
        winner_address=match.winner_address,
        ended_reason=match.ended_reason,
    )


@router.post("", response_model=MatchResponse)
async def create_match(body: CreateMatchRequest, protocol: RoundProtocol = Depends(get_protocol)):
    """Create a match in character select."""
    match = await protocol.matches.create(
        body.player1_address, body.player2_address, body.format, match_id=body.match_id
    )
    return _to_response(match)


@router.post("/{match_id}/start", response_model=MatchResponse)
async def start_match(match_id: str, protocol: RoundProtocol = Depends(get_protocol)):
    """Leave character select and open round 1."""
    match = await protocol.matches.start(match_id)
    return _to_response(match)


@router.get("/{match_id}", response_model=MatchResponse)
async def get_match(match_id: str, protocol: RoundProtocol = Depends(get_protocol)):
    match = await protocol.matches.require(match_id)
    return _to_response(match)


@router.post("/{match_id}/forfeit", response_model=MatchResponse)
async def forfeit_match(match_id: str, body: ForfeitRequest, protocol: RoundProtocol = Depends(get_protocol)):
    """Concede the match; the opponent wins immediately."""
    match = await protocol.forfeit(match_id, body.address)
    return _to_response(match)
