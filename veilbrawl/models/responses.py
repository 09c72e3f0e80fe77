"""Pydantic response models for the VeilBrawl API."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from veilbrawl.models.combat import TurnOutcome


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(ApiModel):
    """Health check response."""
    status: str
    env: str
    version: str
    zk_backend: str


class MatchResponse(ApiModel):
    """Public view of a match."""
    id: str
    player1_address: str
    player2_address: str
    format: str
    status: str
    player1_rounds_won: int
    player2_rounds_won: int
    current_round: int
    winner_address: Optional[str] = None
    ended_reason: Optional[str] = None


class ZkVerification(ApiModel):
    backend: str


class CommitResponse(ApiModel):
    """Result of committing a round plan."""
    success: bool = True
    player1_committed: bool
    player2_committed: bool
    both_committed: bool
    zk_verification: ZkVerification


class AlreadyResolved(ApiModel):
    resolved_round_id: str


class TurnResult(ApiModel):
    """One played turn."""
    turn_number: int
    player1_move: str
    player2_move: str
    player1_outcome: str
    player2_outcome: str
    player1_damage_dealt: int
    player2_damage_dealt: int
    player1_health: int
    player2_health: int
    player1_energy: int
    player2_energy: int
    player1_guard: int
    player2_guard: int
    player1_is_stunned_next: bool
    player2_is_stunned_next: bool
    is_knockout: bool
    winner: Optional[str] = None
    narrative: str

    @classmethod
    def from_outcome(cls, turn_number: int, outcome: TurnOutcome) -> "TurnResult":
        return cls(turn_number=turn_number, **outcome.to_dict())


class RoundResolution(ApiModel):
    """Terminal result of a resolved round."""
    round_id: str
    round_number: int
    winner_address: Optional[str] = None
    is_draw: bool
    ended_by: str
    turns: List[TurnResult]
    player1_rounds_won: int
    player2_rounds_won: int
    player1_is_stunned_next: bool
    player2_is_stunned_next: bool
    match_over: bool
    match_winner_address: Optional[str] = None
    expected_winner_matched: Optional[bool] = None


class RevealResponse(ApiModel):
    """Result of a reveal: waiting, already resolved, the resolution, or a match that already ended."""
    success: bool = True
    awaiting_opponent: bool = False
    awaiting_resolver: bool = False
    reason: Optional[str] = None
    player1_revealed: Optional[bool] = None
    player2_revealed: Optional[bool] = None
    already_resolved: Optional[AlreadyResolved] = None
    resolution: Optional[RoundResolution] = None
    zk_verification: Optional[ZkVerification] = None
    match_over: Optional[bool] = None
    match_winner_address: Optional[str] = None


class RoundStatusResponse(ApiModel):
    """Read-only view of a round's protocol state."""
    match_id: str
    round_number: int
    state: str
    player1_committed: bool
    player2_committed: bool
    player1_revealed: bool
    player2_revealed: bool
    resolved_round_id: Optional[str] = None
    deadline_at: float
    surge_cards: List[str]
