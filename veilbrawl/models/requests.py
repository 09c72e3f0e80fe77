"""Pydantic request models for the VeilBrawl API."""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from veilbrawl.constants import MatchFormat


class ApiModel(BaseModel):
    """Base model accepting camelCase or snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateMatchRequest(ApiModel):
    """Request to create a match between two players."""
    player1_address: str = Field(min_length=1)
    player2_address: str = Field(min_length=1)
    format: MatchFormat = "best_of_3"
    match_id: Optional[str] = None


class ForfeitRequest(ApiModel):
    """Concede a match on behalf of one of its players."""
    address: str = Field(min_length=1)


class CommitRoundPlanRequest(ApiModel):
    """Commit a hidden round plan with its proof."""
    address: str = Field(min_length=1)
    round_number: int = Field(ge=1)
    turn_number: int = Field(default=1, ge=1)
    commitment: str = Field(min_length=1)
    proof: str = Field(min_length=1)
    public_inputs: Any = None
    transcript_hash: Optional[str] = None
    encrypted_plan: str = Field(min_length=1)


class RevealRoundPlanRequest(ApiModel):
    """Reveal a committed round plan and request resolution."""
    address: str = Field(min_length=1)
    round_number: int = Field(ge=1)
    turn_number: int = Field(default=1, ge=1)
    move: str
    move_plan: List[str]
    surge_card_id: Optional[str] = None
    proof: str = Field(min_length=1)
    public_inputs: Any = None
    transcript_hash: Optional[str] = None
    expected_winner: Optional[str] = None
