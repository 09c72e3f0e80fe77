"""Match and round-commit records for VeilBrawl."""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from veilbrawl.constants import AUTO_STUNNED_PREFIX, AUTO_TIMEOUT_PREFIX, ROUNDS_TO_WIN


@dataclass
class Match:
    """A two-player match spanning several rounds."""

    id: str
    player1_address: str
    player2_address: str
    format: str = "best_of_3"
    status: str = "character_select"  # character_select | in_progress | completed
    player1_rounds_won: int = 0
    player2_rounds_won: int = 0
    current_round: int = 1
    round_started_at: float = field(default_factory=time.time)
    player1_stunned_next: bool = False
    player2_stunned_next: bool = False
    winner_address: Optional[str] = None
    ended_reason: Optional[str] = None  # rounds | forfeit

    @property
    def rounds_to_win(self) -> int:
        return ROUNDS_TO_WIN[self.format]

    def role_of(self, address: str) -> Optional[str]:
        """Return "player1"/"player2" for a participant, None otherwise."""
        addr = address.lower()
        if addr == self.player1_address.lower():
            return "player1"
        if addr == self.player2_address.lower():
            return "player2"
        return None

    def address_of(self, role: str) -> str:
        return self.player1_address if role == "player1" else self.player2_address

    @staticmethod
    def opponent_of(role: str) -> str:
        return "player2" if role == "player1" else "player1"

    def is_stunned(self, role: str) -> bool:
        return self.player1_stunned_next if role == "player1" else self.player2_stunned_next

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Match":
        names = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in row.items() if k in names})


@dataclass
class RoundCommit:
    """One player's commitment for one round.

    A row with resolved_round_id set is immutable.
    """

    match_id: str
    round_number: int
    player_address: str
    commitment: str
    encrypted_plan: Optional[str] = None
    transcript_hash: Optional[str] = None
    proof_public_inputs: Any = None
    commit_turn: int = 1
    verified_at: Optional[float] = None
    revealed_at: Optional[float] = None
    revealed_move: Optional[str] = None
    revealed_plan: Optional[List[str]] = None
    revealed_surge: Optional[str] = None
    onchain_commit_tx_hash: Optional[str] = None
    resolved_round_id: Optional[str] = None
    resolved_at: Optional[float] = None
    id: Optional[str] = None

    @property
    def is_synthetic(self) -> bool:
        """True for commits the server injected (stun or timeout)."""
        return self.commitment.startswith((f"{AUTO_STUNNED_PREFIX}:", f"{AUTO_TIMEOUT_PREFIX}:"))

    @property
    def is_revealed(self) -> bool:
        return self.revealed_at is not None

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        if row["id"] is None:
            row.pop("id")
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RoundCommit":
        names = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in row.items() if k in names})
