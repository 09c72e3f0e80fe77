"""Combat state and turn outcome models."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from veilbrawl.constants import MAX_ENERGY, MAX_HEALTH


@dataclass
class FighterState:
    """Per-fighter meters inside a round."""

    health: int = MAX_HEALTH
    energy: int = MAX_ENERGY
    guard: int = 0


@dataclass
class CombatState:
    """Carried state owned by the resolver of a round."""

    player1: FighterState
    player2: FighterState
    player1_stunned: bool = False
    player2_stunned: bool = False
    round_number: int = 1
    turn_number: int = 1

    @classmethod
    def fresh(cls, round_number: int, player1_stunned: bool = False,
              player2_stunned: bool = False) -> "CombatState":
        """Full health/energy, zero guard; stun flags carry over."""
        return cls(
            player1=FighterState(),
            player2=FighterState(),
            player1_stunned=player1_stunned,
            player2_stunned=player2_stunned,
            round_number=round_number,
            turn_number=1,
        )


@dataclass(frozen=True)
class TurnOutcome:
    """Result of resolving a single turn."""

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
    winner: Optional[str]  # "player1" | "player2" | None
    narrative: str

    @property
    def round_over(self) -> bool:
        return self.is_knockout

    @property
    def is_draw(self) -> bool:
        return self.is_knockout and self.winner is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
