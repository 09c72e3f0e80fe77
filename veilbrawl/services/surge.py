"""Power surge cards and the per-round modifiers they produce.

This module handles:
- The surge card table (effects per card id)
- Deriving each side's SurgeModifiers once per round from both selections
- The shared deterministic three-card deck offered each round
- Deterministic dodge rolls seeded from match/round/turn/player
"""

import hashlib
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from veilbrawl.constants import POWER_SURGE_CARD_IDS, SURGE_DECK_SIZE


@dataclass(frozen=True)
class SurgeModifiers:
    """Modifiers applied identically to every turn of a round."""

    damage_multiplier: float = 1.0
    punch_kick_multiplier: float = 1.0
    special_multiplier: float = 1.0
    counter_multiplier: float = 1.0
    damage_reduction: float = 0.0
    lifesteal_percent: float = 0.0
    energy_burn_percent: float = 0.0  # applied to this side's energy
    energy_steal_percent: float = 0.0
    energy_regen_bonus: int = 0
    hp_regen_per_turn: int = 0
    special_extra_cost: int = 0
    stun_opponent: bool = False
    block_disabled: bool = False  # this side's block is disabled
    block_reflect_percent: float = 0.0
    double_hit: bool = False  # punch and kick land twice
    bypass_block: bool = False
    dodge_chance: float = 0.0
    invisible_move: bool = False


NEUTRAL_MODIFIERS = SurgeModifiers()

# Effect tuples: (effect type, value)
SURGE_CARDS: Dict[str, Tuple[Tuple[str, float], ...]] = {
    "dag-overclock": (("damage_boost", 0.3),),
    "block-fortress": (("block_reflect", 0.5),),
    "tx-storm": (("damage_boost", 0.2), ("energy_regen", 10)),
    "mempool-congest": (("stun", 1),),
    "blue-set-heal": (("hp_regen", 15),),
    "orphan-smasher": (("counter_boost", 0.6),),
    "10bps-barrage": (("double_hit", 1),),
    "pruned-rage": (("block_disable", 1),),
    "sompi-shield": (("damage_reduction", 0.4),),
    "hash-hurricane": (("dodge", 0.3),),
    "ghost-dag": (("invisible_move", 1),),
    "finality-fist": (("special_boost", 0.8), ("special_cost", 20)),
    "bps-blitz": (("lifesteal", 0.4), ("energy_burn", 0.3)),
    "chainbreaker": (("bypass_block", 1),),
    "vaultbreaker": (("energy_steal", 0.25),),
}


def is_surge_card_id(value: object) -> bool:
    return isinstance(value, str) and value in SURGE_CARDS


def _apply_card(own: SurgeModifiers, opp: SurgeModifiers, card_id: str) -> Tuple[SurgeModifiers, SurgeModifiers]:
    for effect, value in SURGE_CARDS[card_id]:
        if effect == "damage_boost":
            own = replace(own, damage_multiplier=own.damage_multiplier + value)
        elif effect == "special_boost":
            own = replace(own, special_multiplier=own.special_multiplier + value)
        elif effect == "counter_boost":
            own = replace(own, counter_multiplier=own.counter_multiplier + value)
        elif effect == "damage_reduction":
            own = replace(own, damage_reduction=own.damage_reduction + value)
        elif effect == "lifesteal":
            own = replace(own, lifesteal_percent=own.lifesteal_percent + value)
        elif effect == "energy_burn":
            opp = replace(opp, energy_burn_percent=opp.energy_burn_percent + value)
        elif effect == "energy_steal":
            own = replace(own, energy_steal_percent=own.energy_steal_percent + value)
        elif effect == "energy_regen":
            own = replace(own, energy_regen_bonus=own.energy_regen_bonus + int(value))
        elif effect == "hp_regen":
            own = replace(own, hp_regen_per_turn=own.hp_regen_per_turn + int(value))
        elif effect == "special_cost":
            own = replace(own, special_extra_cost=own.special_extra_cost + int(value))
        elif effect == "stun":
            own = replace(own, stun_opponent=True)
        elif effect == "block_disable":
            opp = replace(opp, block_disabled=True)
        elif effect == "block_reflect":
            own = replace(own, block_reflect_percent=own.block_reflect_percent + value)
        elif effect == "double_hit":
            own = replace(own, double_hit=True)
        elif effect == "bypass_block":
            own = replace(own, bypass_block=True)
        elif effect == "dodge":
            own = replace(own, dodge_chance=own.dodge_chance + value)
        elif effect == "invisible_move":
            own = replace(own, invisible_move=True)
    return own, opp


def calculate_surge_effects(
    player1_card: Optional[str], player2_card: Optional[str]
) -> Tuple[SurgeModifiers, SurgeModifiers]:
    """
    Derive both sides' modifiers from their selected cards.

    Args:
        player1_card: Player 1's selected card id or None
        player2_card: Player 2's selected card id or None

    Returns:
        Tuple of (player1_modifiers, player2_modifiers)
    """
    p1, p2 = NEUTRAL_MODIFIERS, NEUTRAL_MODIFIERS
    if player1_card is not None:
        if not is_surge_card_id(player1_card):
            raise ValueError(f"Unknown surge card: {player1_card}")
        p1, p2 = _apply_card(p1, p2, player1_card)
    if player2_card is not None:
        if not is_surge_card_id(player2_card):
            raise ValueError(f"Unknown surge card: {player2_card}")
        p2, p1 = _apply_card(p2, p1, player2_card)
    return p1, p2


def compute_stun_flags(player1_card: Optional[str], player2_card: Optional[str]) -> Tuple[bool, bool]:
    """Return (player1_stunned, player2_stunned) for turn 1 of the round."""
    return player2_card == "mempool-congest", player1_card == "mempool-congest"


def draw_round_deck(match_id: str, round_number: int, count: int = SURGE_DECK_SIZE) -> List[str]:
    """
    Deterministically draw the shared surge cards offered for a round.

    Successive bytes of SHA-256("{match}|round:{n}|shared") pick indices from
    a shrinking pool, so both players see the same cards.
    """
    digest = hashlib.sha256(f"{match_id}|round:{round_number}|shared".encode("utf-8")).digest()
    pool = list(POWER_SURGE_CARD_IDS)
    picked: List[str] = []
    byte_index = 0
    while len(picked) < count and pool:
        b = digest[byte_index % len(digest)]
        byte_index += 1
        picked.append(pool.pop(b % len(pool)))
    return picked


def dodge_roll(match_id: str, round_number: int, turn_number: int, player_address: str) -> float:
    """Deterministic value in [0, 1) used for dodge checks."""
    seed = f"{match_id}|{round_number}|{turn_number}|{player_address.lower()}|dodge"
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / float(1 << 64)
