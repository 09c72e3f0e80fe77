"""Deterministic combat resolution for a single turn.

resolve_turn is pure: identical inputs always produce identical outputs,
narrative included. Dodge rolls are seeded from the TurnContext, so they are
part of the inputs too.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from veilbrawl.constants import (
    BASE_DAMAGE,
    BEATS,
    ENERGY_COST,
    ENERGY_REGEN,
    GUARD_BREAK_MULTIPLIER,
    GUARD_BUILD_ON_BLOCK,
    GUARD_DAMAGE,
    GUARD_THRESHOLD,
    MAX_ENERGY,
    MAX_HEALTH,
    PUNCH_CHIP_VS_BLOCK,
    SPECIAL_VS_BLOCK,
)
from veilbrawl.models.combat import FighterState, TurnOutcome
from veilbrawl.services.surge import NEUTRAL_MODIFIERS, SurgeModifiers, dodge_roll


@dataclass(frozen=True)
class TurnContext:
    """Identifies the turn; seeds deterministic dodge rolls."""

    match_id: str
    round_number: int
    turn_number: int
    player1_address: str
    player2_address: str


@dataclass
class _Strike:
    damage: int = 0
    raw: int = 0  # damage before block/defence reductions
    outcome: Optional[str] = None
    blocked: bool = False
    shatters: bool = False
    attacker_stunned_next: bool = False


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def move_cost(move: str, mods: SurgeModifiers) -> int:
    cost = ENERGY_COST[move]
    if move == "special":
        cost += mods.special_extra_cost
    return cost


def effective_move(move: str, energy: int, mods: SurgeModifiers = NEUTRAL_MODIFIERS) -> str:
    """Downgrade a move the fighter cannot afford to a punch."""
    if move not in ENERGY_COST:
        raise ValueError(f"Invalid move: {move}")
    if move == "stunned":
        return move
    return move if energy >= move_cost(move, mods) else "punch"


def _strike(
    attack: str,
    defend: str,
    att_mods: SurgeModifiers,
    def_mods: SurgeModifiers,
    def_blocking: bool,
    def_guard_broken: bool,
    def_dodges: bool,
) -> _Strike:
    result = _Strike()
    if attack in ("stunned", "block"):
        return result

    block_factor = 1.0
    counter = False
    if defend == "block":
        if not def_blocking:
            result.shatters = True
        elif BEATS[attack] == "block" or att_mods.bypass_block:
            result.shatters = True
            counter = BEATS[attack] == "block"
        else:
            result.blocked = True
            block_factor = SPECIAL_VS_BLOCK if attack == "special" else PUNCH_CHIP_VS_BLOCK
    elif defend in BEATS:
        if BEATS[attack] == defend and not def_mods.invisible_move:
            counter = True
        elif BEATS[defend] == attack and not att_mods.invisible_move:
            result.outcome = "missed"
            result.attacker_stunned_next = True
            return result

    offence = att_mods.damage_multiplier
    if attack in ("punch", "kick"):
        offence *= att_mods.punch_kick_multiplier
        if att_mods.double_hit:
            offence *= 2
    if attack == "special":
        offence *= att_mods.special_multiplier
    if counter:
        offence *= att_mods.counter_multiplier

    base = BASE_DAMAGE[attack]
    result.raw = round_half_up(base * offence)

    if def_dodges:
        result.outcome = "missed"
        return result

    multiplier = offence * block_factor
    if def_guard_broken:
        multiplier *= GUARD_BREAK_MULTIPLIER
    multiplier *= max(0.0, 1.0 - def_mods.damage_reduction)
    result.damage = max(0, round_half_up(base * multiplier))
    result.outcome = "blocked" if result.blocked else "hit"
    return result


def _player_outcome(move: str, own: _Strike, incoming: _Strike, reflected: int) -> str:
    if move == "stunned":
        return "stunned"
    if move == "block":
        if incoming.shatters:
            return "shattered"
        if reflected > 0:
            return "reflected"
        return "guarding"
    return own.outcome or "missed"


def _next_guard(guard: int, move: str, blocking: bool, incoming: _Strike,
                opponent_move: str, guard_broken: bool) -> int:
    if guard_broken:
        return 0
    if incoming.shatters and move == "block":
        guard -= GUARD_DAMAGE[opponent_move]
    elif blocking:
        guard += GUARD_BUILD_ON_BLOCK
        if incoming.blocked:
            guard -= GUARD_DAMAGE[opponent_move]
    return _clamp(guard, 0, GUARD_THRESHOLD)


def _describe(label: str, move: str, outcome: str, dealt: int, reflected: int) -> str:
    if outcome == "stunned":
        return f"{label} is stunned"
    if outcome == "hit":
        return f"{label} lands a {move} for {dealt}"
    if outcome == "blocked":
        return f"{label}'s {move} is blocked for {dealt} chip damage"
    if outcome == "missed":
        return f"{label}'s {move} misses"
    if outcome == "reflected":
        return f"{label} reflects {reflected} damage"
    if outcome == "shattered":
        return f"{label}'s guard is shattered"
    return f"{label} holds guard"


def resolve_turn(
    move1: str,
    move2: str,
    player1: FighterState,
    player2: FighterState,
    mods1: SurgeModifiers = NEUTRAL_MODIFIERS,
    mods2: SurgeModifiers = NEUTRAL_MODIFIERS,
    context: Optional[TurnContext] = None,
) -> TurnOutcome:
    """
    Resolve one turn between two fighters.

    Args:
        move1: Player 1's move (punch/kick/block/special/stunned)
        move2: Player 2's move
        player1: Player 1's meters before the turn
        player2: Player 2's meters before the turn
        mods1: Player 1's surge modifiers for this round
        mods2: Player 2's surge modifiers for this round
        context: Turn identity; required for dodge rolls

    Returns:
        TurnOutcome with the resulting meters, outcomes and stun flags
    """
    m1 = effective_move(move1, player1.energy, mods1)
    m2 = effective_move(move2, player2.energy, mods2)

    blocking1 = m1 == "block" and not mods1.block_disabled
    blocking2 = m2 == "block" and not mods2.block_disabled
    guard_broken1 = not blocking1 and player1.guard >= GUARD_THRESHOLD
    guard_broken2 = not blocking2 and player2.guard >= GUARD_THRESHOLD

    dodge1 = dodge2 = False
    if context is not None:
        if mods1.dodge_chance > 0:
            roll = dodge_roll(context.match_id, context.round_number, context.turn_number,
                              context.player1_address)
            dodge1 = roll < mods1.dodge_chance
        if mods2.dodge_chance > 0:
            roll = dodge_roll(context.match_id, context.round_number, context.turn_number,
                              context.player2_address)
            dodge2 = roll < mods2.dodge_chance

    s12 = _strike(m1, m2, mods1, mods2, blocking2, guard_broken2, dodge2)
    s21 = _strike(m2, m1, mods2, mods1, blocking1, guard_broken1, dodge1)

    # Reflection bounces part of a blocked attack back at the attacker
    reflect_by1 = math.floor(s21.raw * mods1.block_reflect_percent) if blocking1 and s21.blocked else 0
    reflect_by2 = math.floor(s12.raw * mods2.block_reflect_percent) if blocking2 and s12.blocked else 0

    health1 = max(0, player1.health - s21.damage - reflect_by2)
    health2 = max(0, player2.health - s12.damage - reflect_by1)
    if health1 > 0:
        health1 += math.floor(s12.damage * mods1.lifesteal_percent) + mods1.hp_regen_per_turn
    if health2 > 0:
        health2 += math.floor(s21.damage * mods2.lifesteal_percent) + mods2.hp_regen_per_turn
    health1 = _clamp(health1, 0, MAX_HEALTH)
    health2 = _clamp(health2, 0, MAX_HEALTH)

    energy1 = _clamp(max(0, player1.energy - move_cost(m1, mods1)) + ENERGY_REGEN + mods1.energy_regen_bonus,
                     0, MAX_ENERGY)
    energy2 = _clamp(max(0, player2.energy - move_cost(m2, mods2)) + ENERGY_REGEN + mods2.energy_regen_bonus,
                     0, MAX_ENERGY)
    energy1 -= math.floor(energy1 * mods1.energy_burn_percent)
    energy2 -= math.floor(energy2 * mods2.energy_burn_percent)
    if s12.damage > 0 and mods1.energy_steal_percent > 0:
        stolen = math.floor(energy2 * mods1.energy_steal_percent)
        energy2 -= stolen
        energy1 += stolen
    if s21.damage > 0 and mods2.energy_steal_percent > 0:
        stolen = math.floor(energy1 * mods2.energy_steal_percent)
        energy1 -= stolen
        energy2 += stolen
    energy1 = _clamp(energy1, 0, MAX_ENERGY)
    energy2 = _clamp(energy2, 0, MAX_ENERGY)

    guard1 = _next_guard(player1.guard, m1, blocking1, s21, m2, guard_broken1)
    guard2 = _next_guard(player2.guard, m2, blocking2, s12, m1, guard_broken2)

    outcome1 = _player_outcome(m1, s12, s21, reflect_by1)
    outcome2 = _player_outcome(m2, s21, s12, reflect_by2)
    dealt1 = s12.damage + reflect_by1
    dealt2 = s21.damage + reflect_by2

    is_knockout = health1 <= 0 or health2 <= 0
    winner = None
    if is_knockout and not (health1 <= 0 and health2 <= 0):
        winner = "player1" if health2 <= 0 else "player2"

    narrative = "; ".join((
        _describe("Player 1", m1, outcome1, s12.damage, reflect_by1),
        _describe("Player 2", m2, outcome2, s21.damage, reflect_by2),
    ))
    if guard_broken1:
        narrative += "; Player 1's guard breaks"
    if guard_broken2:
        narrative += "; Player 2's guard breaks"
    if is_knockout:
        narrative += "; Double KO!" if winner is None else f"; {'Player 1' if winner == 'player1' else 'Player 2'} wins by KO!"

    return TurnOutcome(
        player1_move=m1,
        player2_move=m2,
        player1_outcome=outcome1,
        player2_outcome=outcome2,
        player1_damage_dealt=dealt1,
        player2_damage_dealt=dealt2,
        player1_health=health1,
        player2_health=health2,
        player1_energy=energy1,
        player2_energy=energy2,
        player1_guard=guard1,
        player2_guard=guard2,
        player1_is_stunned_next=s12.attacker_stunned_next or guard_broken1,
        player2_is_stunned_next=s21.attacker_stunned_next or guard_broken2,
        is_knockout=is_knockout,
        winner=winner,
        narrative=narrative,
    )


def check_match_end(player1_rounds_won: int, player2_rounds_won: int, rounds_to_win: int) -> Tuple[bool, Optional[str]]:
    """Return (match_over, winner_role) for the current round tallies."""
    if player1_rounds_won >= rounds_to_win:
        return True, "player1"
    if player2_rounds_won >= rounds_to_win:
        return True, "player2"
    return False, None
