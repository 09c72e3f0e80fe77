"""Turn playback loop driving the combat engine across a round.

This module handles:
- Replaying two revealed 10-move plans turn by turn
- Stun carry-over (a stunned fighter's effective move is "stunned")
- Early stop on knockout and the turn-limit decision on health
- Applying a finished round to the match tallies
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

from veilbrawl.constants import MAX_HEALTH, MAX_TURNS_PER_ROUND, PLAN_LENGTH
from veilbrawl.models.combat import CombatState, FighterState, TurnOutcome
from veilbrawl.models.match import Match
from veilbrawl.services.combat_engine import TurnContext, check_match_end, resolve_turn
from veilbrawl.services.surge import (
    NEUTRAL_MODIFIERS,
    SurgeModifiers,
    calculate_surge_effects,
    compute_stun_flags,
)

logger = logging.getLogger(__name__)

TurnCallback = Callable[[int, TurnOutcome], Awaitable[None]]


@dataclass
class PlaybackResult:
    """Outcome of a fully played round."""

    turns: List[TurnOutcome] = field(default_factory=list)
    winner: Optional[str] = None  # "player1" | "player2" | None for a draw
    ended_by: str = "turn_limit"  # knockout | turn_limit
    state: Optional[CombatState] = None

    @property
    def is_draw(self) -> bool:
        return self.winner is None

    @property
    def player1_stunned_next(self) -> bool:
        return bool(self.state and self.state.player1_stunned)

    @property
    def player2_stunned_next(self) -> bool:
        return bool(self.state and self.state.player2_stunned)


def _validate_plan(plan: Sequence[str]) -> None:
    if len(plan) != PLAN_LENGTH:
        raise ValueError(f"Move plan must contain exactly {PLAN_LENGTH} moves")


async def play_round(
    plan1: Sequence[str],
    plan2: Sequence[str],
    state: CombatState,
    mods1: SurgeModifiers = NEUTRAL_MODIFIERS,
    mods2: SurgeModifiers = NEUTRAL_MODIFIERS,
    match_id: str = "",
    player1_address: str = "player1",
    player2_address: str = "player2",
    on_turn: Optional[TurnCallback] = None,
) -> PlaybackResult:
    """
    Play up to 10 turns of a round from two revealed plans.

    Args:
        plan1: Player 1's 10-move plan
        plan2: Player 2's 10-move plan
        state: Starting state, including stun flags carried into this round
        mods1: Player 1's surge modifiers (fixed for the round)
        mods2: Player 2's surge modifiers
        match_id: Match id, seeds dodge rolls
        player1_address: Player 1 identity, seeds dodge rolls
        player2_address: Player 2 identity
        on_turn: Awaited after every turn, used to persist the outcome

    Returns:
        PlaybackResult with all turn outcomes and the round winner
    """
    _validate_plan(plan1)
    _validate_plan(plan2)

    result = PlaybackResult(state=state)
    for turn_number in range(1, MAX_TURNS_PER_ROUND + 1):
        state.turn_number = turn_number
        move1 = "stunned" if state.player1_stunned else plan1[turn_number - 1]
        move2 = "stunned" if state.player2_stunned else plan2[turn_number - 1]

        outcome = resolve_turn(
            move1,
            move2,
            state.player1,
            state.player2,
            mods1,
            mods2,
            TurnContext(match_id, state.round_number, turn_number, player1_address, player2_address),
        )
        result.turns.append(outcome)
        if on_turn is not None:
            await on_turn(turn_number, outcome)

        state.player1 = FighterState(outcome.player1_health, outcome.player1_energy, outcome.player1_guard)
        state.player2 = FighterState(outcome.player2_health, outcome.player2_energy, outcome.player2_guard)
        state.player1_stunned = outcome.player1_is_stunned_next
        state.player2_stunned = outcome.player2_is_stunned_next

        if outcome.is_knockout:
            result.winner = outcome.winner
            result.ended_by = "knockout"
            logger.debug("Round %s ended by knockout on turn %s", state.round_number, turn_number)
            return result

    # Turn limit: higher remaining health share takes the round
    pct1 = state.player1.health / MAX_HEALTH
    pct2 = state.player2.health / MAX_HEALTH
    if pct1 > pct2:
        result.winner = "player1"
    elif pct2 > pct1:
        result.winner = "player2"
    return result


async def play_match_round(
    match: Match,
    round_number: int,
    plan1: Sequence[str],
    plan2: Sequence[str],
    surge1: Optional[str],
    surge2: Optional[str],
    on_turn: Optional[TurnCallback] = None,
) -> PlaybackResult:
    """Play a round for a match: fresh meters, carried stuns and round surges."""
    mods1, mods2 = calculate_surge_effects(surge1, surge2)
    surge_stun1, surge_stun2 = compute_stun_flags(surge1, surge2)
    state = CombatState.fresh(
        round_number,
        player1_stunned=match.player1_stunned_next or surge_stun1,
        player2_stunned=match.player2_stunned_next or surge_stun2,
    )
    return await play_round(
        plan1,
        plan2,
        state,
        mods1,
        mods2,
        match_id=match.id,
        player1_address=match.player1_address,
        player2_address=match.player2_address,
        on_turn=on_turn,
    )


def apply_round_result(match: Match, round_number: int, result: PlaybackResult, now: float) -> bool:
    """
    Apply a finished round to the match.

    Awards the round (draws award nothing), carries stun flags into the next
    round and completes the match once a side reaches the format threshold.
    The next round's move timer starts at now.

    Returns:
        True if the match is over
    """
    if result.winner == "player1":
        match.player1_rounds_won += 1
    elif result.winner == "player2":
        match.player2_rounds_won += 1

    match.player1_stunned_next = result.player1_stunned_next
    match.player2_stunned_next = result.player2_stunned_next

    match_over, winner = check_match_end(match.player1_rounds_won, match.player2_rounds_won, match.rounds_to_win)
    if match_over:
        match.status = "completed"
        match.winner_address = match.address_of(winner)
        match.ended_reason = "rounds"
    else:
        match.current_round = round_number + 1
        match.round_started_at = now
    return match_over
