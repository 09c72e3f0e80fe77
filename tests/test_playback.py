"""Unit tests for the turn playback loop."""

import asyncio

import pytest

from veilbrawl.models.combat import CombatState
from veilbrawl.models.match import Match
from veilbrawl.services.playback import apply_round_result, play_match_round, play_round
from veilbrawl.services.surge import compute_stun_flags, draw_round_deck
from veilbrawl.constants import POWER_SURGE_CARD_IDS

NOW = 1_700_000_000.0


def run(coro):
    return asyncio.run(coro)


def make_match(format="best_of_3"):
    return Match(id="m-1", player1_address="GALICE", player2_address="GBOB",
                 format=format, status="in_progress")


class TestScenarioA:
    """Ten specials against ten punches with no surges and no prior stun."""

    def test_full_round(self):
        """Punch beats special; the special player is stunned every other turn."""
        result = run(play_round(["special"] * 10, ["punch"] * 10, CombatState.fresh(1)))
        assert len(result.turns) == 10
        assert result.winner == "player2"
        assert result.ended_by == "knockout"

        first = result.turns[0]
        assert first.player1_move == "special"
        assert first.player2_damage_dealt == 10
        assert first.player1_health == 90
        assert first.player1_is_stunned_next

        # Carried stun overrides the committed special on turn 2
        second = result.turns[1]
        assert second.player1_move == "stunned"
        assert second.player1_outcome == "stunned"
        assert second.player1_health == 80

        assert [t.player1_health for t in result.turns] == [90, 80, 70, 60, 50, 40, 30, 20, 10, 0]
        assert [t.player1_energy for t in result.turns] == [70, 90, 60, 80, 50, 70, 40, 60, 30, 50]


class TestStunCarryOver:
    """Test stun flags flowing between turns."""

    def test_initial_stun_forces_stunned_move(self):
        """A stun carried into the round replaces turn 1's committed move."""
        state = CombatState.fresh(1, player2_stunned=True)
        result = run(play_round(["punch"] * 10, ["kick"] * 10, state))
        assert result.turns[0].player2_move == "stunned"
        assert result.turns[0].player2_health == 90
        assert result.turns[1].player2_move == "kick"

    def test_stun_comes_from_engine_output(self):
        """Whenever a turn sets the stun flag, the next effective move is stunned."""
        result = run(play_round(["special", "kick"] * 5, ["punch", "special"] * 5, CombatState.fresh(1)))
        for prev, nxt in zip(result.turns, result.turns[1:]):
            if prev.player1_is_stunned_next:
                assert nxt.player1_move == "stunned"
            if prev.player2_is_stunned_next:
                assert nxt.player2_move == "stunned"

    def test_mempool_congest_stuns_turn_one(self):
        """mempool-congest stuns the opponent on the first turn."""
        assert compute_stun_flags("mempool-congest", None) == (False, True)
        result = run(play_match_round(make_match(), 1, ["punch"] * 10, ["punch"] * 10, "mempool-congest", None))
        assert result.turns[0].player2_move == "stunned"
        assert result.turns[0].player1_health == 100
        assert result.turns[1].player2_move == "punch"


class TestTermination:
    """Test when playback stops."""

    def test_turn_limit_draw(self):
        """Ten turns without damage end in a drawn round."""
        result = run(play_round(["block"] * 10, ["block"] * 10, CombatState.fresh(1)))
        assert len(result.turns) == 10
        assert result.ended_by == "turn_limit"
        assert result.is_draw

    def test_turn_limit_health_decides(self):
        """Without a knockout the higher health share takes the round."""
        result = run(play_round(["block"] * 10, ["punch"] * 10, CombatState.fresh(1)))
        assert result.ended_by == "turn_limit"
        assert result.turns[-1].player1_health == 80
        assert result.winner == "player2"

    def test_stops_at_knockout(self):
        """No turns are played after a knockout."""
        state = CombatState.fresh(1)
        state.player2.health = 20
        result = run(play_round(["kick"] * 10, ["punch"] * 10, state))
        assert len(result.turns) == 2
        assert result.winner == "player1"

    def test_rejects_short_plan(self):
        """Plans must have ten moves."""
        with pytest.raises(ValueError):
            run(play_round(["punch"] * 9, ["punch"] * 10, CombatState.fresh(1)))

    def test_turn_callback(self):
        """on_turn is awaited once per played turn in order."""
        seen = []

        async def on_turn(n, outcome):
            seen.append(n)

        run(play_round(["punch"] * 10, ["punch"] * 10, CombatState.fresh(1), on_turn=on_turn))
        assert seen == list(range(1, 11))


class TestApplyRoundResult:
    """Test round tallies and match completion."""

    def test_best_of_three(self):
        """Two round wins complete a best-of-3 match."""
        match = make_match()
        result = run(play_round(["punch"] * 10, ["special"] * 10, CombatState.fresh(1)))
        assert apply_round_result(match, 1, result, NOW) is False
        assert match.player1_rounds_won == 1
        assert match.current_round == 2
        assert match.round_started_at == NOW
        assert apply_round_result(match, 2, result, NOW) is True
        assert match.status == "completed"
        assert match.winner_address == "GALICE"

    def test_best_of_five_needs_three(self):
        """Best of 5 keeps going after two wins."""
        match = make_match("best_of_5")
        result = run(play_round(["punch"] * 10, ["special"] * 10, CombatState.fresh(1)))
        apply_round_result(match, 1, result, NOW)
        assert apply_round_result(match, 2, result, NOW) is False
        assert apply_round_result(match, 3, result, NOW) is True

    def test_draw_awards_nothing(self):
        """A drawn round advances without awarding a win."""
        match = make_match()
        result = run(play_round(["block"] * 10, ["block"] * 10, CombatState.fresh(1)))
        apply_round_result(match, 1, result, NOW)
        assert match.player1_rounds_won == match.player2_rounds_won == 0
        assert match.current_round == 2

    def test_stun_flags_carry_to_match(self):
        """The last turn's stun flags are kept for the next round."""
        match = make_match()
        result = run(play_round(["kick"] * 10, ["special"] * 10, CombatState.fresh(1)))
        apply_round_result(match, 1, result, NOW)
        assert match.player1_stunned_next == result.turns[-1].player1_is_stunned_next
        assert match.player2_stunned_next == result.turns[-1].player2_is_stunned_next


class TestSurgeDeck:
    """Test the shared per-round surge deck."""

    def test_deterministic_and_distinct(self):
        """The deck is the same on every call and has three distinct known cards."""
        deck = draw_round_deck("m-1", 1)
        assert deck == draw_round_deck("m-1", 1)
        assert len(deck) == len(set(deck)) == 3
        assert all(card in POWER_SURGE_CARD_IDS for card in deck)
