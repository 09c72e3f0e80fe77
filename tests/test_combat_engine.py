"""Unit tests for single-turn combat resolution.

Covers:
- The advantage rotation and base damage table
- Block interactions, guard build/spend and guard-break
- Energy costs, regen and unaffordable moves
- Knockouts and double knockouts
- Surge modifiers
- Determinism
"""

import pytest

from veilbrawl.constants import BEATS
from veilbrawl.models.combat import FighterState
from veilbrawl.services.combat_engine import (
    TurnContext,
    check_match_end,
    effective_move,
    resolve_turn,
    round_half_up,
)
from veilbrawl.services.surge import NEUTRAL_MODIFIERS, SurgeModifiers, calculate_surge_effects


def fresh():
    return FighterState()


def turn(move1, move2, p1=None, p2=None, card1=None, card2=None, context=None):
    mods1, mods2 = calculate_surge_effects(card1, card2)
    return resolve_turn(move1, move2, p1 or fresh(), p2 or fresh(), mods1, mods2, context)


class TestAdvantageRotation:
    """Test the bounded-rotation advantage table."""

    def test_each_move_beats_exactly_one(self):
        """Every playable move beats exactly one other and is beaten by exactly one."""
        assert sorted(BEATS.keys()) == sorted(BEATS.values())
        for move, beaten in BEATS.items():
            assert move != beaten

    def test_special_vs_punch(self):
        """Punch beats special: special misses, punch lands base damage."""
        out = turn("special", "punch")
        assert out.player1_outcome == "missed"
        assert out.player2_outcome == "hit"
        assert out.player1_damage_dealt == 0
        assert out.player2_damage_dealt == 10
        assert out.player1_health == 90
        assert out.player2_health == 100
        assert out.player1_is_stunned_next is True
        assert out.player2_is_stunned_next is False

    def test_special_beats_kick(self):
        """Special beats kick for its full base damage."""
        out = turn("special", "kick")
        assert out.player2_health == 75
        assert out.player1_health == 100
        assert out.player2_outcome == "missed"
        assert out.player2_is_stunned_next is True

    def test_neutral_exchange(self):
        """Kick and punch are neutral: both land."""
        out = turn("kick", "punch")
        assert out.player1_health == 90
        assert out.player2_health == 85
        assert out.player1_outcome == out.player2_outcome == "hit"
        assert not out.player1_is_stunned_next and not out.player2_is_stunned_next

    def test_mirror_exchange(self):
        """Identical attacks trade full damage."""
        out = turn("special", "special")
        assert out.player1_health == 75
        assert out.player2_health == 75

    def test_stunned_never_deals_damage(self):
        """A stunned fighter takes full damage and deals none."""
        out = turn("stunned", "kick")
        assert out.player1_outcome == "stunned"
        assert out.player1_damage_dealt == 0
        assert out.player1_health == 85
        assert out.player2_health == 100


class TestBlocking:
    """Test block interactions and guard."""

    def test_kick_shatters_block(self):
        """Kick beats block: full damage and the block is shattered."""
        out = turn("kick", "block")
        assert out.player2_health == 85
        assert out.player1_outcome == "hit"
        assert out.player2_outcome == "shattered"
        assert out.player2_guard == 0

    def test_punch_chip_vs_block(self):
        """Punch into block deals 15% chip, rounded half-up."""
        out = turn("punch", "block")
        assert out.player2_health == 98
        assert out.player1_outcome == "blocked"
        assert out.player2_outcome == "guarding"
        assert out.player2_guard == 20

    def test_special_reduced_by_block(self):
        """Special into block is reduced to 25% but not zero."""
        out = turn("special", "block")
        assert out.player2_health == 94
        assert out.player1_outcome == "blocked"
        assert out.player2_guard == 5

    def test_double_block_builds_guard(self):
        """Blocking with nothing incoming builds guard."""
        out = turn("block", "block")
        assert out.player1_guard == 25
        assert out.player2_guard == 25
        assert out.player1_health == out.player2_health == 100
        assert out.player1_outcome == "guarding"

    def test_guard_clamped(self):
        """Guard never exceeds the threshold."""
        out = turn("block", "block", p1=FighterState(guard=90))
        assert out.player1_guard == 100

    def test_guard_break(self):
        """Saturated guard while not blocking breaks: x1.5 damage, reset, stun."""
        out = turn("punch", "punch", p2=FighterState(guard=100))
        assert out.player2_health == 85
        assert out.player1_health == 90
        assert out.player2_guard == 0
        assert out.player2_is_stunned_next is True
        assert "guard breaks" in out.narrative

    def test_no_guard_break_while_blocking(self):
        """A blocking fighter keeps a full guard."""
        out = turn("punch", "block", p2=FighterState(guard=100))
        assert out.player2_is_stunned_next is False
        assert out.player2_guard == 100


class TestEnergy:
    """Test energy costs and regen."""

    def test_cost_and_regen(self):
        """Cost is subtracted then regen added, clamped to max."""
        out = turn("special", "kick")
        assert out.player1_energy == 70
        assert out.player2_energy == 95

    def test_unaffordable_special_becomes_punch(self):
        """A move the fighter cannot afford is executed as a punch."""
        out = turn("special", "block", p1=FighterState(energy=40))
        assert out.player1_move == "punch"
        assert out.player2_health == 98
        assert out.player1_energy == 60

    def test_effective_move_rejects_unknown(self):
        """Unknown moves are rejected."""
        with pytest.raises(ValueError):
            effective_move("dance", 100)


class TestKnockout:
    """Test round termination."""

    def test_knockout(self):
        """Health reaching zero ends the round with a winner."""
        out = turn("punch", "kick", p2=FighterState(health=10))
        assert out.is_knockout
        assert out.winner == "player1"
        assert out.player2_health == 0

    def test_double_knockout_is_draw(self):
        """Both reaching zero together is a draw."""
        out = turn("punch", "punch", p1=FighterState(health=10), p2=FighterState(health=5))
        assert out.is_knockout
        assert out.winner is None
        assert out.is_draw

    def test_no_knockout(self):
        """Healthy fighters continue."""
        assert not turn("punch", "punch").is_knockout

    def test_match_end_thresholds(self):
        """Best of 3 needs 2 rounds, best of 5 needs 3."""
        assert check_match_end(2, 0, 2) == (True, "player1")
        assert check_match_end(1, 1, 2) == (False, None)
        assert check_match_end(2, 2, 3) == (False, None)
        assert check_match_end(1, 3, 3) == (True, "player2")


class TestSurgeModifiers:
    """Test surge card effects inside a turn."""

    def test_damage_boost(self):
        """dag-overclock adds 30% damage."""
        assert turn("punch", "punch", card1="dag-overclock").player2_health == 87

    def test_damage_reduction(self):
        """sompi-shield reduces incoming damage by 40%."""
        assert turn("punch", "punch", card2="sompi-shield").player2_health == 94

    def test_lifesteal_and_energy_burn(self):
        """bps-blitz heals from damage dealt and burns the opponent's energy."""
        out = turn("kick", "punch", card1="bps-blitz")
        assert out.player1_health == 96
        assert out.player2_energy == 70
        assert out.player1_energy == 95

    def test_block_reflect(self):
        """block-fortress reflects half the raw attack while blocking."""
        out = turn("special", "block", card2="block-fortress")
        assert out.player2_health == 94
        assert out.player1_health == 88
        assert out.player2_outcome == "reflected"
        assert out.player2_damage_dealt == 12

    def test_double_hit(self):
        """10bps-barrage doubles punch damage."""
        assert turn("punch", "punch", card1="10bps-barrage").player2_health == 80

    def test_block_disabled(self):
        """pruned-rage disables the opponent's block."""
        out = turn("punch", "block", card1="pruned-rage")
        assert out.player2_health == 90
        assert out.player2_outcome == "shattered"

    def test_bypass_block(self):
        """chainbreaker attacks ignore block."""
        out = turn("punch", "block", card1="chainbreaker")
        assert out.player2_health == 90

    def test_invisible_move_cannot_be_countered(self):
        """ghost-dag turns a losing exchange into a neutral trade."""
        out = turn("special", "punch", card1="ghost-dag")
        assert out.player2_health == 75
        assert out.player1_health == 90
        assert out.player1_is_stunned_next is False

    def test_counter_boost(self):
        """orphan-smasher boosts damage when the move wins the exchange."""
        out = turn("special", "punch", card2="orphan-smasher")
        assert out.player1_health == 84

    def test_special_boost_and_cost(self):
        """finality-fist boosts specials and raises their cost."""
        out = turn("special", "stunned", card1="finality-fist")
        assert out.player2_health == 55
        assert out.player1_energy == 50

    def test_energy_steal(self):
        """vaultbreaker steals energy on hit."""
        out = turn("punch", "punch", card1="vaultbreaker")
        assert out.player2_energy == 75
        assert out.player1_energy == 100

    def test_hp_regen(self):
        """blue-set-heal regenerates health each turn."""
        assert turn("punch", "punch", card1="blue-set-heal").player1_health == 100

    def test_energy_regen_bonus(self):
        """tx-storm adds energy regen."""
        out = turn("kick", "block", p1=FighterState(energy=50), card1="tx-storm")
        assert out.player1_energy == 55

    def test_guaranteed_dodge_needs_context(self):
        """Dodge is rolled only when the turn is identified."""
        mods = SurgeModifiers(dodge_chance=1.0)
        ctx = TurnContext("m", 1, 1, "GALICE", "GBOB")
        dodged = resolve_turn("punch", "punch", fresh(), fresh(), NEUTRAL_MODIFIERS, mods, ctx)
        assert dodged.player2_health == 100
        assert dodged.player1_outcome == "missed"
        plain = resolve_turn("punch", "punch", fresh(), fresh(), NEUTRAL_MODIFIERS, mods)
        assert plain.player2_health == 90

    def test_pruned_rage_targets_opponent(self):
        """Block-disable lands on the opponent's modifiers."""
        mods1, mods2 = calculate_surge_effects("pruned-rage", None)
        assert mods2.block_disabled and not mods1.block_disabled

    def test_unknown_card(self):
        """Unknown cards are rejected."""
        with pytest.raises(ValueError):
            calculate_surge_effects("nope", None)


class TestDeterminism:
    """Test resolve_turn purity."""

    def test_identical_inputs_identical_outputs(self):
        """Two resolutions of the same inputs are equal, narrative included."""
        ctx = TurnContext("m", 2, 3, "GALICE", "GBOB")
        a = turn("kick", "special", card1="hash-hurricane", card2="tx-storm", context=ctx)
        b = turn("kick", "special", card1="hash-hurricane", card2="tx-storm", context=ctx)
        assert a == b

    def test_inputs_not_mutated(self):
        """Fighter states passed in are left untouched."""
        p1, p2 = FighterState(), FighterState()
        resolve_turn("kick", "punch", p1, p2)
        assert p1 == FighterState() and p2 == FighterState()

    def test_round_half_up(self):
        """Rounding is half-up, not banker's rounding."""
        assert round_half_up(1.5) == 2
        assert round_half_up(2.5) == 3
        assert round_half_up(6.25) == 6
