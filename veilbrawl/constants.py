"""Constants and type definitions for the VeilBrawl backend."""

from typing import Literal

# Type definitions
Move = Literal["punch", "kick", "block", "special", "stunned"]
MatchFormat = Literal["best_of_3", "best_of_5"]

PLAYABLE_MOVES: tuple[str, ...] = ("punch", "kick", "block", "special")
ALL_MOVES: tuple[str, ...] = PLAYABLE_MOVES + ("stunned",)

# Commitment move codes (stunned doubles as "none")
MOVE_TO_CODE = {
    "stunned": 0,
    "punch": 1,
    "kick": 2,
    "block": 3,
    "special": 4,
}

# Round structure
PLAN_LENGTH = 10
MAX_TURNS_PER_ROUND = PLAN_LENGTH
ROUNDS_TO_WIN = {
    "best_of_3": 2,
    "best_of_5": 3,
}

# Fighter limits
MAX_HEALTH = 100
MAX_ENERGY = 100
GUARD_THRESHOLD = 100
ENERGY_REGEN = 20
GUARD_BUILD_ON_BLOCK = 25

BASE_DAMAGE = {
    "punch": 10,
    "kick": 15,
    "block": 0,
    "special": 25,
    "stunned": 0,
}

ENERGY_COST = {
    "punch": 0,
    "kick": 25,
    "block": 0,
    "special": 50,
    "stunned": 0,
}

GUARD_DAMAGE = {
    "punch": 5,
    "kick": 10,
    "block": 0,
    "special": 20,
    "stunned": 0,
}

# Each playable move beats exactly one other
BEATS = {
    "kick": "block",
    "block": "punch",
    "punch": "special",
    "special": "kick",
}

# Damage multipliers
PUNCH_CHIP_VS_BLOCK = 0.15
SPECIAL_VS_BLOCK = 0.25
GUARD_BREAK_MULTIPLIER = 1.5

# Power surge cards; order fixes the commitment surge code (index + 1)
POWER_SURGE_CARD_IDS: tuple[str, ...] = (
    "dag-overclock",
    "block-fortress",
    "tx-storm",
    "mempool-congest",
    "blue-set-heal",
    "orphan-smasher",
    "10bps-barrage",
    "pruned-rage",
    "sompi-shield",
    "hash-hurricane",
    "ghost-dag",
    "finality-fist",
    "bps-blitz",
    "chainbreaker",
    "vaultbreaker",
)
SURGE_DECK_SIZE = 3

# Sentinel commitment prefixes for commits synthesized by the server
AUTO_STUNNED_PREFIX = "auto-stunned"
AUTO_TIMEOUT_PREFIX = "auto-timeout"

# BN254 scalar field
BN254_FIELD_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617
