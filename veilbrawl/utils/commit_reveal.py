"""Round-plan commitments binding a hidden 10-move plan to a single field element."""

import json
import re
import secrets
from typing import Any, Optional, Sequence, Tuple

from veilbrawl.constants import (
    BN254_FIELD_PRIME,
    MOVE_TO_CODE,
    PLAN_LENGTH,
    POWER_SURGE_CARD_IDS,
)
from veilbrawl.utils.field_hash import hash_to_field, poseidon

_HEX_RE = re.compile(r"^0x[0-9a-fA-F]+$")


class CommitmentError(ValueError):
    """Raised when commitment inputs are malformed."""


def normalize_hex32(value: str) -> str:
    """
    Normalize a 0x-prefixed hex value to a zero-padded 32-byte lowercase string.

    Args:
        value: Hex string such as "0x1f"

    Returns:
        "0x" followed by exactly 64 lowercase hex digits

    Raises:
        CommitmentError: If the value is not hex or is wider than 32 bytes
    """
    if not isinstance(value, str) or not _HEX_RE.match(value.strip()):
        raise CommitmentError("Commitment must be a 0x-prefixed hex string")
    digits = value.strip()[2:].lower().lstrip("0")
    if len(digits) > 64:
        raise CommitmentError("Commitment exceeds 32 bytes")
    if int(digits or "0", 16) >= BN254_FIELD_PRIME:
        raise CommitmentError("Commitment is not a field element")
    return "0x" + digits.rjust(64, "0")


def field_to_hex32(value: int) -> str:
    return "0x" + format(value % BN254_FIELD_PRIME, "x").rjust(64, "0")


def to_surge_code(surge_card_id: Optional[str]) -> int:
    """Map a surge card id to its commitment code (0 = none)."""
    if surge_card_id is None:
        return 0
    try:
        return POWER_SURGE_CARD_IDS.index(surge_card_id) + 1
    except ValueError:
        raise CommitmentError(f"Unknown surge card: {surge_card_id}") from None


def parse_nonce(transcript_hash: Any) -> int:
    """
    Parse the transcript value into a field scalar.

    Accepts decimal strings, 0x-prefixed hex strings and non-negative ints.
    """
    if isinstance(transcript_hash, bool):
        raise CommitmentError("Transcript hash must be a scalar")
    if isinstance(transcript_hash, int):
        value = transcript_hash
    elif isinstance(transcript_hash, str):
        raw = transcript_hash.strip()
        try:
            value = int(raw, 16) if raw.lower().startswith("0x") else int(raw, 10)
        except ValueError:
            raise CommitmentError("Transcript hash must be a decimal or 0x-hex scalar") from None
    else:
        raise CommitmentError("Transcript hash must be a scalar")
    if value < 0:
        raise CommitmentError("Transcript hash must be non-negative")
    return value % BN254_FIELD_PRIME


def compute_round_plan_commitment(
    match_id: str,
    round_number: int,
    turn_number: int,
    player_address: str,
    surge_card_id: Optional[str],
    nonce: Any,
    move_plan: Sequence[str],
) -> str:
    """
    Compute the commitment for a player's round plan.

    The preimage is the ordered tuple
    [matchField, round, turn, playerField, surgeCode, nonce, move_0..move_9].

    Args:
        match_id: Match identifier (hashed into the field)
        round_number: Round being committed (>= 1)
        turn_number: Turn at which the commit was made (>= 1)
        player_address: Committing player's identity (hashed into the field)
        surge_card_id: Selected surge card or None
        nonce: Secret transcript scalar (decimal/hex string or int)
        move_plan: Exactly 10 move names

    Returns:
        Normalized 32-byte hex commitment
    """
    if not isinstance(round_number, int) or round_number < 1:
        raise CommitmentError("Round number must be >= 1")
    if not isinstance(turn_number, int) or turn_number < 1:
        raise CommitmentError("Turn number must be >= 1")
    if len(move_plan) != PLAN_LENGTH:
        raise CommitmentError(f"Move plan must contain exactly {PLAN_LENGTH} moves")

    move_codes = []
    for move in move_plan:
        if move not in MOVE_TO_CODE:
            raise CommitmentError(f"Invalid move in plan: {move}")
        move_codes.append(MOVE_TO_CODE[move])

    preimage = [
        hash_to_field(match_id),
        round_number,
        turn_number,
        hash_to_field(player_address.lower()),
        to_surge_code(surge_card_id),
        parse_nonce(nonce),
        *move_codes,
    ]
    return field_to_hex32(poseidon(preimage))


def commit_plan(
    match_id: str,
    round_number: int,
    turn_number: int,
    player_address: str,
    surge_card_id: Optional[str],
    move_plan: Sequence[str],
) -> Tuple[str, str]:
    """
    Create a fresh commitment for a plan with a random nonce.

    Returns:
        Tuple of (commitment, nonce_decimal)
    """
    nonce = str(int(secrets.token_hex(31), 16))
    commitment = compute_round_plan_commitment(
        match_id, round_number, turn_number, player_address, surge_card_id, nonce, move_plan
    )
    return commitment, nonce


def extract_public_commitment(public_inputs: Any) -> Optional[str]:
    """
    Pull the bound commitment out of a proof's public inputs.

    Public inputs are either a list whose first element is the commitment,
    an object with a "commitment" key, or a JSON string encoding either.

    Returns:
        Normalized commitment, or None when no public inputs were given

    Raises:
        CommitmentError: If the public inputs cannot be parsed
    """
    if public_inputs is None:
        return None
    if isinstance(public_inputs, str):
        try:
            public_inputs = json.loads(public_inputs)
        except json.JSONDecodeError:
            raise CommitmentError("Public inputs are not valid JSON") from None
    if isinstance(public_inputs, list):
        if not public_inputs:
            raise CommitmentError("Public inputs are empty")
        first = public_inputs[0]
    elif isinstance(public_inputs, dict):
        first = public_inputs.get("commitment")
    else:
        raise CommitmentError("Public inputs must be a list or object")
    if isinstance(first, int) and not isinstance(first, bool):
        return field_to_hex32(first)
    if not isinstance(first, str):
        raise CommitmentError("Public inputs do not carry a commitment")
    if first.isdigit():
        return field_to_hex32(int(first))
    return normalize_hex32(first)


def canonical_json(value: Any) -> str:
    """Stable JSON text used to compare stored and revealed public inputs."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"))
