"""Poseidon hash over the BN254 scalar field, circomlib-compatible.

poseidon(inputs) matches circomlib's Poseidon (and circomlibjs buildPoseidon)
for 1 to 16 inputs: width t = len(inputs) + 1, state [0, *inputs], x^5 S-box,
8 full rounds, circomlib's partial round counts, output state[0].

Round constants and the MDS matrix are the published reference parameters
(Grain LFSR, field=1, sbox=0, n=254), regenerated per width on first use.
"""

import hashlib
from functools import lru_cache
from typing import Iterable, List, Sequence, Tuple

from veilbrawl.constants import BN254_FIELD_PRIME

P = BN254_FIELD_PRIME

FIELD_BITS = 254
FULL_ROUNDS = 8
# Indexed by t - 2, for t = 2..17
PARTIAL_ROUNDS = (56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68)
MAX_INPUTS = len(PARTIAL_ROUNDS)


def hash_to_field(value: str) -> int:
    """
    Reduce an arbitrary string into the field via SHA-256.

    Args:
        value: Any identifier (match id, wallet address, ...)

    Returns:
        Field element in [0, P)
    """
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return int(digest, 16) % P


class _Grain:
    """80-bit Grain LFSR in self-shrinking mode, seeded from the Poseidon instance."""

    def __init__(self, t: int, partial_rounds: int):
        header = (
            (1, 2),  # prime field
            (0, 4),  # x^alpha S-box
            (FIELD_BITS, 12),
            (t, 12),
            (FULL_ROUNDS, 10),
            (partial_rounds, 10),
        )
        bits = []
        for value, width in header:
            bits.extend(int(b) for b in format(value, f"0{width}b"))
        bits.extend([1] * 30)
        # bit k of the register is the k-th oldest bit
        self._state = sum(bit << k for k, bit in enumerate(bits))
        for _ in range(160):
            self._step()

    def _step(self) -> int:
        s = self._state
        new = ((s >> 62) ^ (s >> 51) ^ (s >> 38) ^ (s >> 23) ^ (s >> 13) ^ s) & 1
        self._state = (s >> 1) | (new << 79)
        return new

    def bit(self) -> int:
        while True:
            first = self._step()
            second = self._step()
            if first:
                return second

    def bits(self, count: int) -> int:
        value = 0
        for _ in range(count):
            value = (value << 1) | self.bit()
        return value


@lru_cache(maxsize=None)
def _parameters(t: int) -> Tuple[Tuple[int, ...], Tuple[Tuple[int, ...], ...]]:
    partial_rounds = PARTIAL_ROUNDS[t - 2]
    grain = _Grain(t, partial_rounds)

    constants = []
    while len(constants) < (FULL_ROUNDS + partial_rounds) * t:
        value = grain.bits(FIELD_BITS)
        if value < P:
            constants.append(value)

    # Cauchy matrix 1 / (x_i + y_j) with x, y drawn from the same stream
    while True:
        values = [grain.bits(FIELD_BITS) % P for _ in range(2 * t)]
        while len(set(values)) != len(values):
            values = [grain.bits(FIELD_BITS) % P for _ in range(2 * t)]
        xs, ys = values[:t], values[t:]
        if any((x + y) % P == 0 for x in xs for y in ys):
            continue
        mds = tuple(tuple(pow(x + y, P - 2, P) for y in ys) for x in xs)
        return tuple(constants), mds


def permute(state: Sequence[int]) -> List[int]:
    """Apply the Poseidon permutation to a state of width 2..17."""
    t = len(state)
    if not 2 <= t <= MAX_INPUTS + 1:
        raise ValueError(f"state width must be between 2 and {MAX_INPUTS + 1}, got {t}")
    constants, mds = _parameters(t)
    partial_rounds = PARTIAL_ROUNDS[t - 2]
    half_full = FULL_ROUNDS // 2

    s = [v % P for v in state]
    for r in range(FULL_ROUNDS + partial_rounds):
        s = [(v + constants[r * t + i]) % P for i, v in enumerate(s)]
        if r < half_full or r >= half_full + partial_rounds:
            s = [pow(v, 5, P) for v in s]
        else:
            s[0] = pow(s[0], 5, P)
        s = [sum(m * v for m, v in zip(row, s)) % P for row in mds]
    return s


def poseidon(inputs: Iterable[int]) -> int:
    """
    Hash 1 to 16 field elements exactly as circomlib's Poseidon(n) does.

    Raises:
        ValueError: If the input count is outside 1..16
    """
    elements = [int(v) % P for v in inputs]
    if not 1 <= len(elements) <= MAX_INPUTS:
        raise ValueError(f"poseidon takes 1 to {MAX_INPUTS} inputs, got {len(elements)}")
    return permute([0] + elements)[0]
