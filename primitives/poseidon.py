"""
Poseidon permutation and duplex sponge over the BN254 scalar field.

The permutation is the original Poseidon construction (HADES layout):
R_F/2 full rounds, R_P partial rounds, R_F/2 full rounds, each round being
add-round-constants, S-box, MDS mix.

- S-box: x^5 (5 is coprime to r - 1 for BN254, so x -> x^5 is a bijection)
- MDS: Cauchy matrix M[i][j] = 1 / (x_i + y_j) with x_i = i, y_j = t + j
- Round constants: SHA-256 counter stream reduced mod r

All arithmetic is on plain ints mod r; the in-circuit gadget in
constraints/gadgets.py replays exactly these operations.
"""

import hashlib
import logging
from dataclasses import dataclass
from enum import IntEnum
from functools import lru_cache
from typing import Iterable, List, Tuple

from primitives.field import P, inverse

logger = logging.getLogger(__name__)

SBOX_EXPONENT = 5


class Domain(IntEnum):
    """Capacity tags separating the independent uses of the sponge."""
    TRANSCRIPT = 1
    CHALLENGE = 2
    DIGEST = 3
    PARAMS = 4
    CYCLE = 5


@dataclass(frozen=True)
class PoseidonConfig:
    """Permutation shape. Rate is width - 1, the last element is capacity."""
    width: int = 3
    full_rounds: int = 8
    partial_rounds: int = 57

    def __post_init__(self):
        if self.width < 2:
            raise ValueError(f"Poseidon width must be at least 2, got {self.width}")
        if self.full_rounds < 2 or self.full_rounds % 2:
            raise ValueError(f"full_rounds must be even and >= 2, got {self.full_rounds}")
        if self.partial_rounds < 0:
            raise ValueError(f"partial_rounds must be >= 0, got {self.partial_rounds}")

    @property
    def rate(self) -> int:
        return self.width - 1

    @property
    def total_rounds(self) -> int:
        return self.full_rounds + self.partial_rounds

    def is_full_round(self, r: int) -> bool:
        half = self.full_rounds // 2
        return r < half or r >= half + self.partial_rounds

    def to_field_elements(self) -> List[int]:
        return [self.width, self.full_rounds, self.partial_rounds]


# --- Constant Generation ---

@lru_cache(maxsize=None)
def round_constants(config: PoseidonConfig) -> Tuple[Tuple[int, ...], ...]:
    """Round constants, one row of `width` values per round."""
    seed = b"poseidon-bn254" + b"".join(v.to_bytes(4, "big") for v in config.to_field_elements())
    rows = []
    counter = 0
    for _ in range(config.total_rounds):
        row = []
        for _ in range(config.width):
            digest = hashlib.sha256(seed + counter.to_bytes(8, "big")).digest()
            row.append(int.from_bytes(digest, "big") % P)
            counter += 1
        rows.append(tuple(row))
    return tuple(rows)


@lru_cache(maxsize=None)
def mds_matrix(width: int) -> Tuple[Tuple[int, ...], ...]:
    """Cauchy MDS matrix; every entry 1/(i + width + j) is well defined."""
    return tuple(
        tuple(inverse(i + width + j) for j in range(width))
        for i in range(width)
    )


# --- Permutation ---

def _sbox(x: int) -> int:
    x2 = (x * x) % P
    x4 = (x2 * x2) % P
    return (x4 * x) % P


def _mix(state: List[int], mds) -> List[int]:
    return [sum(m * s for m, s in zip(row, state)) % P for row in mds]


def permute(state: List[int], config: PoseidonConfig) -> List[int]:
    """Apply the Poseidon permutation to a state of `config.width` elements."""
    if len(state) != config.width:
        raise ValueError(f"state must have {config.width} elements, got {len(state)}")

    rc = round_constants(config)
    mds = mds_matrix(config.width)
    state = [s % P for s in state]

    for r in range(config.total_rounds):
        state = [(s + c) % P for s, c in zip(state, rc[r])]
        if config.is_full_round(r):
            state = [_sbox(s) for s in state]
        else:
            state[0] = _sbox(state[0])
        state = _mix(state, mds)

    return state


# --- Duplex Sponge ---

class Sponge:
    """
    Duplex sponge with rate width - 1 and a single capacity element.

    Absorbed elements are buffered until a full rate block is available, then
    added into the rate part of the state and permuted. Squeezing flushes a
    partial block first; two squeezes in a row permute in between so every
    output is fresh.

    Attributes:
        config: Permutation shape
        state: Current sponge state (rate elements, then the capacity)
        pending: Buffered elements not yet added into the state
        output_ready: True when state[0] has not been handed out since the
            last permutation
    """

    def __init__(self, config: PoseidonConfig, domain: int):
        self.config = config
        self.state = [0] * config.width
        self.state[-1] = int(domain) % P
        self.pending: List[int] = []
        self.output_ready = False

    def absorb(self, elem: int) -> None:
        self.pending.append(int(elem) % P)
        if len(self.pending) == self.config.rate:
            self._update_state()
            self.output_ready = True

    def absorb_many(self, elems: Iterable[int]) -> None:
        for elem in elems:
            self.absorb(elem)

    def squeeze(self) -> int:
        if self.pending:
            self._update_state()
        elif not self.output_ready:
            self.state = permute(self.state, self.config)
        self.output_ready = False
        return self.state[0]

    def _update_state(self) -> None:
        for i, elem in enumerate(self.pending):
            self.state[i] = (self.state[i] + elem) % P
        self.state = permute(self.state, self.config)
        self.pending = []


def hash_elements(config: PoseidonConfig, domain: int, elems: Iterable[int]) -> int:
    """One-shot sponge hash of a sequence of field elements."""
    sponge = Sponge(config, domain)
    sponge.absorb_many(elems)
    return sponge.squeeze()
