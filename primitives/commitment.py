"""
Pedersen vector commitments over the curves of the BN254 cycle.

    commit(v, rho) = sum_i v[i] * G_i + rho * H

The generators G_i and H are hashed to the curve, so nobody knows a discrete
log relation between them (binding). The scheme is additively homomorphic,
which is what folding relies on:

    commit(a) + s * commit(b) == commit(a + s * b)

The folded circuits commit on BN254 (the default); the cycle circuit that
re-checks their commitment arithmetic commits on Grumpkin. Folding commits
with zero blinding; the blinding factor is kept for callers that need hiding.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np

from primitives.curve import BN254, AffinePoint, Curve, Point
from primitives.field import ints

logger = logging.getLogger(__name__)

DEFAULT_LABEL = b"plonkish-fold/pedersen"

LIMB_BITS = 128
LIMB_MASK = (1 << LIMB_BITS) - 1
POINT_LIMBS = 4


def split_limbs(value: int) -> List[int]:
    """Low and high 128-bit limbs of a coordinate below 2^254."""
    return [value & LIMB_MASK, value >> LIMB_BITS]


@dataclass(frozen=True)
class Commitment:
    """A commitment is a curve point, stored in affine form (None for the identity)."""
    point: AffinePoint = None
    curve: Curve = BN254

    @classmethod
    def identity(cls, curve: Curve = BN254) -> "Commitment":
        return cls(None, curve)

    @classmethod
    def from_point(cls, point: Point, curve: Curve = BN254) -> "Commitment":
        return cls(curve.to_affine(point), curve)

    def to_point(self) -> Point:
        return self.curve.from_affine(self.point)

    def is_identity(self) -> bool:
        return self.point is None

    def coordinates(self) -> Tuple[int, int]:
        """Affine (x, y), with (0, 0) standing for the identity (never on either curve)."""
        return self.point if self.point is not None else (0, 0)

    def to_field_elements(self) -> List[int]:
        """Injective encoding used for transcripts and in-circuit hashing.

        Grumpkin coordinates are already elements of the hashing field and
        encode as [x, y]. BN254 coordinates may exceed it and encode as
        [x_lo, x_hi, y_lo, y_hi] with 128-bit low limbs.
        """
        x, y = self.coordinates()
        if self.curve.native:
            return [x, y]
        return split_limbs(x) + split_limbs(y)

    def __repr__(self):
        if self.point is None:
            return f"Commitment({self.curve.name}, identity)"
        return f"Commitment({self.curve.name}, x={hex(self.point[0])[:12]}...)"


@dataclass(frozen=True)
class Opening:
    """Opening of a commitment: the committed vector and its blinding factor."""
    vector: Tuple[int, ...]
    blinding: int = 0


# --- Key Material ---

@lru_cache(maxsize=None)
def _generators(curve: Curve, label: bytes, size: int) -> Tuple[Point, ...]:
    logger.debug("deriving %d Pedersen generators on %s for %r", size, curve.name, label)
    return tuple(curve.hash_to_points(label, range(size)))


@dataclass(frozen=True)
class CommitmentKey:
    """Public generators G_0..G_{size-1} and the blinding generator H."""
    label: bytes
    generators: Tuple[Point, ...]
    blinding_generator: Point
    curve: Curve = BN254

    @property
    def size(self) -> int:
        return len(self.generators)

    @classmethod
    def setup(cls, size: int, label: bytes = DEFAULT_LABEL, curve: Curve = BN254) -> "CommitmentKey":
        """Derive (or fetch from cache) a key able to commit to `size` elements."""
        if size <= 0:
            raise ValueError(f"commitment key size must be positive, got {size}")
        # H is the generator right after the vector generators of a key of
        # this size, so keys of different sizes never share H with a G_i.
        points = _generators(curve, label, size + 1)
        return cls(label, points[:size], points[size], curve)


# --- Scheme ---

Vector = Union[Sequence[int], np.ndarray]


class PedersenCommitment:
    """
    Pedersen vector commitment scheme bound to a CommitmentKey.

    Vectors may be int sequences or field arrays of any shape; arrays are
    committed in row-major order, shorter vectors are implicitly zero-padded.
    """

    def __init__(self, key: CommitmentKey):
        self.key = key
        self.curve = key.curve

    def _flatten(self, vector: Vector) -> List[int]:
        if isinstance(vector, np.ndarray):
            return ints(vector)
        return [int(v) % self.curve.order for v in vector]

    def commit(self, vector: Vector, blinding: int = 0) -> Commitment:
        values = self._flatten(vector)
        if len(values) > self.key.size:
            raise ValueError(
                f"vector of length {len(values)} exceeds commitment key size {self.key.size}"
            )
        point = self.curve.msm(self.key.generators, values)
        if blinding % self.curve.order:
            point = self.curve.add(point, self.curve.scalar_mul(self.key.blinding_generator, blinding))
        return Commitment.from_point(point, self.curve)

    def open(self, commitment: Commitment, vector: Vector, blinding: int = 0) -> Opening:
        """Package an opening; raises ValueError if it does not match."""
        opening = Opening(tuple(self._flatten(vector)), blinding % self.curve.order)
        if not self.verify(commitment, opening):
            raise ValueError("opening does not match commitment")
        return opening

    def verify(self, commitment: Commitment, opening: Opening) -> bool:
        if len(opening.vector) > self.key.size:
            return False
        return self.commit(list(opening.vector), opening.blinding) == commitment

    def combine(self, a: Commitment, b: Commitment, scalar: int) -> Commitment:
        """Return a + scalar * b, equal to commit(A + scalar * B)."""
        point = self.curve.add(a.to_point(), self.curve.scalar_mul(b.to_point(), int(scalar)))
        return Commitment.from_point(point, self.curve)

    def linear_combination(self, commitments: Iterable[Commitment], scalars: Iterable[int]) -> Commitment:
        """Return sum_i scalars[i] * commitments[i]."""
        points = [c.to_point() for c in commitments]
        coeffs = [int(s) % self.curve.order for s in scalars]
        if len(points) != len(coeffs):
            raise ValueError(f"{len(points)} commitments but {len(coeffs)} scalars")
        point = self.curve.msm(points, coeffs) if points else self.curve.identity
        return Commitment.from_point(point, self.curve)
