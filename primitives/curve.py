"""Short Weierstrass curves y^2 = x^3 + b of the BN254 / Grumpkin cycle.

    BN254 G1   over GF(q), prime order r   commits to the folded circuits
    Grumpkin   over GF(r), prime order q   commits to the cycle circuit

Each curve's base field is the other one's scalar field, so the points of
one curve are native to the circuits of the other.

All point arithmetic is delegated to py_ecc's optimized (projective)
formulas, which only use the operators of their coordinate type: BN254 uses
py_ecc's own FQ, Grumpkin a FQ subclass over r. This module adds what
folding needs on top: hash-to-curve generator derivation, a bucketed
multi-scalar multiplication and a canonical affine form for equality and
transcript encoding.
"""

import hashlib
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from py_ecc.fields.optimized_field_elements import FQ as OptimizedFQ
from py_ecc.optimized_bn128 import FQ as BN254FQ
from py_ecc.optimized_bn128 import add, double, is_inf, is_on_curve, multiply, normalize

from primitives.field import BN254_BASE_ORDER, BN254_SCALAR_ORDER, FF, FFq

# --- Type Aliases ---

Point = Tuple[OptimizedFQ, OptimizedFQ, OptimizedFQ]  # projective (X, Y, Z), Z == 0 is the identity
AffinePoint = Optional[Tuple[int, int]]  # None is the identity


class GrumpkinFQ(OptimizedFQ):
    """Grumpkin coordinates: elements of the BN254 scalar field."""
    field_modulus = BN254_SCALAR_ORDER


@dataclass(frozen=True, eq=False)
class Curve:
    """A prime-order curve y^2 = x^3 + b.

    Attributes:
        name: short name, used in log messages and reprs
        fq: py_ecc coordinate type
        field: galois field of the coordinates (square roots for hashing)
        order: prime group order, the scalar field of the curve
        b: curve constant
        native: True if coordinates are elements of the hashing field FF, so
            a point encodes as (x, y); otherwise as four 128-bit limbs
    """
    name: str
    fq: type
    field: type
    order: int
    b: int
    native: bool

    @property
    def base_order(self) -> int:
        return self.field.order

    @property
    def identity(self) -> Point:
        return (self.fq.one(), self.fq.one(), self.fq.zero())

    # --- Conversions ---

    def to_affine(self, point: Point) -> AffinePoint:
        """Normalize a projective point to integer affine coordinates."""
        if is_inf(point):
            return None
        x, y = normalize(point)
        return int(x.n), int(y.n)

    def from_affine(self, affine: AffinePoint) -> Point:
        """Lift integer affine coordinates back to a projective point."""
        if affine is None:
            return self.identity
        x, y = affine
        point = (self.fq(int(x)), self.fq(int(y)), self.fq.one())
        if not self.is_on_curve(point):
            raise ValueError(f"point ({x}, {y}) is not on {self.name}")
        return point

    def is_on_curve(self, point: Point) -> bool:
        return is_on_curve(point, self.fq(self.b))

    # --- Group operations ---

    def add(self, a: Point, b: Point) -> Point:
        return add(a, b)

    def scalar_mul(self, point: Point, scalar: int) -> Point:
        scalar %= self.order
        if scalar == 0 or is_inf(point):
            return self.identity
        return multiply(point, scalar)

    def msm(self, points: Sequence[Point], scalars: Sequence[int]) -> Point:
        """Multi-scalar multiplication sum(scalars[i] * points[i]).

        Bucket (Pippenger) method: scalars are cut into c-bit windows; within a
        window every point is added once into the bucket of its digit and the
        buckets are summed with a running sum, so each window costs about
        n + 2^(c+1) group additions instead of n full scalar multiplications.
        Zero scalars are skipped entirely.
        """
        if len(points) < len(scalars):
            raise ValueError(f"msm needs {len(scalars)} bases, got {len(points)}")

        terms = [
            (points[i], s % self.order)
            for i, s in enumerate(scalars)
            if s % self.order != 0
        ]
        if not terms:
            return self.identity
        if len(terms) == 1:
            return self.scalar_mul(terms[0][0], terms[0][1])

        c = _window_bits(len(terms))
        mask = (1 << c) - 1
        n_windows = (self.order.bit_length() + c - 1) // c

        result = self.identity
        for window in range(n_windows - 1, -1, -1):
            # Shift the accumulator up by one window
            if not is_inf(result):
                for _ in range(c):
                    result = double(result)

            shift = window * c
            buckets: List[Point] = [self.identity] * mask
            for point, scalar in terms:
                digit = (scalar >> shift) & mask
                if digit:
                    buckets[digit - 1] = add(buckets[digit - 1], point)

            # sum_d d * bucket[d] via running sums from the top bucket down
            running = self.identity
            window_sum = self.identity
            for bucket in reversed(buckets):
                running = add(running, bucket)
                window_sum = add(window_sum, running)
            result = add(result, window_sum)

        return result

    # --- Hash to curve ---

    def hash_to_point(self, label: bytes, index: int) -> Point:
        return self.hash_to_points(label, [index])[0]

    def hash_to_points(self, label: bytes, indices: Iterable[int]) -> List[Point]:
        """Derive generators by try-and-increment hashing to the curve.

        The x-coordinate is SHA-256(name || label || index || counter) mod q;
        the first counter for which x^3 + b is a square gives the point, with
        the smaller square root taken for y. Both curves have cofactor 1, so
        every curve point is in the prime-order group and no discrete-log
        relation between outputs is known. Candidates of all indices are
        tested together, one galois array per counter value.
        """
        indices = list(indices)
        found: Dict[int, Tuple[int, int]] = {}
        pending = indices
        counter = 0
        while pending:
            xs = [self._candidate(label, i, counter) for i in pending]
            x = self.field(xs)
            rhs = x ** 3 + self.field(self.b % self.base_order)
            square = np.asarray(rhs.is_square(), dtype=bool).reshape(-1)
            hits = [k for k in range(len(pending)) if square[k]]
            if hits:
                # galois returns the smaller of the two roots
                roots = np.sqrt(rhs[hits])
                for k, y in zip(hits, roots):
                    found[pending[k]] = (xs[k], int(y))
            pending = [pending[k] for k in range(len(pending)) if not square[k]]
            counter += 1
        return [
            (self.fq(found[i][0]), self.fq(found[i][1]), self.fq.one())
            for i in indices
        ]

    def _candidate(self, label: bytes, index: int, counter: int) -> int:
        digest = hashlib.sha256(
            self.name.encode() + label + index.to_bytes(8, "big") + counter.to_bytes(4, "big")
        ).digest()
        return int.from_bytes(digest, "big") % self.base_order

    def __repr__(self):
        return f"Curve({self.name})"


def _window_bits(n: int) -> int:
    """Bucket window width for n terms (roughly log2(n) - 2, at least 2)."""
    if n < 4:
        return 2
    return max(2, min(16, n.bit_length() - 2))


BN254 = Curve("bn254", BN254FQ, FFq, BN254_SCALAR_ORDER, 3, native=False)
"""BN254 G1 over GF(q), order r: commitments to the folded circuits."""

GRUMPKIN = Curve("grumpkin", GrumpkinFQ, FF, BN254_BASE_ORDER, -17, native=True)
"""Grumpkin over GF(r), order q: commitments to the cycle circuit."""
