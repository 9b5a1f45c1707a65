"""In-circuit arithmetic on a curve y^2 = x^3 + b over the circuit field.

Points are pairs of builder variables in affine form; (0, 0) stands for the
identity, which lies on neither curve of the cycle. Three custom gates
carry the scalar multiplications, over the region columns

    x  y  bit  lambda1  lambda2  xt  yt  acc

    double  row: A = (x, y)           next row: 2A
    dadd    row: A, bit, T = (xt, yt)  next row: 2A + (2 bit - 1) T
    bits    bit is boolean and acc(next) = 2 acc + bit

dadd is the incomplete double-and-add of the Orchard design: R = A + T_b
with slope lambda1, then R + A with slope lambda2, without materialising R.
A ladder of n dadd rows started from 2T computes

    (2^n + 2s + 1) * T

for the n-bit s spelled by the bits (most significant first). Every
intermediate point is c * T with 2 <= c < 2^(n+2), so for a prime order
curve and n <= 128 no addition in the ladder is exceptional. T stays the
same within a ladder because the same variables are placed in every row.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from constraints.builder import REGION_COLUMNS, CircuitBuilder, CustomGate, Var
from constraints.expression import Advice
from primitives.curve import AffinePoint, Curve
from primitives.field import inverse
from protocol.errors import ConstraintViolation

logger = logging.getLogger(__name__)

X, Y, BIT, LAMBDA1, LAMBDA2, XT, YT, ACC = range(REGION_COLUMNS)

AUX_LABEL = b"plonkish-fold/ecc-aux"


def ecc_gates() -> Tuple[CustomGate, ...]:
    x, y, bit = Advice(X), Advice(Y), Advice(BIT)
    l1, l2 = Advice(LAMBDA1), Advice(LAMBDA2)
    xt, yt = Advice(XT), Advice(YT)
    x_next, y_next = Advice(X, 1), Advice(Y, 1)
    acc, acc_next = Advice(ACC), Advice(ACC, 1)
    x_r = l1 * l1 - x - xt
    return (
        CustomGate("bits", (
            bit * bit - bit,
            acc_next - 2 * acc - bit,
        )),
        CustomGate("dadd", (
            l1 * (x - xt) - y + (2 * bit - 1) * yt,
            (l1 + l2) * (x - x_r) - 2 * y,
            x_next - l2 * l2 + x + x_r,
            y_next - l2 * (x - x_next) + y,
        )),
        CustomGate("double", (
            2 * l1 * y - 3 * x * x,
            x_next - l1 * l1 + 2 * x,
            y_next - l1 * (x - x_next) + y,
        )),
    )


def ecc_builder(field) -> CircuitBuilder:
    """A builder over `field` carrying the curve gates."""
    return CircuitBuilder(field, ecc_gates())


@dataclass(frozen=True)
class EcPoint:
    x: Var
    y: Var


class EccChip:
    """Curve gadgets on a builder whose field is the curve's base field."""

    def __init__(self, builder: CircuitBuilder, curve: Curve):
        if builder.modulus != curve.base_order:
            raise ValueError(f"{curve.name} coordinates do not live in the builder's field")
        self.builder = builder
        self.curve = curve
        self.modulus = builder.modulus

    # --- Values ---

    def value(self, p: EcPoint) -> AffinePoint:
        x, y = self.builder.value(p.x), self.builder.value(p.y)
        return None if (x, y) == (0, 0) else (x, y)

    def _sum(self, a: AffinePoint, b: AffinePoint) -> AffinePoint:
        curve = self.curve
        return curve.to_affine(curve.add(curve.from_affine(a), curve.from_affine(b)))

    def _times(self, a: AffinePoint, scalar: int) -> AffinePoint:
        curve = self.curve
        return curve.to_affine(curve.scalar_mul(curve.from_affine(a), scalar))

    def witness(self, affine: AffinePoint) -> EcPoint:
        x, y = affine if affine is not None else (0, 0)
        return EcPoint(self.builder.assign(x), self.builder.assign(y))

    def constant(self, affine: AffinePoint) -> EcPoint:
        x, y = affine if affine is not None else (0, 0)
        return EcPoint(self.builder.constant(x), self.builder.constant(y))

    def identity(self) -> EcPoint:
        return self.constant(None)

    # --- Basic gadgets ---

    def is_identity(self, p: EcPoint) -> Var:
        b = self.builder
        return b.mul(b.is_zero(p.x), b.is_zero(p.y))

    def assert_on_curve_or_identity(self, p: EcPoint) -> None:
        """(1 - is_identity) * (y^2 - x^3 - b) = 0."""
        b = self.builder
        y2 = b.mul(p.y, p.y)
        x3 = b.mul(b.mul(p.x, p.x), p.x)
        lhs = b.linear([(y2, 1), (x3, -1)], -self.curve.b)
        flag = self.is_identity(p)
        if not b.value(flag) and b.value(lhs):
            raise ConstraintViolation(
                f"point ({b.value(p.x)}, {b.value(p.y)}) is not on {self.curve.name}", row=b.num_rows
            )
        b.assert_equal(b.mul(flag, lhs), lhs)

    def select(self, cond: Var, p: EcPoint, q: EcPoint) -> EcPoint:
        b = self.builder
        return EcPoint(b.select(cond, p.x, q.x), b.select(cond, p.y, q.y))

    def negate(self, p: EcPoint) -> EcPoint:
        return EcPoint(p.x, self.builder.scale(p.y, -1))

    def assert_equal(self, p: EcPoint, q: EcPoint) -> None:
        self.builder.assert_equal(p.x, q.x)
        self.builder.assert_equal(p.y, q.y)

    def add(self, p: EcPoint, q: EcPoint) -> EcPoint:
        """Complete addition of two points on the curve (either may be the identity).

        One slope lambda serves both cases: lambda * (x2 - x1) = y2 - y1 when
        the x-coordinates differ, 2 * y1 * lambda = 3 * x1^2 when they agree.
        Flags then pick p, q, the identity (for p = -q) or the sum.
        """
        b = self.builder
        m = self.modulus
        x1, y1 = b.value(p.x), b.value(p.y)
        x2, y2 = b.value(q.x), b.value(q.y)

        p_id, q_id = self.is_identity(p), self.is_identity(q)
        dx = b.sub(q.x, p.x)
        dy = b.sub(q.y, p.y)
        same_x = b.is_zero(dx)
        distinct_x = b.negate_bool(same_x)

        if x1 != x2:
            slope = (y2 - y1) * inverse(x2 - x1, m) % m
        elif y1:
            slope = 3 * x1 * x1 * inverse(2 * y1, m) % m
        else:
            slope = 0
        lam = b.assign(slope)

        chord = b.sub(b.mul(lam, dx), dy)
        b.assert_zero_if(distinct_x, chord)
        tangent = b.linear([(b.mul(p.y, lam), 2), (b.mul(p.x, p.x), -3)])
        b.assert_zero_if(same_x, tangent)

        x3 = b.linear([(b.mul(lam, lam), 1), (p.x, -1), (q.x, -1)])
        y3 = b.sub(b.mul(lam, b.sub(p.x, x3)), p.y)

        opposite = b.mul(same_x, b.is_zero(b.add(p.y, q.y)))
        result = self.select(opposite, self.identity(), EcPoint(x3, y3))
        result = self.select(q_id, p, result)
        return self.select(p_id, q, result)

    # --- Scalar multiplication ---

    def decompose(self, scalar: Var, n: int) -> List[Var]:
        """Bits of scalar, most significant first; fails unless scalar < 2^n."""
        b = self.builder
        value = b.value(scalar)
        if value >> n:
            raise ConstraintViolation(f"value {value} does not fit in {n} bits", row=b.num_rows)
        acc = b.constant(0)
        bits = []
        for i in range(n):
            bit = b.assign((value >> (n - 1 - i)) & 1)
            b.gate_row([None, None, bit] + [None] * (ACC - BIT - 1) + [acc], "bits")
            acc = b.assign((value >> (n - 1 - i)))
            bits.append(bit)
        b.gate_row([None] * ACC + [acc])
        b.assert_equal(acc, scalar)
        return bits

    def ladder(self, t: EcPoint, scalar: Var, n: int) -> Tuple[EcPoint, List[Var]]:
        """(2^n + 2s + 1) * t for the n-bit value s of scalar; t on the curve, not the identity."""
        b = self.builder
        m = self.modulus
        s = b.value(scalar)
        if s >> n:
            raise ConstraintViolation(f"scalar {s} does not fit in {n} bits", row=b.num_rows)
        tx, ty = b.value(t.x), b.value(t.y)
        if ty == 0:
            raise ConstraintViolation("ladder base is the identity or not on the curve", row=b.num_rows)

        # The double row must sit directly above the first dadd row
        acc = b.constant(0)

        # A_0 = 2T
        slope = 3 * tx * tx * inverse(2 * ty, m) % m
        ax = (slope * slope - 2 * tx) % m
        ay = (slope * (tx - ax) - ty) % m
        b.gate_row([t.x, t.y, None, b.assign(slope)], "double")

        bits = []
        for i in range(n):
            bit_value = (s >> (n - 1 - i)) & 1
            yb = ty if bit_value else (-ty) % m
            if ax == tx:
                raise ConstraintViolation("exceptional addition in ladder", row=b.num_rows)
            l1 = (ay - yb) * inverse(ax - tx, m) % m
            xr = (l1 * l1 - ax - tx) % m
            if xr == ax:
                raise ConstraintViolation("exceptional addition in ladder", row=b.num_rows)
            l2 = (2 * ay * inverse(ax - xr, m) - l1) % m
            nx = (l2 * l2 - ax - xr) % m
            ny = (l2 * (ax - nx) - ay) % m

            bit = b.assign(bit_value)
            b.gate_row(
                [b.assign(ax), b.assign(ay), bit, b.assign(l1), b.assign(l2), t.x, t.y, acc],
                "dadd", "bits",
            )
            bits.append(bit)
            acc = b.assign(s >> (n - 1 - i))
            ax, ay = nx, ny

        out = EcPoint(b.assign(ax), b.assign(ay))
        b.gate_row([out.x, out.y] + [None] * (ACC - Y - 1) + [acc])
        b.assert_equal(acc, scalar)
        return out, bits

    def mul(self, t: EcPoint, scalar: Var, n: int) -> EcPoint:
        """(2^n + 2s + 1) * t for a point t on the curve or the identity."""
        is_id = self.is_identity(t)
        aux = self.constant(self.curve.to_affine(self.curve.hash_to_point(AUX_LABEL, 0)))
        product, _ = self.ladder(self.select(is_id, aux, t), scalar, n)
        return self.select(is_id, self.identity(), product)

    def _fixed_ladder(self, base: AffinePoint, scalar: Var, n: int) -> Tuple[EcPoint, AffinePoint]:
        """Ladder over H = base / 2: returns (2^n + 1) H + s * base and the offset (2^n + 1) H."""
        half = self._times(base, inverse(2, self.curve.order))
        out, _ = self.ladder(self.constant(half), scalar, n)
        return out, self._times(half, (1 << n) + 1)

    def fixed_msm(self, bases: Sequence[AffinePoint], scalars: Sequence[Var], bits: Sequence[int]) -> EcPoint:
        """sum_i s_i * bases[i], each s_i range-checked to bits[i] bits; offsets are removed once."""
        if not (len(bases) == len(scalars) == len(bits)):
            raise ValueError(f"{len(bases)} bases, {len(scalars)} scalars and {len(bits)} bit widths")
        acc = self.identity()
        offset = None
        for base, scalar, n in zip(bases, scalars, bits):
            out, term_offset = self._fixed_ladder(base, scalar, n)
            acc = self.add(acc, out)
            offset = self._sum(offset, term_offset)
        logger.debug("fixed-base msm over %d terms: %d rows", len(bases), self.builder.num_rows)
        return self.add(acc, self.constant(self._times(offset, -1)))
