"""Gate polynomial expressions.

An expression is an immutable tree over column queries, challenges and the
relaxation scalar u. Python operators build the tree:

    a, b, c = Advice(0), Advice(1), Advice(2)
    q = Fixed(0)
    gate = q * (a * b - c)

Degree counts only the variables that are folded (advice cells, challenges
and u); fixed columns and constants are part of the circuit description and
have degree 0. Constants are plain integers, reduced by the field of the
context an expression is evaluated in.
"""

from dataclasses import dataclass
from typing import Optional, Union


ExprLike = Union["Expression", int]


class Expression:
    """Base class of expression nodes."""

    def degree(self) -> int:
        raise NotImplementedError

    def homogenize(self, degree: int) -> "Expression":
        """Return an equivalent expression with every monomial of exactly `degree`.

        Missing degree is made up with powers of u, so that the result
        evaluated on a strict assignment (u = 1) equals the original.
        """
        if degree < self.degree():
            raise ValueError(f"cannot homogenize degree-{self.degree()} expression to {degree}")
        return self._homogenize(degree)

    def _homogenize(self, k: int) -> "Expression":
        raise NotImplementedError

    def map_columns(self, advice_offset: int = 0, fixed_offset: int = 0) -> "Expression":
        """Shift every advice/fixed column index (used to embed a circuit in a larger one)."""
        raise NotImplementedError

    # --- Operators ---

    def __add__(self, other: ExprLike) -> "Expression":
        return Sum(self, _lift(other))

    def __radd__(self, other: ExprLike) -> "Expression":
        return Sum(_lift(other), self)

    def __sub__(self, other: ExprLike) -> "Expression":
        return Sum(self, Negated(_lift(other)))

    def __rsub__(self, other: ExprLike) -> "Expression":
        return Sum(_lift(other), Negated(self))

    def __mul__(self, other: ExprLike) -> "Expression":
        if isinstance(other, int):
            return Scaled(self, other)
        return Product(self, _lift(other))

    def __rmul__(self, other: ExprLike) -> "Expression":
        if isinstance(other, int):
            return Scaled(self, other)
        return Product(_lift(other), self)

    def __neg__(self) -> "Expression":
        return Negated(self)


def _lift(value: ExprLike) -> Expression:
    if isinstance(value, Expression):
        return value
    if isinstance(value, int):
        return Constant(value)
    raise TypeError(f"cannot use {type(value).__name__} in an expression")


def _u_power(k: int) -> Optional[Expression]:
    result = None
    for _ in range(k):
        result = Relaxation() if result is None else Product(result, Relaxation())
    return result


def _times_u_power(expr: Expression, k: int) -> Expression:
    u_k = _u_power(k)
    return expr if u_k is None else Product(expr, u_k)


# --- Leaves ---

@dataclass(frozen=True, eq=True)
class Constant(Expression):
    value: int

    def __post_init__(self):
        object.__setattr__(self, "value", int(self.value))

    def degree(self) -> int:
        return 0

    def _homogenize(self, k):
        return _times_u_power(self, k)

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return self


@dataclass(frozen=True, eq=True)
class Fixed(Expression):
    """Query of a fixed (preprocessed) column: selectors and lookup tables."""
    index: int
    rotation: int = 0

    def degree(self) -> int:
        return 0

    def _homogenize(self, k):
        return _times_u_power(self, k)

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return Fixed(self.index + fixed_offset, self.rotation)


@dataclass(frozen=True, eq=True)
class Advice(Expression):
    """Query of a witness column; index is global across commitment rounds."""
    index: int
    rotation: int = 0

    def degree(self) -> int:
        return 1

    def _homogenize(self, k):
        return _times_u_power(self, k - 1)

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return Advice(self.index + advice_offset, self.rotation)


@dataclass(frozen=True, eq=True)
class Challenge(Expression):
    index: int

    def degree(self) -> int:
        return 1

    def _homogenize(self, k):
        return _times_u_power(self, k - 1)

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return self


@dataclass(frozen=True, eq=True)
class Relaxation(Expression):
    """The relaxation scalar u of the instance."""

    def degree(self) -> int:
        return 1

    def _homogenize(self, k):
        return _times_u_power(self, k - 1)

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return self


# --- Composites ---

@dataclass(frozen=True, eq=True)
class Sum(Expression):
    left: Expression
    right: Expression

    def degree(self) -> int:
        return max(self.left.degree(), self.right.degree())

    def _homogenize(self, k):
        return Sum(self.left._homogenize(k), self.right._homogenize(k))

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return Sum(
            self.left.map_columns(advice_offset, fixed_offset),
            self.right.map_columns(advice_offset, fixed_offset),
        )


@dataclass(frozen=True, eq=True)
class Product(Expression):
    left: Expression
    right: Expression

    def degree(self) -> int:
        return self.left.degree() + self.right.degree()

    def _homogenize(self, k):
        left_degree = self.left.degree()
        return Product(self.left._homogenize(left_degree), self.right._homogenize(k - left_degree))

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return Product(
            self.left.map_columns(advice_offset, fixed_offset),
            self.right.map_columns(advice_offset, fixed_offset),
        )


@dataclass(frozen=True, eq=True)
class Negated(Expression):
    expr: Expression

    def degree(self) -> int:
        return self.expr.degree()

    def _homogenize(self, k):
        return Negated(self.expr._homogenize(k))

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return Negated(self.expr.map_columns(advice_offset, fixed_offset))


@dataclass(frozen=True, eq=True)
class Scaled(Expression):
    expr: Expression
    factor: int

    def __post_init__(self):
        object.__setattr__(self, "factor", int(self.factor))

    def degree(self) -> int:
        return self.expr.degree()

    def _homogenize(self, k):
        return Scaled(self.expr._homogenize(k), self.factor)

    def map_columns(self, advice_offset=0, fixed_offset=0):
        return Scaled(self.expr.map_columns(advice_offset, fixed_offset), self.factor)
