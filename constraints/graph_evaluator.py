"""Compiled expression evaluation.

An expression tree is flattened once into a linear list of calculations that
address their operands by index:

    ValueSource("constant", i)       i-th entry of the deduplicated constants
    ValueSource("intermediate", i)   result of the i-th calculation

Identical sub-expressions are emitted once (the calculation itself is the
lookup key), subtraction written as a + (-b) becomes a single Sub, and
products by 0, 1 and 2 are simplified. Evaluation then runs the list in
order against a ConstraintContext, so the same compiled gate works on row
vectors and on folding polynomials alike.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from constraints.base import ConstraintContext
from constraints.expression import (
    Advice,
    Challenge,
    Constant,
    Expression,
    Fixed,
    Negated,
    Product,
    Relaxation,
    Scaled,
    Sum,
)

@dataclass(frozen=True, order=True)
class ValueSource:
    kind: str
    index: int


_ZERO = ValueSource("constant", 0)
_ONE = ValueSource("constant", 1)
_TWO = ValueSource("constant", 2)


@dataclass(frozen=True)
class Calculation:
    """One step of a compiled expression.

    op is one of: add, sub, mul, square, double, negate, store. Operands are
    ValueSources, except for store whose operand is a leaf query tuple:
    ("advice", column, rotation), ("fixed", column, rotation),
    ("challenge", index) or ("relaxation",).
    """
    op: str
    args: Tuple


class GraphEvaluator:
    """Expression compiled to an arena of calculations."""

    def __init__(self, expr: Expression):
        self.constants: List[int] = [0, 1, 2]
        self._constant_index: Dict[int, int] = {0: 0, 1: 1, 2: 2}
        self.calculations: List[Calculation] = []
        self._calculation_index: Dict[Calculation, int] = {}
        self.result = self._add_expression(expr)

    @property
    def num_intermediates(self) -> int:
        return len(self.calculations)

    # --- Compilation ---

    def _add_constant(self, value: int) -> ValueSource:
        index = self._constant_index.get(value)
        if index is None:
            index = len(self.constants)
            self.constants.append(value)
            self._constant_index[value] = index
        return ValueSource("constant", index)

    def _add_calculation(self, calculation: Calculation) -> ValueSource:
        index = self._calculation_index.get(calculation)
        if index is None:
            index = len(self.calculations)
            self.calculations.append(calculation)
            self._calculation_index[calculation] = index
        return ValueSource("intermediate", index)

    def _ordered(self, op: str, a: ValueSource, b: ValueSource) -> ValueSource:
        # Commutative ops are keyed with sorted operands so a*b and b*a share a slot
        if b < a:
            a, b = b, a
        return self._add_calculation(Calculation(op, (a, b)))

    def _add_expression(self, expr: Expression) -> ValueSource:
        if isinstance(expr, Constant):
            return self._add_constant(expr.value)

        if isinstance(expr, Advice):
            return self._add_calculation(Calculation("store", (("advice", expr.index, expr.rotation),)))

        if isinstance(expr, Fixed):
            return self._add_calculation(Calculation("store", (("fixed", expr.index, expr.rotation),)))

        if isinstance(expr, Challenge):
            return self._add_calculation(Calculation("store", (("challenge", expr.index),)))

        if isinstance(expr, Relaxation):
            return self._add_calculation(Calculation("store", (("relaxation",),)))

        if isinstance(expr, Negated):
            if isinstance(expr.expr, Constant):
                return self._add_constant(-expr.expr.value)
            a = self._add_expression(expr.expr)
            if a == _ZERO:
                return a
            return self._add_calculation(Calculation("negate", (a,)))

        if isinstance(expr, Sum):
            if isinstance(expr.right, Negated):
                a = self._add_expression(expr.left)
                b = self._add_expression(expr.right.expr)
                if a == _ZERO:
                    return self._add_calculation(Calculation("negate", (b,)))
                if b == _ZERO:
                    return a
                return self._add_calculation(Calculation("sub", (a, b)))
            a = self._add_expression(expr.left)
            b = self._add_expression(expr.right)
            if a == _ZERO:
                return b
            if b == _ZERO:
                return a
            return self._ordered("add", a, b)

        if isinstance(expr, Product):
            a = self._add_expression(expr.left)
            b = self._add_expression(expr.right)
            if a == _ZERO or b == _ZERO:
                return _ZERO
            if a == _ONE:
                return b
            if b == _ONE:
                return a
            if a == _TWO:
                return self._add_calculation(Calculation("double", (b,)))
            if b == _TWO:
                return self._add_calculation(Calculation("double", (a,)))
            if a == b:
                return self._add_calculation(Calculation("square", (a,)))
            return self._ordered("mul", a, b)

        if isinstance(expr, Scaled):
            if expr.factor == 0:
                return _ZERO
            if expr.factor == 1:
                return self._add_expression(expr.expr)
            a = self._add_expression(expr.expr)
            return self._ordered("mul", a, self._add_constant(expr.factor))

        raise TypeError(f"unsupported expression node {type(expr).__name__}")

    # --- Evaluation ---

    def evaluate(self, ctx: ConstraintContext):
        """Evaluate over all rows of `ctx`; constant results are broadcast."""
        constants = [ctx.constant(c) for c in self.constants]
        intermediates = [None] * len(self.calculations)

        def value(source: ValueSource):
            if source.kind == "constant":
                return constants[source.index]
            return intermediates[source.index]

        for i, calc in enumerate(self.calculations):
            op, args = calc.op, calc.args
            if op == "store":
                intermediates[i] = _load(ctx, args[0])
            elif op == "add":
                intermediates[i] = value(args[0]) + value(args[1])
            elif op == "sub":
                intermediates[i] = value(args[0]) - value(args[1])
            elif op == "mul":
                intermediates[i] = value(args[0]) * value(args[1])
            elif op == "square":
                v = value(args[0])
                intermediates[i] = v * v
            elif op == "double":
                v = value(args[0])
                intermediates[i] = v + v
            elif op == "negate":
                intermediates[i] = -value(args[0])
            else:
                raise ValueError(f"unknown calculation {op}")

        return ctx.broadcast(value(self.result))


def _load(ctx: ConstraintContext, query: Tuple):
    kind = query[0]
    if kind == "advice":
        return ctx.advice(query[1], query[2])
    if kind == "fixed":
        return ctx.fixed(query[1], query[2])
    if kind == "challenge":
        return ctx.challenge(query[1])
    return ctx.relaxation()
