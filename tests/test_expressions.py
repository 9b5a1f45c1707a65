"""Tests for gate expressions, homogenization and the graph evaluator."""

import numpy as np
import pytest

from constraints.base import FoldContext, RowContext
from constraints.expression import Advice, Challenge, Constant, Fixed, Relaxation
from constraints.graph_evaluator import GraphEvaluator
from primitives.field import FF, P, ff_matrix, ints


def _row_context(advice, fixed=None, challenges=(0,), u=1):
    advice = ff_matrix(advice)
    n = advice.shape[1]
    fixed = ff_matrix(fixed if fixed is not None else [], width=n)
    return RowContext(list(advice), fixed, FF(list(challenges)), u)


class TestDegree:

    def test_fixed_and_constants_have_degree_zero(self) -> None:
        assert (Fixed(0) * Constant(5)).degree() == 0

    def test_products_add_degrees(self) -> None:
        a, b = Advice(0), Advice(1)
        assert (Fixed(0) * a * b).degree() == 2
        assert (a * b * Challenge(0) + a).degree() == 3

    def test_sum_takes_maximum(self) -> None:
        assert (Advice(0) * Advice(1) + Advice(2) + 7).degree() == 2


class TestHomogenize:

    def test_constant_term_gets_u_power(self) -> None:
        expr = Advice(0) * Advice(1) - 3
        hom = expr.homogenize(2)
        assert hom.degree() == 2
        ctx = _row_context([[2], [5]], u=4)
        # a*b - 3*u^2 = 10 - 48
        assert ints(GraphEvaluator(hom).evaluate(ctx)) == [(10 - 48) % P]

    def test_strict_evaluation_unchanged(self) -> None:
        """At u = 1 the homogenized gate equals the original."""
        expr = Fixed(0) * (Advice(0) * Advice(1) - Advice(2)) + Advice(0) - 4
        ctx = _row_context([[1, 2, 3], [4, 5, 6], [7, 8, 9]], fixed=[[1, 0, 1]])
        raw = GraphEvaluator(expr).evaluate(ctx)
        hom = GraphEvaluator(expr.homogenize(3)).evaluate(ctx)
        assert np.array_equal(raw, hom)

    def test_cannot_lower_degree(self) -> None:
        with pytest.raises(ValueError):
            (Advice(0) * Advice(1)).homogenize(1)

    def test_map_columns(self) -> None:
        expr = Fixed(1) * Advice(2, 1) + Challenge(0)
        mapped = expr.map_columns(advice_offset=4, fixed_offset=7)
        assert mapped == Fixed(8) * Advice(6, 1) + Challenge(0)


class TestGraphEvaluator:

    def test_common_subexpressions_shared(self) -> None:
        """a*b appears twice (once as b*a) but is computed once."""
        a, b = Advice(0), Advice(1)
        evaluator = GraphEvaluator(a * b + b * a)
        muls = [c for c in evaluator.calculations if c.op == "mul"]
        assert len(muls) == 1

    def test_seeded_constants(self) -> None:
        evaluator = GraphEvaluator(Advice(0) * 5 + 2)
        assert evaluator.constants[:3] == [0, 1, 2]
        assert 5 in evaluator.constants

    def test_products_by_small_constants_simplified(self) -> None:
        a = Advice(0)
        ops = [c.op for c in GraphEvaluator(Constant(2) * a + Constant(1) * a).calculations]
        assert "double" in ops
        assert "mul" not in ops

    def test_rotation(self) -> None:
        """Advice(i, 1) reads the next row, cyclically."""
        ctx = _row_context([[1, 2, 3, 4]])
        result = GraphEvaluator(Advice(0, 1) - Advice(0)).evaluate(ctx)
        assert ints(result) == [1, 1, 1, (1 - 4) % P]

    def test_constant_result_broadcast(self) -> None:
        ctx = _row_context([[1, 2, 3]])
        assert ints(GraphEvaluator(Constant(7)).evaluate(ctx)) == [7, 7, 7]

    def test_challenge_and_relaxation(self) -> None:
        ctx = _row_context([[1, 2]], challenges=[10], u=3)
        result = GraphEvaluator(Advice(0) * Challenge(0) + Relaxation()).evaluate(ctx)
        assert ints(result) == [13, 23]

    def test_fold_context_polynomial(self) -> None:
        """On a + X*b the gate x*y - z becomes a polynomial whose value at X = r is the folded gate."""
        expr = Advice(0) * Advice(1) - Advice(2) * Relaxation()
        first = _row_context([[2], [3], [6]], u=1)
        second = _row_context([[3], [5], [15]], u=1)
        poly = GraphEvaluator(expr).evaluate(FoldContext.pairwise(first, second))
        coeffs = [ints(first.broadcast(c))[0] for c in poly.padded(3)]
        # E1 = 0, T = 2*5 + 3*3 - (6 + 15) = -2, E2 = 0
        assert coeffs == [0, P - 2, 0]
