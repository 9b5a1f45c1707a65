"""Evaluation contexts for gate expressions.

A ConstraintContext supplies the leaves of an expression (column queries,
challenges, u, constants); the graph evaluator combines them with +, - and *.
The same compiled gate therefore evaluates in two algebras:

    RowContext   values are FF arrays over all rows (rotations are np.roll)
    FoldContext  values are FoldPolys: polynomials in the folding variable X
                 whose coefficients are FF arrays over all rows

Example:
    gate = GraphEvaluator(Advice(0) * Advice(1) - Advice(2) * Relaxation())

    # Relation check on one assignment
    errors = gate.evaluate(RowContext(columns, fixed, challenges, u))

    # Cross terms of w1 + X * w2
    poly = gate.evaluate(FoldContext.pairwise(ctx1, ctx2))
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np

from primitives.field import FF


class ConstraintContext(ABC):
    """Uniform interface for expression evaluation."""

    @abstractmethod
    def advice(self, index: int, rotation: int = 0):
        """Advice column `index` read at row + rotation (cyclic)."""

    @abstractmethod
    def fixed(self, index: int, rotation: int = 0):
        """Fixed column `index` read at row + rotation (cyclic)."""

    @abstractmethod
    def challenge(self, index: int):
        pass

    @abstractmethod
    def relaxation(self):
        pass

    @abstractmethod
    def constant(self, value: int):
        pass

    @abstractmethod
    def broadcast(self, value):
        """Expand a row-independent value to the shape of a column result."""


# --- Row algebra ---

class RowContext(ConstraintContext):
    """Evaluates an expression on every row of one assignment at once.

    Args:
        advice: sequence of advice columns (FF arrays of length num_rows),
            indexed globally across rounds
        fixed: field matrix (num_fixed, num_rows); its type fixes the field
        challenges: FF vector
        u: relaxation scalar
    """

    def __init__(self, advice: Sequence[FF], fixed: FF, challenges: FF, u):
        self._advice = advice
        self._fixed = fixed
        self._challenges = challenges
        self.field = type(fixed)
        self._u = self.field(int(u) % self.field.order)
        self.num_rows = fixed.shape[1]

    def advice(self, index: int, rotation: int = 0) -> FF:
        column = self._advice[index]
        return np.roll(column, -rotation) if rotation else column

    def fixed(self, index: int, rotation: int = 0) -> FF:
        column = self._fixed[index]
        return np.roll(column, -rotation) if rotation else column

    def challenge(self, index: int) -> FF:
        return self._challenges[index]

    def relaxation(self) -> FF:
        return self._u

    def constant(self, value: int) -> FF:
        return self.field(value % self.field.order)

    def broadcast(self, value) -> FF:
        if np.ndim(value) == 0:
            return self.field.Zeros(self.num_rows) + value
        return value


# --- Polynomial algebra ---

class FoldPoly:
    """Polynomial in the folding variable X with FF-array (or scalar) coefficients.

    coeffs[k] is the coefficient of X^k. Only ring operations are needed to
    evaluate a gate, so that is all this class implements.
    """

    __slots__ = ("coeffs",)

    def __init__(self, coeffs: List):
        self.coeffs = coeffs

    def degree(self) -> int:
        return len(self.coeffs) - 1

    def __add__(self, other: "FoldPoly") -> "FoldPoly":
        a, b = self.coeffs, other.coeffs
        if len(a) < len(b):
            a, b = b, a
        return FoldPoly([a[k] + b[k] if k < len(b) else a[k] for k in range(len(a))])

    def __neg__(self) -> "FoldPoly":
        return FoldPoly([-c for c in self.coeffs])

    def __sub__(self, other: "FoldPoly") -> "FoldPoly":
        return self + (-other)

    def __mul__(self, other: "FoldPoly") -> "FoldPoly":
        a, b = self.coeffs, other.coeffs
        out = [None] * (len(a) + len(b) - 1)
        for i, ai in enumerate(a):
            for j, bj in enumerate(b):
                term = ai * bj
                out[i + j] = term if out[i + j] is None else out[i + j] + term
        return FoldPoly(out)

    def padded(self, length: int) -> List:
        """Coefficients padded with zeros to `length` terms."""
        if len(self.coeffs) > length:
            raise ValueError(f"polynomial of degree {self.degree()} does not fit {length} terms")
        zero = type(self.coeffs[0])(0)
        return list(self.coeffs) + [zero] * (length - len(self.coeffs))


class FoldContext(ConstraintContext):
    """Evaluates an expression on a polynomial combination of assignments.

    Every folded variable v becomes sum_i B_i(X) * v_i, where v_i is its value
    in the i-th assignment and B_i is a basis polynomial (given by its int
    coefficients). Fixed columns and constants are the same in every
    assignment and stay constant polynomials.
    """

    def __init__(self, contexts: Sequence[RowContext], basis: Sequence[Sequence[int]]):
        if len(contexts) != len(basis):
            raise ValueError(f"{len(contexts)} assignments but {len(basis)} basis polynomials")
        self._contexts = contexts
        self.field = contexts[0].field
        order = self.field.order
        self._basis = [[self.field(int(c) % order) for c in poly] for poly in basis]
        self._length = max(len(poly) for poly in basis)
        self.num_rows = contexts[0].num_rows

    @classmethod
    def pairwise(cls, first: RowContext, second: RowContext) -> "FoldContext":
        """Context for first + X * second."""
        return cls([first, second], [[1], [0, 1]])

    def _combine(self, values) -> FoldPoly:
        coeffs = []
        for k in range(self._length):
            acc = None
            for value, poly in zip(values, self._basis):
                if k < len(poly) and poly[k] != 0:
                    term = value * poly[k] if poly[k] != 1 else value
                    acc = term if acc is None else acc + term
            coeffs.append(self.field(0) if acc is None else acc)
        return FoldPoly(coeffs)

    def advice(self, index: int, rotation: int = 0) -> FoldPoly:
        return self._combine([ctx.advice(index, rotation) for ctx in self._contexts])

    def fixed(self, index: int, rotation: int = 0) -> FoldPoly:
        return FoldPoly([self._contexts[0].fixed(index, rotation)])

    def challenge(self, index: int) -> FoldPoly:
        return self._combine([ctx.challenge(index) for ctx in self._contexts])

    def relaxation(self) -> FoldPoly:
        return self._combine([ctx.relaxation() for ctx in self._contexts])

    def constant(self, value: int) -> FoldPoly:
        return FoldPoly([self.field(value % self.field.order)])

    def broadcast(self, value: FoldPoly) -> FoldPoly:
        return FoldPoly([self._contexts[0].broadcast(c) for c in value.coeffs])
