"""Plonkish constraint system and its relaxed relation.

Layout of the witness (advice) columns, indexed globally:

    round 0:  user columns 0..num_advice-1, then one multiplicity per lookup
    round 1:  h, g, z per lookup (only present when there are lookups)

Round 0 is committed before the challenges are derived; round 1 may depend
on them. The relaxed relation over an instance (commitments, X,
challenges, u, E) and a witness (rounds, E) is, for every gate g and row i,

    hom_g(W, challenges, u)[i] == E[g][i]

with hom_g the gate homogenized to the system degree d, plus copy
constraints and public-input cells. A strict pair additionally has u = 1 and
E = 0.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from constraints.base import RowContext
from constraints.expression import Expression
from constraints.graph_evaluator import GraphEvaluator
from constraints.lookup import Lookup, check_lookups, compile_lookups
from primitives.commitment import PedersenCommitment
from primitives.field import FF, ff_matrix, ints
from protocol.config import DEFAULT_MAX_DEGREE
from protocol.errors import ConstraintViolation, DegreeOverflow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Gate:
    name: str
    expression: Expression


@dataclass(frozen=True)
class Cell:
    """A witness cell: global advice column and row."""
    column: int
    row: int


@dataclass(frozen=True)
class Violation:
    """Where a relation check failed.

    kind is "gate" (index = gate, row), "copy" (index = copy constraint),
    "public" (index = public input), "commitment" (index = round, or -1 for E)
    or "shape" (index = round, -1 for E, -2 for the instance's component
    counts). A pair with a shape violation is not evaluated any further.
    """
    kind: str
    index: int
    row: Optional[int] = None


class ConstraintSystem:
    """
    Immutable Plonkish circuit description.

    Args:
        num_rows: rows per column (the cyclic domain of rotations)
        num_advice: user witness columns (all committed in round 0)
        fixed: fixed columns as a (num_fixed, num_rows) matrix
        gates: Gate objects or bare expressions
        lookups: Lookup declarations over fixed table/selector columns
        copy_constraints: pairs of Cells that must hold equal values
        public_cells: cells exposed as the instance's public inputs X
        max_degree: gate degree bound (DegreeOverflow above it)
        field: galois field of the witness values (FF unless given)
    """

    def __init__(
        self,
        num_rows: int,
        num_advice: int,
        fixed,
        gates: Sequence[Union[Gate, Expression]],
        lookups: Sequence[Lookup] = (),
        copy_constraints: Sequence[Tuple[Cell, Cell]] = (),
        public_cells: Sequence[Cell] = (),
        max_degree: int = DEFAULT_MAX_DEGREE,
        field=FF,
    ):
        if num_rows < 1:
            raise ValueError(f"num_rows must be positive, got {num_rows}")
        self.num_rows = num_rows
        self.num_advice = num_advice
        self.field = field
        self.fixed = fixed if isinstance(fixed, np.ndarray) else ff_matrix(fixed, width=num_rows, field=field)
        if self.fixed.ndim != 2 or self.fixed.shape[1] != num_rows:
            raise ValueError(f"fixed columns must have shape (k, {num_rows}), got {self.fixed.shape}")

        self.lookups: Tuple[Lookup, ...] = tuple(lookups)
        n_lookups = len(self.lookups)
        self.user_gates: Tuple[Gate, ...] = tuple(
            g if isinstance(g, Gate) else Gate(f"gate_{i}", g) for i, g in enumerate(gates)
        )
        self.gates: Tuple[Gate, ...] = self.user_gates + tuple(
            Gate(name, expr) for name, expr in compile_lookups(self.lookups, num_advice)
        )

        if n_lookups:
            self.rounds: Tuple[int, ...] = (num_advice + n_lookups, 3 * n_lookups)
        else:
            self.rounds = (num_advice,)
        self.num_challenges = 1 if n_lookups else 0

        for a, b in copy_constraints:
            self._check_cell(a)
            self._check_cell(b)
        for cell in public_cells:
            self._check_cell(cell)
        self.copy_constraints: Tuple[Tuple[Cell, Cell], ...] = tuple(copy_constraints)
        self.public_cells: Tuple[Cell, ...] = tuple(public_cells)

        # Degree bound, checked once
        self.max_degree = max_degree
        degrees = []
        for i, gate in enumerate(self.gates):
            degree = gate.expression.degree()
            if degree > max_degree:
                raise DegreeOverflow(i, degree, max_degree)
            degrees.append(degree)
        self.gate_degrees: Tuple[int, ...] = tuple(degrees)
        self.degree = max(degrees + [1])

        self._homogenized = [
            GraphEvaluator(g.expression.homogenize(self.degree)) for g in self.gates
        ]
        self._raw = [GraphEvaluator(g.expression) for g in self.user_gates]
        logger.debug(
            "constraint system: %d rows, rounds %s, %d gates, degree %d",
            num_rows, self.rounds, len(self.gates), self.degree,
        )

    def _check_cell(self, cell: Cell) -> None:
        if not (0 <= cell.column < self.num_advice and 0 <= cell.row < self.num_rows):
            raise ValueError(f"cell {cell} outside the {self.num_advice}x{self.num_rows} user region")

    # --- Shape ---

    @property
    def num_gates(self) -> int:
        return len(self.gates)

    @property
    def num_public(self) -> int:
        return len(self.public_cells)

    @property
    def num_fixed(self) -> int:
        return self.fixed.shape[0]

    @property
    def commitment_size(self) -> int:
        """Commitment key size needed for every round matrix and the error matrix."""
        return max(max(self.rounds) * self.num_rows, self.num_gates * self.num_rows, 1)

    def fingerprint(self) -> bytes:
        """SHA-256 over everything that defines the circuit."""
        h = hashlib.sha256()
        h.update(repr((self.field.order, self.num_rows, self.num_advice, self.rounds, self.degree)).encode())
        for gate in self.gates:
            h.update(repr(gate.expression).encode())
        h.update(repr(self.copy_constraints).encode())
        h.update(repr(self.public_cells).encode())
        for value in ints(self.fixed):
            h.update(value.to_bytes(32, "big"))
        return h.digest()

    # --- Evaluation ---

    def columns(self, rounds: Sequence[FF]) -> List[FF]:
        """Flatten per-round matrices into the global advice column list."""
        return [column for matrix in rounds for column in matrix]

    def row_context(self, instance, witness) -> RowContext:
        return RowContext(self.columns(witness.rounds), self.fixed, instance.challenges, instance.u)

    def evaluate(self, instance, witness) -> FF:
        """Homogenized gate values, shape (num_gates, num_rows)."""
        if not self._homogenized:
            return self.field.Zeros((0, self.num_rows))
        ctx = self.row_context(instance, witness)
        return self.field(np.stack([g.evaluate(ctx) for g in self._homogenized]))

    def evaluators(self) -> List[GraphEvaluator]:
        """Compiled homogenized gates, in gate order."""
        return list(self._homogenized)

    # --- Relation checks ---

    def shape_violations(self, instance, witness) -> List[Violation]:
        """Components of a pair whose count or shape does not fit this system."""
        found: List[Violation] = []
        for k in range(max(len(witness.rounds), len(self.rounds))):
            if k >= len(witness.rounds) or k >= len(self.rounds):
                found.append(Violation("shape", k))
            elif np.shape(witness.rounds[k]) != (self.rounds[k], self.num_rows):
                found.append(Violation("shape", k))
        if np.shape(witness.error) != (self.num_gates, self.num_rows):
            found.append(Violation("shape", -1))
        if (len(instance.commitments) != len(self.rounds)
                or len(instance.public_inputs) != self.num_public
                or len(instance.challenges) != self.num_challenges):
            found.append(Violation("shape", -2))
        return found

    def violations(self, instance, witness, key=None) -> List[Violation]:
        """All failing checks of the relaxed relation (empty when satisfied)."""
        found = self.shape_violations(instance, witness)
        if found:
            return found

        values = self.evaluate(instance, witness)
        mismatch = np.argwhere(np.asarray(values != witness.error))
        for gate, row in mismatch:
            found.append(Violation("gate", int(gate), int(row)))

        order = self.field.order
        columns = self.columns(witness.rounds)
        for k, (a, b) in enumerate(self.copy_constraints):
            if columns[a.column][a.row] != columns[b.column][b.row]:
                found.append(Violation("copy", k, a.row))

        for k, cell in enumerate(self.public_cells):
            if int(instance.public_inputs[k]) % order != int(columns[cell.column][cell.row]):
                found.append(Violation("public", k, cell.row))

        if key is not None:
            scheme = PedersenCommitment(key)
            for k, matrix in enumerate(witness.rounds):
                if scheme.commit(matrix) != instance.commitments[k]:
                    found.append(Violation("commitment", k))
            if scheme.commit(witness.error) != instance.error_commitment:
                found.append(Violation("commitment", -1))

        return found

    def relaxed_is_satisfied(self, instance, witness, key=None) -> bool:
        found = self.violations(instance, witness, key)
        if found:
            logger.warning("relaxed relation fails: %s (%d violations)", found[0], len(found))
            return False
        return True

    def is_satisfied(self, instance, witness, key=None) -> bool:
        """Strict relation: u = 1, E = 0 and the relaxed checks."""
        u = int(instance.u) % self.field.order
        if u != 1:
            logger.warning("strict relation fails: u = %d", u)
            return False
        if np.any(np.asarray(witness.error != 0)):
            logger.warning("strict relation fails: non-zero error term")
            return False
        return self.relaxed_is_satisfied(instance, witness, key)

    def check_assignment(self, advice, public_inputs: Optional[Sequence[int]] = None) -> None:
        """Check a raw user assignment (num_advice, num_rows) before anything is committed.

        Gates are evaluated unrelaxed; lookups by table membership. Raises
        ConstraintViolation at the first failing gate and row.
        """
        advice = advice if isinstance(advice, np.ndarray) else ff_matrix(advice, width=self.num_rows, field=self.field)
        if advice.shape != (self.num_advice, self.num_rows):
            raise ValueError(
                f"assignment must have shape ({self.num_advice}, {self.num_rows}), got {advice.shape}"
            )
        ctx = RowContext(list(advice), self.fixed, self.field.Zeros(max(self.num_challenges, 1)), 1)

        for i, gate in enumerate(self._raw):
            values = ints(gate.evaluate(ctx))
            for row, value in enumerate(values):
                if value:
                    raise ConstraintViolation(f"gate {self.gates[i].name!r} not satisfied", gate=i, row=row)

        check_lookups(self.lookups, ctx)

        for k, (a, b) in enumerate(self.copy_constraints):
            if advice[a.column][a.row] != advice[b.column][b.row]:
                raise ConstraintViolation(
                    f"copy constraint {k} broken: {a} != {b}", row=a.row
                )

        if public_inputs is not None:
            if len(public_inputs) != self.num_public:
                raise ValueError(f"expected {self.num_public} public inputs, got {len(public_inputs)}")
            for k, cell in enumerate(self.public_cells):
                if int(advice[cell.column][cell.row]) != int(public_inputs[k]) % self.field.order:
                    raise ConstraintViolation(f"public input {k} does not match its cell", row=cell.row)
