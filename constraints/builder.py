"""Arena-based builder for circuits over the standard 4-wire Plonk gate.

Every row of the region enforces

    q_m * w0 * w1 + q_0 * w0 + q_1 * w1 + q_2 * w2 + q_3 * w3 + q_c = 0

with six fixed selector columns. A builder may also carry custom gates
(CustomGate): constraint sets over eight region columns, read at the row
and the next one, each switched on row by row by a selector of its own.
The builder works over any galois prime field (FF unless given).

Values live in an arena of variables addressed by index; rows refer to
variables, never to each other, so a circuit that checks other circuits
stays a flat, acyclic table.

When the layout is produced, every cell a variable was placed in is chained
to its previous placement by a copy constraint, and variables merged with
assert_equal share one chain. The layout depends only on the sequence of
calls, not on the values, so a synthesizer that makes the same calls for
every input always produces the same circuit.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from constraints.expression import Advice, Expression, Fixed
from constraints.system import Cell, ConstraintSystem, Gate
from primitives.field import FF, ff_matrix, inverse
from protocol.config import DEFAULT_MAX_DEGREE
from protocol.errors import ConstraintViolation

logger = logging.getLogger(__name__)

NUM_WIRES = 4
NUM_SELECTORS = 6
REGION_COLUMNS = 8
Q_M, Q_0, Q_1, Q_2, Q_3, Q_C = range(NUM_SELECTORS)


def standard_gate(advice_offset: int = 0, fixed_offset: int = 0) -> Expression:
    """The 4-wire gate over advice columns advice_offset.. and selectors fixed_offset.."""
    w = [Advice(advice_offset + i) for i in range(NUM_WIRES)]
    q = [Fixed(fixed_offset + i) for i in range(NUM_SELECTORS)]
    return (
        q[Q_M] * w[0] * w[1]
        + q[Q_0] * w[0]
        + q[Q_1] * w[1]
        + q[Q_2] * w[2]
        + q[Q_3] * w[3]
        + q[Q_C]
    )


@dataclass(frozen=True)
class CustomGate:
    """Constraints over region columns 0..7 (rotation 0 or 1), enabled by one selector."""
    name: str
    constraints: Tuple[Expression, ...]


@dataclass(frozen=True)
class Var:
    """Handle of a variable in the builder's arena."""
    index: int


@dataclass
class Layout:
    """A finished region: wire values, selectors, copy constraints, public cells.

    Cells are (column, row) pairs local to the region. Selector columns are
    the six standard ones, then one per custom gate.
    """
    num_rows: int
    wires: List[List[int]]
    selectors: List[List[int]]
    copies: List[Tuple[Tuple[int, int], Tuple[int, int]]]
    public_cells: List[Tuple[int, int]]


class CircuitBuilder:
    """Records region rows over an arena of variables."""

    def __init__(self, field=FF, custom_gates: Sequence[CustomGate] = ()):
        self.field = field
        self.modulus = field.order
        self.custom_gates = tuple(custom_gates)
        self._gate_selector = {
            gate.name: NUM_SELECTORS + i for i, gate in enumerate(self.custom_gates)
        }
        self.num_columns = REGION_COLUMNS if self.custom_gates else NUM_WIRES
        self.num_selectors = NUM_SELECTORS + len(self.custom_gates)

        self.values: List[int] = []
        self._placements: List[List[Tuple[int, int]]] = []
        self._parent: List[int] = []
        self._rows: List[Tuple[List[Optional[Var]], List[int]]] = []
        self._constants: Dict[int, Var] = {}
        self._public: List[Var] = []

    @property
    def num_rows(self) -> int:
        return len(self._rows)

    def value(self, var: Var) -> int:
        return self.values[var.index]

    def gates(self, advice_offset: int = 0, fixed_offset: int = 0) -> List[Gate]:
        """The standard gate and every custom constraint times its selector."""
        gates = [Gate("standard", standard_gate(advice_offset, fixed_offset))]
        for gate in self.custom_gates:
            selector = Fixed(fixed_offset + self._gate_selector[gate.name])
            for j, constraint in enumerate(gate.constraints):
                gates.append(Gate(f"{gate.name}_{j}", selector * constraint.map_columns(advice_offset)))
        return gates

    # --- Arena ---

    def assign(self, value: int) -> Var:
        """A new free variable holding `value`."""
        var = Var(len(self.values))
        self.values.append(int(value) % self.modulus)
        self._placements.append([])
        self._parent.append(var.index)
        return var

    def _row(self, wires: Sequence[Optional[Var]], enable: Sequence[str] = (), **selectors: int) -> None:
        if len(wires) > self.num_columns:
            raise ValueError(f"row of {len(wires)} wires, the region has {self.num_columns} columns")
        wires = list(wires) + [None] * (self.num_columns - len(wires))
        q = [0] * self.num_selectors
        for name, value in selectors.items():
            q[_SELECTOR_INDEX[name]] = int(value) % self.modulus
        for name in enable:
            q[self._gate_selector[name]] = 1
        row = len(self._rows)
        for column, var in enumerate(wires):
            if var is not None:
                self._placements[var.index].append((column, row))
        self._rows.append((wires, q))

    def custom(self, wires: Sequence[Optional[Var]], **selectors: int) -> None:
        """A raw row with the given selectors; the caller keeps the values consistent."""
        self._row(wires, **selectors)

    def gate_row(self, wires: Sequence[Optional[Var]], *enable: str) -> None:
        """A row over the region columns with the named custom gates switched on."""
        self._row(wires, enable)

    def _find(self, i: int) -> int:
        while self._parent[i] != i:
            self._parent[i] = self._parent[self._parent[i]]
            i = self._parent[i]
        return i

    # --- Gates ---

    def constant(self, value: int) -> Var:
        """Variable fixed to `value`; one row per distinct constant."""
        value = int(value) % self.modulus
        var = self._constants.get(value)
        if var is None:
            var = self.assign(value)
            self._row([var], q0=1, qc=-value)
            self._constants[value] = var
        return var

    def add(self, a: Var, b: Var) -> Var:
        out = self.assign(self.value(a) + self.value(b))
        self._row([a, b, out], q0=1, q1=1, q2=-1)
        return out

    def sub(self, a: Var, b: Var) -> Var:
        out = self.assign(self.value(a) - self.value(b))
        self._row([a, b, out], q0=1, q1=-1, q2=-1)
        return out

    def mul(self, a: Var, b: Var) -> Var:
        out = self.assign(self.value(a) * self.value(b))
        self._row([a, b, out], qm=1, q2=-1)
        return out

    def add_constant(self, a: Var, c: int) -> Var:
        out = self.assign(self.value(a) + c)
        self._row([a, out], q0=1, q1=-1, qc=c)
        return out

    def scale(self, a: Var, c: int) -> Var:
        out = self.assign(self.value(a) * c)
        self._row([a, out], q0=c, q1=-1)
        return out

    def linear(self, terms: Sequence[Tuple[Var, int]], constant: int = 0) -> Var:
        """sum(c * v) + constant, three terms per row (accumulated beyond three)."""
        terms = list(terms)
        if not terms:
            return self.constant(constant)
        acc: Optional[Var] = None
        acc_constant = constant
        while terms:
            chunk_size = 3 if acc is None else 2
            chunk, terms = terms[:chunk_size], terms[chunk_size:]
            if acc is not None:
                chunk = [(acc, 1)] + chunk
            value = (acc_constant + sum(self.value(v) * c for v, c in chunk)) % self.modulus
            out = self.assign(value)
            wires = [v for v, _ in chunk] + [None] * (3 - len(chunk)) + [out]
            coeffs = {f"q{i}": c for i, (_, c) in enumerate(chunk)}
            self._row(wires, q3=-1, qc=acc_constant, **coeffs)
            acc, acc_constant = out, 0
        return acc

    def mul_add(self, a: Var, b: Var, c: Var) -> Var:
        """a * b + c in one row."""
        out = self.assign(self.value(a) * self.value(b) + self.value(c))
        self._row([a, b, c, out], qm=1, q2=1, q3=-1)
        return out

    def inverse(self, a: Var) -> Var:
        """1 / a; fails for a == 0."""
        value = self.value(a)
        if value == 0:
            raise ConstraintViolation(f"variable {a.index} has no inverse", row=self.num_rows)
        out = self.assign(inverse(value, self.modulus))
        self._row([a, out], qm=1, qc=-1)
        return out

    def assert_zero(self, a: Var) -> None:
        if self.value(a) != 0:
            raise ConstraintViolation(f"variable {a.index} is {self.value(a)}, expected 0", row=self.num_rows)
        self._row([a], q0=1)

    def assert_equal(self, a: Var, b: Var) -> None:
        """Merge a and b; enforced with copy constraints, no extra row."""
        if self.value(a) != self.value(b):
            raise ConstraintViolation(
                f"variables {a.index} and {b.index} differ ({self.value(a)} != {self.value(b)})"
            )
        ra, rb = self._find(a.index), self._find(b.index)
        if ra != rb:
            self._parent[max(ra, rb)] = min(ra, rb)

    def is_zero(self, a: Var) -> Var:
        """Boolean flag, 1 iff a == 0.

        a * inv + flag - 1 = 0 and a * flag = 0 leave no choice for flag.
        """
        value = self.value(a)
        inv = self.assign(inverse(value, self.modulus) if value else 0)
        flag = self.assign(0 if value else 1)
        self._row([a, inv, flag], qm=1, q2=1, qc=-1)
        self._row([a, flag], qm=1)
        return flag

    def negate_bool(self, flag: Var) -> Var:
        """1 - flag."""
        out = self.assign(1 - self.value(flag))
        self._row([flag, out], q0=1, q1=1, qc=-1)
        return out

    def select(self, cond: Var, a: Var, b: Var) -> Var:
        """cond ? a : b for a boolean cond."""
        diff = self.sub(a, b)
        return self.mul_add(cond, diff, b)

    def assert_zero_if(self, cond: Var, a: Var) -> None:
        """cond * a = 0."""
        if self.value(cond) and self.value(a):
            raise ConstraintViolation(
                f"variable {a.index} is not zero under an active condition", row=self.num_rows
            )
        self._row([cond, a], qm=1)

    def assert_equal_if(self, cond: Var, a: Var, b: Var) -> None:
        """cond * (a - b) = 0."""
        if self.value(cond) and self.value(a) != self.value(b):
            raise ConstraintViolation(
                f"variables {a.index} and {b.index} differ under an active condition",
                row=self.num_rows,
            )
        diff = self.sub(a, b)
        self._row([cond, diff], qm=1)

    def assert_constant_if(self, cond: Var, a: Var, value: int) -> None:
        """cond * (a - value) = 0."""
        if self.value(cond) and self.value(a) != int(value) % self.modulus:
            raise ConstraintViolation(
                f"variable {a.index} is not {value} under an active condition", row=self.num_rows
            )
        diff = self.add_constant(a, -value)
        self._row([cond, diff], qm=1)

    def public(self, var: Var) -> None:
        """Expose var as the next public input (its first cell)."""
        if not self._placements[var.index]:
            self._row([var])
        self._public.append(var)

    # --- Layout ---

    def layout(self, num_rows: Optional[int] = None) -> Layout:
        """Wire and selector tables padded with zero rows to num_rows."""
        n = self.num_rows if num_rows is None else num_rows
        if n < self.num_rows:
            raise ValueError(f"region needs {self.num_rows} rows, only {n} available")

        wires = [[0] * n for _ in range(self.num_columns)]
        selectors = [[0] * n for _ in range(self.num_selectors)]
        for row, (row_wires, q) in enumerate(self._rows):
            for column, var in enumerate(row_wires):
                if var is not None:
                    wires[column][row] = self.values[var.index]
            for k in range(self.num_selectors):
                selectors[k][row] = q[k]

        # Chain every equivalence class of placements
        classes: Dict[int, List[Tuple[int, int]]] = {}
        for i, cells in enumerate(self._placements):
            if cells:
                classes.setdefault(self._find(i), []).extend(cells)
        copies = []
        for cells in classes.values():
            cells.sort(key=lambda c: (c[1], c[0]))
            copies.extend(zip(cells, cells[1:]))

        public_cells = [self._placements[v.index][0] for v in self._public]
        logger.debug("builder layout: %d rows used of %d, %d copies", self.num_rows, n, len(copies))
        return Layout(n, wires, selectors, copies, public_cells)

    def to_system(self, num_rows: Optional[int] = None, max_degree: int = DEFAULT_MAX_DEGREE):
        """Stand-alone ConstraintSystem of this region and its assignment."""
        layout = self.layout(num_rows)
        system = ConstraintSystem(
            num_rows=layout.num_rows,
            num_advice=self.num_columns,
            fixed=ff_matrix(layout.selectors, width=layout.num_rows, field=self.field),
            gates=self.gates(),
            copy_constraints=[(Cell(*a), Cell(*b)) for a, b in layout.copies],
            public_cells=[Cell(*c) for c in layout.public_cells],
            max_degree=max_degree,
            field=self.field,
        )
        return system, ff_matrix(layout.wires, width=layout.num_rows, field=self.field)


_SELECTOR_INDEX = {"qm": Q_M, "q0": Q_0, "q1": Q_1, "q2": Q_2, "q3": Q_3, "qc": Q_C}
