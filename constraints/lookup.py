"""Log-derivative lookup argument, compiled into ordinary gates.

A lookup asks that on every row where the selector q is set, the input
expression f takes a value present in the fixed table column t. With a
challenge beta, this holds iff

    sum_i q_i / (beta + f_i) == sum_i m_i / (beta + t_i)

where m_i counts how often t_i is looked up. The argument adds per lookup:

    round 0:  m          multiplicities (committed before beta is known)
    round 1:  h, g, z    h = q / (beta + f), g = m / (beta + t),
                         z running sum of h - g

and three gates, all of degree <= 1 + max(1, deg f):

    h * (beta + f) - q = 0
    g * (beta + t) - m = 0
    z(next) - z - h + g = 0        (cyclic, so the sums must agree)

Because these are plain gates they fold like any other constraint; only the
witness side needs the helpers below.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from constraints.base import RowContext
from constraints.expression import Advice, Challenge, Expression, Fixed
from constraints.graph_evaluator import GraphEvaluator
from primitives.field import FF, batch_inverse, ff_matrix, ints
from protocol.errors import ConstraintViolation

logger = logging.getLogger(__name__)

BETA = Challenge(0)
HELPERS_PER_LOOKUP = 3


@dataclass(frozen=True)
class Lookup:
    """input must lie in fixed column `table` wherever fixed column `selector` is non-zero."""
    input: Expression
    table: int
    selector: int

    def map_columns(self, advice_offset: int = 0, fixed_offset: int = 0) -> "Lookup":
        return Lookup(
            self.input.map_columns(advice_offset, fixed_offset),
            self.table + fixed_offset,
            self.selector + fixed_offset,
        )


def multiplicity_column(num_advice: int, j: int) -> int:
    return num_advice + j


def helper_columns_start(num_advice: int, num_lookups: int, j: int) -> int:
    return num_advice + num_lookups + HELPERS_PER_LOOKUP * j


def compile_lookups(lookups: Sequence[Lookup], num_advice: int) -> List:
    """Return (name, expression) pairs of the three gates of every lookup."""
    n = len(lookups)
    gates = []
    for j, lookup in enumerate(lookups):
        m = Advice(multiplicity_column(num_advice, j))
        start = helper_columns_start(num_advice, n, j)
        h, g, z = Advice(start), Advice(start + 1), Advice(start + 2)
        q, t = Fixed(lookup.selector), Fixed(lookup.table)
        gates.append((f"lookup_{j}_input", h * (BETA + lookup.input) - q))
        gates.append((f"lookup_{j}_table", g * (BETA + t) - m))
        gates.append((f"lookup_{j}_sum", Advice(start + 2, 1) - z - h + g))
    return gates


# --- Witness side ---

def _inputs(lookup: Lookup, ctx: RowContext) -> List[int]:
    return ints(GraphEvaluator(lookup.input).evaluate(ctx))


def check_lookups(lookups: Sequence[Lookup], ctx: RowContext) -> None:
    """Raise ConstraintViolation at the first selected row whose input is not in its table."""
    for j, lookup in enumerate(lookups):
        table = set(ints(ctx.fixed(lookup.table)))
        selector = ints(ctx.fixed(lookup.selector))
        for row, value in enumerate(_inputs(lookup, ctx)):
            if selector[row] and value not in table:
                raise ConstraintViolation(f"lookup {j} input {value} not in table", row=row)


def multiplicities(lookups: Sequence[Lookup], ctx: RowContext) -> FF:
    """Multiplicity columns, one row per lookup (shape (L, num_rows)).

    Repeated table values get their whole count on their first row.
    """
    rows = []
    for j, lookup in enumerate(lookups):
        table = ints(ctx.fixed(lookup.table))
        first_row = {}
        for row, value in enumerate(table):
            first_row.setdefault(value, row)
        selector = ints(ctx.fixed(lookup.selector))
        counts = [0] * ctx.num_rows
        for row, value in enumerate(_inputs(lookup, ctx)):
            if not selector[row]:
                continue
            if value not in first_row:
                raise ConstraintViolation(f"lookup {j} input {value} not in table", row=row)
            counts[first_row[value]] += 1
        rows.append(counts)
    return ff_matrix(rows, width=ctx.num_rows, field=ctx.field)


def helper_columns(lookups: Sequence[Lookup], ctx: RowContext, multiplicity: FF, beta) -> FF:
    """Round-1 columns h, g, z of every lookup (shape (3L, num_rows)).

    ctx must expose the round-0 columns (user advice); z starts at 0.
    """
    field = ctx.field
    beta = field(int(beta) % field.order)
    rows = []
    for j, lookup in enumerate(lookups):
        f = field(_inputs(lookup, ctx))
        q = ctx.fixed(lookup.selector)
        t = ctx.fixed(lookup.table)
        h = q * batch_inverse(f + beta)
        g = multiplicity[j] * batch_inverse(t + beta)
        diff = ints(h - g)
        z = [0] * ctx.num_rows
        acc = 0
        for row in range(ctx.num_rows - 1):
            acc = (acc + diff[row]) % field.order
            z[row + 1] = acc
        rows.extend([ints(h), ints(g), z])
    logger.debug("lookup helpers computed for %d lookups", len(lookups))
    return ff_matrix(rows, width=ctx.num_rows, field=field)
