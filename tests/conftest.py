"""
Pytest configuration and shared circuits for the folding tests.
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to the path so absolute imports work
# (tests/ is inside the repository, so parent is the root)
root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

from constraints.expression import Advice, Fixed  # noqa: E402
from constraints.lookup import Lookup  # noqa: E402
from constraints.system import Cell, ConstraintSystem  # noqa: E402
from primitives.commitment import CommitmentKey  # noqa: E402
from primitives.poseidon import PoseidonConfig  # noqa: E402

# Few rounds keep in-circuit hashing (and so the IVC tests) fast
SMALL_POSEIDON = PoseidonConfig(width=3, full_rounds=2, partial_rounds=1)


def mul_gate_system(num_rows: int = 1) -> ConstraintSystem:
    """One gate a * b - c = 0 over three advice columns, no selectors."""
    a, b, c = Advice(0), Advice(1), Advice(2)
    return ConstraintSystem(num_rows=num_rows, num_advice=3, fixed=[], gates=[a * b - c])


def selector_system() -> ConstraintSystem:
    """q * (a * b - c) over two rows with a public output and a copy a[1] == c[0]."""
    a, b, c = Advice(0), Advice(1), Advice(2)
    return ConstraintSystem(
        num_rows=2,
        num_advice=3,
        fixed=[[1, 1]],
        gates=[Fixed(0) * (a * b - c)],
        copy_constraints=[(Cell(0, 1), Cell(2, 0))],
        public_cells=[Cell(2, 1)],
    )


def range_lookup_system(first: int = 0) -> ConstraintSystem:
    """a must lie in the 4-row table {first, .., first + 3} on the rows selected by q; b = a * a."""
    a, b = Advice(0), Advice(1)
    return ConstraintSystem(
        num_rows=4,
        num_advice=2,
        fixed=[list(range(first, first + 4)), [1, 1, 1, 0]],
        gates=[b - a * a],
        lookups=[Lookup(a, table=0, selector=1)],
    )


@pytest.fixture
def poseidon_config() -> PoseidonConfig:
    return SMALL_POSEIDON


@pytest.fixture
def mul_system() -> ConstraintSystem:
    return mul_gate_system()


@pytest.fixture
def small_key() -> CommitmentKey:
    return CommitmentKey.setup(16, b"tests/pedersen")
