"""Tests for ConstraintSystem: degree bound, strict/relaxed checks and assignments."""

import pytest

from constraints.expression import Advice
from constraints.system import Cell, ConstraintSystem, Violation
from primitives.commitment import CommitmentKey, PedersenCommitment
from primitives.field import FF, P, ff_matrix, ints
from protocol.data import Instance, Witness
from protocol.errors import ConstraintViolation, DegreeOverflow
from protocol.stages import build_strict_pair
from tests.conftest import SMALL_POSEIDON, mul_gate_system, selector_system

SELECTOR_ADVICE = [[2, 6], [3, 5], [6, 30]]


def strict_pair(system, advice, key=None):
    key = key or CommitmentKey.setup(system.commitment_size, b"tests/system")
    return build_strict_pair(system, PedersenCommitment(key), SMALL_POSEIDON, ff_matrix(advice))


class TestShape:

    def test_degree_computed_once(self) -> None:
        system = mul_gate_system()
        assert system.degree == 2
        assert system.gate_degrees == (2,)
        assert system.rounds == (3,)
        assert system.num_challenges == 0

    def test_degree_overflow(self) -> None:
        a = Advice(0)
        with pytest.raises(DegreeOverflow) as info:
            ConstraintSystem(num_rows=1, num_advice=1, fixed=[], gates=[a * a * a], max_degree=2)
        assert info.value.gate == 0
        assert info.value.degree == 3
        assert info.value.max_degree == 2

    def test_selectors_do_not_count_toward_degree(self) -> None:
        system = selector_system()
        assert system.degree == 2

    def test_linear_system_has_degree_one(self) -> None:
        system = ConstraintSystem(num_rows=2, num_advice=2, fixed=[], gates=[Advice(0) - Advice(1)])
        assert system.degree == 1

    def test_fixed_shape_checked(self) -> None:
        with pytest.raises(ValueError):
            ConstraintSystem(num_rows=2, num_advice=1, fixed=[[1, 2, 3]], gates=[Advice(0)])

    def test_cells_checked(self) -> None:
        with pytest.raises(ValueError):
            ConstraintSystem(
                num_rows=2, num_advice=1, fixed=[], gates=[Advice(0)], public_cells=[Cell(1, 0)]
            )

    def test_fingerprint_tracks_circuit(self) -> None:
        assert selector_system().fingerprint() == selector_system().fingerprint()
        assert selector_system().fingerprint() != mul_gate_system(2).fingerprint()


class TestCheckAssignment:

    def test_satisfying_assignment(self) -> None:
        selector_system().check_assignment(SELECTOR_ADVICE, public_inputs=[30])

    def test_failing_gate_reports_row(self) -> None:
        advice = [[2, 6], [3, 5], [6, 31]]
        with pytest.raises(ConstraintViolation) as info:
            selector_system().check_assignment(advice)
        assert info.value.gate == 0
        assert info.value.row == 1

    def test_broken_copy_constraint(self) -> None:
        advice = [[2, 7], [3, 5], [6, 35]]
        with pytest.raises(ConstraintViolation, match="copy constraint"):
            selector_system().check_assignment(advice)

    def test_wrong_public_input(self) -> None:
        with pytest.raises(ConstraintViolation, match="public input"):
            selector_system().check_assignment(SELECTOR_ADVICE, public_inputs=[31])

    def test_wrong_shape(self) -> None:
        with pytest.raises(ValueError):
            selector_system().check_assignment([[1, 2]])


class TestRelation:

    def test_strict_pair_satisfies(self) -> None:
        system = selector_system()
        key = CommitmentKey.setup(system.commitment_size, b"tests/system")
        instance, witness = strict_pair(system, SELECTOR_ADVICE, key)
        assert instance.u == 1
        assert ints(instance.public_inputs) == [30]
        assert system.is_satisfied(instance, witness, key)
        assert system.relaxed_is_satisfied(instance, witness, key)

    def test_trivial_pair_is_relaxed_satisfied(self) -> None:
        """The all-zero pair (u = 0, E = 0) satisfies the relaxed relation but not the strict one."""
        system = selector_system()
        instance, witness = Instance.trivial(system), Witness.trivial(system)
        assert instance.is_trivial()
        assert system.relaxed_is_satisfied(instance, witness)
        assert not system.is_satisfied(instance, witness)

    def test_violations_name_the_failure(self) -> None:
        system = selector_system()
        instance, witness = strict_pair(system, SELECTOR_ADVICE)
        bad_round = ff_matrix([[2, 6], [3, 5], [6, 29]])
        bad = Witness((bad_round,), witness.error)
        found = system.violations(instance, bad)
        assert Violation("gate", 0, 1) in found
        assert Violation("public", 0, 1) in found

    def test_commitment_checked_with_key(self) -> None:
        system = selector_system()
        key = CommitmentKey.setup(system.commitment_size, b"tests/system")
        instance, witness = strict_pair(system, SELECTOR_ADVICE, key)
        other = Instance(
            (PedersenCommitment(key).commit([1]),),
            instance.public_inputs,
            instance.challenges,
            instance.u,
            instance.error_commitment,
        )
        assert system.relaxed_is_satisfied(other, witness)
        assert not system.relaxed_is_satisfied(other, witness, key)

    def test_error_term_absorbs_slack(self) -> None:
        """A non-zero E makes an otherwise failing assignment relaxed-satisfied."""
        system = mul_gate_system()
        instance, _ = strict_pair(system, [[2], [3], [6]])
        witness = Witness((ff_matrix([[2], [3], [7]]),), ff_matrix([[P - 1]]))
        assert system.relaxed_is_satisfied(instance, witness)
        assert not system.is_satisfied(instance, witness)

    def test_mismatched_witness_shape(self) -> None:
        """A wrongly shaped witness is reported, not raised."""
        system = selector_system()
        instance = Instance.trivial(system)
        found = system.violations(instance, Witness((FF.Zeros((2, 2)),), FF.Zeros((1, 2))))
        assert found == [Violation("shape", 0)]
        assert not system.relaxed_is_satisfied(instance, Witness((FF.Zeros((2, 2)),), FF.Zeros((1, 2))))

    def test_missing_round_and_error_shape(self) -> None:
        system = selector_system()
        instance = Instance.trivial(system)
        found = system.violations(instance, Witness((), FF.Zeros((3, 2))))
        assert Violation("shape", 0) in found
        assert Violation("shape", -1) in found

    def test_instance_component_counts(self) -> None:
        system = selector_system()
        instance = Instance.trivial(system)
        short = Instance((), instance.public_inputs, instance.challenges, 0, instance.error_commitment)
        found = system.violations(short, Witness.trivial(system))
        assert Violation("shape", -2) in found
