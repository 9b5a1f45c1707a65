"""Tests for k-ary folding by Lagrange interpolation."""

import pytest

from primitives.commitment import CommitmentKey
from primitives.field import P, ff_matrix
from primitives.transcript import Transcript
from protocol.data import FoldProof, Instance, Witness
from protocol.errors import CommitmentMismatch, ConstraintViolation, TranscriptDesync
from protocol.multifold import (
    MultiFolding,
    lagrange_basis,
    lagrange_weights,
    vanishing_at,
    vanishing_polynomial,
)
from protocol.stages import build_strict_pair
from tests.conftest import SMALL_POSEIDON, range_lookup_system, selector_system

SELECTOR_ADVICES = [
    [[2, 6], [3, 5], [6, 30]],
    [[1, 4], [4, 2], [4, 8]],
    [[3, 0], [0, 9], [0, 0]],
]


def _eval(poly, x):
    return sum(c * pow(x, k, P) for k, c in enumerate(poly)) % P


def _setup(system):
    key = CommitmentKey.setup(system.commitment_size, b"tests/multifold")
    return key, MultiFolding(system, key)


def _pairs(system, folding, advices):
    return [
        build_strict_pair(system, folding.scheme, SMALL_POSEIDON, ff_matrix(a)) for a in advices
    ]


def _transcript():
    return Transcript(SMALL_POSEIDON, seed=11)


class TestPolynomials:

    def test_vanishing_polynomial(self) -> None:
        z = vanishing_polynomial(3)
        assert [_eval(z, x) for x in range(3)] == [0, 0, 0]
        assert _eval(z, 5) == vanishing_at(3, 5) == 5 * 4 * 3

    def test_lagrange_basis_is_kronecker(self) -> None:
        basis = lagrange_basis(3)
        for i, poly in enumerate(basis):
            assert [_eval(poly, x) for x in range(3)] == [int(i == x) for x in range(3)]

    def test_weights_match_basis(self) -> None:
        basis = lagrange_basis(4)
        assert lagrange_weights(4, 9) == [_eval(poly, 9) for poly in basis]
        assert sum(lagrange_weights(4, 123)) % P == 1

    def test_two_node_weights(self) -> None:
        """Over nodes 0 and 1 the weights are (1 - x, x)."""
        assert lagrange_weights(2, 7) == [(1 - 7) % P, 7]
        assert MultiFolding.fold_coefficients(7, 2) == [(1 - 7) % P, 7]


class TestFold:

    @pytest.mark.parametrize("count", [2, 3])
    def test_completeness(self, count) -> None:
        system = selector_system()
        key, folding = _setup(system)
        pairs = _pairs(system, folding, SELECTOR_ADVICES[:count])
        result = folding.fold(_transcript(), [p[0] for p in pairs], [p[1] for p in pairs])
        assert len(result.proof.cross_term_commitments) == folding.num_quotient_terms(count)
        assert system.relaxed_is_satisfied(result.instance, result.witness, key)

    def test_folds_running_with_trivial(self) -> None:
        system = selector_system()
        key, folding = _setup(system)
        (u, w), = _pairs(system, folding, SELECTOR_ADVICES[:1])
        result = folding.fold(_transcript(), [Instance.trivial(system), u], [Witness.trivial(system), w])
        assert system.relaxed_is_satisfied(result.instance, result.witness, key)

    def test_lookups_fold(self) -> None:
        system = range_lookup_system()
        key, folding = _setup(system)
        pairs = _pairs(system, folding, [[[1, 3, 3, 7], [1, 9, 9, 49]], [[0, 2, 1, 5], [0, 4, 1, 25]]])
        result = folding.fold(_transcript(), [p[0] for p in pairs], [p[1] for p in pairs])
        assert system.relaxed_is_satisfied(result.instance, result.witness, key)

    def test_unsatisfied_input_leaves_remainder(self) -> None:
        """An input that violates a gate makes the division inexact."""
        system = selector_system()
        _, folding = _setup(system)
        pairs = _pairs(system, folding, SELECTOR_ADVICES[:2])
        bad = Witness((ff_matrix([[2, 6], [3, 5], [6, 31]]),), pairs[1][1].error)
        with pytest.raises(ConstraintViolation):
            folding.quotient([pairs[0][0], pairs[1][0]], [pairs[0][1], bad])

    def test_needs_two_instances(self) -> None:
        system = selector_system()
        _, folding = _setup(system)
        (u, w), = _pairs(system, folding, SELECTOR_ADVICES[:1])
        with pytest.raises(ValueError):
            folding.fold(_transcript(), [u], [w])


class TestVerify:

    def test_verify_and_tamper(self) -> None:
        system = selector_system()
        _, folding = _setup(system)
        pairs = _pairs(system, folding, SELECTOR_ADVICES)
        instances = [p[0] for p in pairs]
        result = folding.fold(_transcript(), instances, [p[1] for p in pairs])

        assert folding.verify_fold(_transcript(), instances, result.proof, result.instance)

        # Reordered inputs give a different transcript
        reordered = [instances[1], instances[0], instances[2]]
        assert not folding.is_valid_fold(_transcript(), reordered, result.proof, result.instance)

        truncated = FoldProof(result.proof.cross_term_commitments[:-1], result.proof.challenge,
                              result.proof.transcript_log)
        with pytest.raises(TranscriptDesync):
            folding.verify_fold(_transcript(), instances, truncated, result.instance)

        with pytest.raises(CommitmentMismatch):
            folding.verify_fold(_transcript(), instances, result.proof, instances[0])
