"""End-to-end tests of the augmented circuit and the IVC driver.

A chain proves three steps of the two-row multiplication circuit in
conftest.selector_system, and a second chain two steps of a lookup circuit.
Every step synthesizes a few thousand gadget rows (the curve ladders of the
cycle fold dominate), so chains are built once per module and kept short.
"""

from dataclasses import replace

import pytest

from primitives.commitment import Commitment
from primitives.field import ff_matrix, ff_vector, ints
from protocol.augmented import BASE_FIXED_OFFSET, FoldRecord, state_hash
from protocol.config import FoldingConfig, FoldStrategy
from protocol.cyclefold import CycleInstance, fold_points
from protocol.data import FoldProof, Instance, Witness
from protocol.errors import (
    CommitmentMismatch,
    ConstraintViolation,
    DegreeOverflow,
    FoldingError,
    InvalidState,
    TranscriptDesync,
)
from protocol.ivc import IVC, IVCState, PublicParams, StepWitness, params_digest
from tests.conftest import SMALL_POSEIDON, range_lookup_system, selector_system

STEPS = [
    [[2, 6], [3, 5], [6, 30]],
    [[1, 4], [4, 2], [4, 8]],
    [[3, 0], [0, 9], [0, 0]],
]

# Table {1, 2, 3, 4}: zero is not a member
LOOKUP_STEPS = [
    [[1, 2, 3, 4], [1, 4, 9, 16]],
    [[4, 3, 1, 2], [16, 9, 1, 4]],
]


def _config(strategy: FoldStrategy) -> FoldingConfig:
    return FoldingConfig(strategy=strategy, max_degree=3, poseidon=SMALL_POSEIDON)


def _run(params: PublicParams, steps):
    ivc = IVC(params)
    for advice in steps:
        ivc.advance(StepWitness(advice))
    return ivc


def _next_cycle_record(params: PublicParams, ivc: IVC):
    """The cycle fold the next step of `ivc` would check."""
    record, _ = params.cycle_scheme.fold(ivc.cycle_instance, ivc.cycle_witness, ivc.pending)
    return record


def _base_case(params: PublicParams):
    augmented = params.augmented
    return augmented.synthesize_gadget(0, augmented.dummy_fold_record(), Instance.trivial(augmented.shape))


@pytest.fixture(scope="module")
def params() -> PublicParams:
    return PublicParams.setup(selector_system(), _config(FoldStrategy.PAIRWISE))


@pytest.fixture(scope="module")
def chain(params):
    ivc = _run(params, STEPS)
    return ivc, ivc.finalize()


@pytest.fixture(scope="module")
def next_cycle(params, chain):
    ivc, _ = chain
    return _next_cycle_record(params, ivc)


@pytest.fixture(scope="module")
def lookup_params() -> PublicParams:
    return PublicParams.setup(range_lookup_system(first=1), _config(FoldStrategy.PAIRWISE))


@pytest.fixture(scope="module")
def lookup_chain(lookup_params):
    ivc = _run(lookup_params, LOOKUP_STEPS)
    return ivc, ivc.finalize()


class TestPublicParams:

    def test_augmented_shape(self, params) -> None:
        system = params.system
        assert system.num_advice == 8 + 3
        assert system.rounds == (11,)
        assert system.num_public == 2
        assert system.degree == 3
        assert system.num_rows >= params.base.num_rows
        assert params.augmented.num_cross_terms == 2

    def test_cycle_shape(self, params) -> None:
        cycle = params.cycle
        assert cycle.num_points == 3 * 1 + 2 + 2
        assert cycle.system.degree == 3
        assert params.cycle_key.curve.name == "grumpkin"
        assert params.cycle_scheme.num_cross_terms == 2

    def test_digest_binds_config(self, params) -> None:
        base = selector_system()
        assert params.digest == params_digest(base, _config(FoldStrategy.PAIRWISE))
        assert params.digest != params_digest(base, _config(FoldStrategy.MULTI))

    def test_setup_deterministic(self, params) -> None:
        again = PublicParams.setup(selector_system(), _config(FoldStrategy.PAIRWISE))
        assert again.system.fingerprint() == params.system.fingerprint()

    def test_degree_bound_applies_to_augmented_circuit(self) -> None:
        """The curve gates have degree 3, whatever the base circuit."""
        with pytest.raises(DegreeOverflow):
            PublicParams.setup(
                selector_system(),
                FoldingConfig(max_degree=2, poseidon=SMALL_POSEIDON),
            )

    def test_lookup_tables_pad_with_first_entry(self, lookup_params) -> None:
        system = lookup_params.system
        padding = system.num_rows - 4
        assert ints(system.fixed[BASE_FIXED_OFFSET]) == [1, 2, 3, 4] + [1] * padding
        assert ints(system.fixed[BASE_FIXED_OFFSET + 1]) == [1, 1, 1, 0] + [0] * padding

    def test_padding_does_not_extend_table(self, lookup_params) -> None:
        """Zero is not in the table, so the padded rows must not let it in."""
        augmented = lookup_params.augmented
        layout = _base_case(lookup_params).layout(lookup_params.num_rows)
        advice = augmented.assemble_advice(layout, ff_matrix([[0, 2, 3, 4], [0, 4, 9, 16]]))
        with pytest.raises(ConstraintViolation, match="not in table"):
            lookup_params.system.check_assignment(advice)


class TestAugmentedCircuit:

    def test_base_case_layout_matches_setup(self, params) -> None:
        layout = _base_case(params).layout(params.num_rows)
        params.check_layout(layout, 0)

    def test_base_case_requires_trivial_running(self, params) -> None:
        augmented = params.augmented
        running = replace(Instance.trivial(augmented.shape), u=1)
        with pytest.raises(ConstraintViolation):
            augmented.synthesize_gadget(0, augmented.dummy_fold_record(), running)

    def test_wrong_challenge_desyncs(self, params) -> None:
        augmented = params.augmented
        record = augmented.dummy_fold_record()
        proof = FoldProof(record.proof.cross_term_commitments, record.proof.challenge + 1,
                          record.proof.transcript_log)
        with pytest.raises(TranscriptDesync):
            augmented.synthesize_gadget(
                0, FoldRecord(record.running, record.incoming, proof), Instance.trivial(augmented.shape)
            )

    def test_wrong_cross_term_count(self, params) -> None:
        augmented = params.augmented
        record = augmented.dummy_fold_record()
        proof = FoldProof((), record.proof.challenge, record.proof.transcript_log)
        with pytest.raises(CommitmentMismatch):
            augmented.synthesize_gadget(
                0, FoldRecord(record.running, record.incoming, proof), Instance.trivial(augmented.shape)
            )

    def test_wrong_cycle_cross_term_count(self, params, chain, next_cycle) -> None:
        ivc, _ = chain
        record = replace(next_cycle, cross_terms=next_cycle.cross_terms[:1])
        with pytest.raises(CommitmentMismatch):
            params.augmented.synthesize_gadget(ivc.step, ivc.last_fold, ivc.instance, record)

    def test_next_step_matches_setup(self, params, chain, next_cycle) -> None:
        ivc, _ = chain
        builder = params.augmented.synthesize_gadget(ivc.step, ivc.last_fold, ivc.instance, next_cycle)
        params.check_layout(builder.layout(params.num_rows), ivc.step)

    def test_claimed_scalars_must_be_folded(self, params, chain, next_cycle) -> None:
        ivc, _ = chain
        with pytest.raises(ConstraintViolation):
            params.augmented.synthesize_gadget(ivc.step, ivc.last_fold, ivc.last_fold.running, next_cycle)

    def test_claimed_commitments_must_be_folded(self, params, chain, next_cycle) -> None:
        """A forged commitment changes the cycle instance, and so the cycle challenge."""
        ivc, _ = chain
        forged = replace(ivc.instance, commitments=(Commitment.identity(),))
        with pytest.raises(FoldingError):
            params.augmented.synthesize_gadget(ivc.step, ivc.last_fold, forged, next_cycle)

    def test_forged_commitments_have_no_cycle_proof(self, params, chain) -> None:
        ivc, _ = chain
        record = ivc.last_fold
        forged = replace(ivc.instance, commitments=(Commitment.identity(),))
        points = fold_points(record.running, record.incoming, record.proof.cross_term_commitments, forged)
        with pytest.raises(ConstraintViolation):
            params.cycle.prove(params.cycle_scheme.scheme, record.proof.challenge, points)

    def test_claimed_cycle_instance_must_be_folded(self, params, chain, next_cycle) -> None:
        ivc, _ = chain
        folded = next_cycle.folded
        record = replace(next_cycle, folded=CycleInstance(folded.commitment, folded.error_commitment, folded.u + 1))
        with pytest.raises(ConstraintViolation):
            params.augmented.synthesize_gadget(ivc.step, ivc.last_fold, ivc.instance, record)

    def test_wrong_cycle_challenge_desyncs(self, params, chain, next_cycle) -> None:
        ivc, _ = chain
        record = replace(next_cycle, challenge=next_cycle.challenge + 2)
        with pytest.raises(TranscriptDesync):
            params.augmented.synthesize_gadget(ivc.step, ivc.last_fold, ivc.instance, record)

    def test_previous_cycle_instance_is_hashed(self, params, chain, next_cycle) -> None:
        """The previous step's digest covers S, so a different S_prev breaks it."""
        ivc, _ = chain
        record = replace(next_cycle, running=CycleInstance.trivial())
        with pytest.raises(ConstraintViolation):
            params.augmented.synthesize_gadget(ivc.step, ivc.last_fold, ivc.instance, record)

    def test_state_digest_chain(self, params, chain) -> None:
        """The last strict instance carries H(digest, n - 1, U_{n-1}, S_{n-1}) and the base output."""
        ivc, _ = chain
        incoming = ivc.last_fold.incoming
        expected = state_hash(
            params.config, params.digest, ivc.step - 1, ivc.last_fold.running, ivc.cycle_instance
        )
        assert ints(incoming.public_inputs) == [expected, 0]


class TestIVC:

    def test_chain_verifies(self, params, chain) -> None:
        ivc, proof = chain
        assert proof.steps == len(STEPS)
        assert ivc.state is IVCState.FINALIZED
        assert proof.verify(params)

    def test_cycle_instance_accumulates(self, chain) -> None:
        _, proof = chain
        assert proof.cycle_instance.u > 1
        assert not proof.cycle_instance.commitment.is_identity()

    def test_no_steps_after_finalize(self, chain) -> None:
        ivc, _ = chain
        with pytest.raises(InvalidState):
            ivc.advance(StepWitness(STEPS[0]))
        with pytest.raises(InvalidState):
            ivc.finalize()

    def test_finalize_without_steps(self, params) -> None:
        with pytest.raises(InvalidState):
            IVC(params).finalize()

    def test_failing_step_leaves_state(self, params) -> None:
        ivc = IVC(params)
        before = (ivc.state, ivc.step, ivc.instance, ivc.last_fold, ivc.cycle_instance, ivc.pending)
        with pytest.raises(ConstraintViolation) as info:
            ivc.advance(StepWitness([[2, 6], [3, 5], [6, 31]]))
        assert info.value.step == 0
        assert info.value.row == 1
        assert (ivc.state, ivc.step, ivc.instance, ivc.last_fold, ivc.cycle_instance, ivc.pending) == before

    def test_wrong_step_count_rejected(self, params, chain) -> None:
        _, proof = chain
        assert not replace(proof, steps=proof.steps + 1).verify(params)
        assert not replace(proof, steps=0).verify(params)

    def test_forged_last_fold_rejected(self, params, chain) -> None:
        _, proof = chain
        record = proof.last_fold
        forged = FoldRecord(record.running, replace(record.incoming, u=2), record.proof)
        assert not replace(proof, last_fold=forged).verify(params)

    def test_forged_witness_rejected(self, params, chain) -> None:
        _, proof = chain
        rounds = list(proof.witness.rounds)
        rounds[0] = rounds[0].copy()
        rounds[0][4][0] += 1
        forged = replace(proof.witness, rounds=tuple(rounds))
        assert not replace(proof, witness=forged).verify(params)

    def test_malformed_witness_rejected(self, params, chain) -> None:
        _, proof = chain
        assert not replace(proof, witness=Witness((), proof.witness.error)).verify(params)
        short_error = Witness(proof.witness.rounds, proof.witness.error[:1])
        assert not replace(proof, witness=short_error).verify(params)
        assert not replace(proof, cycle_witness=Witness((), proof.cycle_witness.error)).verify(params)

    def test_forged_cycle_instance_rejected(self, params, chain) -> None:
        _, proof = chain
        s = proof.cycle_instance
        assert not replace(proof, cycle_instance=CycleInstance(s.commitment, s.error_commitment, s.u + 1)).verify(params)
        assert not replace(proof, cycle_instance=CycleInstance.trivial()).verify(params)

    def test_forged_cycle_witness_rejected(self, params, chain) -> None:
        _, proof = chain
        rounds = (proof.cycle_witness.rounds[0].copy(),)
        rounds[0][0, 0] = (int(rounds[0][0, 0]) + 1) % params.cycle.system.field.order
        forged = Witness(rounds, proof.cycle_witness.error)
        assert not replace(proof, cycle_witness=forged).verify(params)


class TestLookupChain:

    def test_chain_verifies(self, lookup_params, lookup_chain) -> None:
        ivc, proof = lookup_chain
        assert lookup_params.system.rounds == (8 + 2 + 1, 3)
        assert proof.steps == len(LOOKUP_STEPS)
        assert proof.verify(lookup_params)

    def test_input_outside_table_fails_the_step(self, lookup_params) -> None:
        with pytest.raises(ConstraintViolation):
            IVC(lookup_params).advance(StepWitness([[0, 2, 3, 4], [0, 4, 9, 16]]))

    def test_tampered_lookup_challenge_rejected_in_circuit(self, lookup_params, lookup_chain) -> None:
        ivc, _ = lookup_chain
        record = ivc.last_fold
        beta = ff_vector([int(c) + 1 for c in record.incoming.challenges])
        tampered = FoldRecord(record.running, replace(record.incoming, challenges=beta), record.proof)
        with pytest.raises(ConstraintViolation):
            lookup_params.augmented.synthesize_gadget(
                ivc.step, tampered, ivc.instance, _next_cycle_record(lookup_params, ivc)
            )

    def test_tampered_lookup_challenge_rejected_by_decider(self, lookup_params, lookup_chain) -> None:
        _, proof = lookup_chain
        record = proof.last_fold
        beta = ff_vector([int(c) + 1 for c in record.incoming.challenges])
        tampered = FoldRecord(record.running, replace(record.incoming, challenges=beta), record.proof)
        assert not replace(proof, last_fold=tampered).verify(lookup_params)


class TestMultiStrategy:

    def test_chain_verifies(self) -> None:
        params = PublicParams.setup(selector_system(), _config(FoldStrategy.MULTI))
        ivc = _run(params, STEPS[:2])
        proof = ivc.finalize()
        assert proof.verify(params)
