"""Incrementally verifiable computation by folding.

Every step runs the augmented circuit: the base step together with a check of
the previous fold. Its strict pair is then folded into the running pair, so
after n steps one relaxed pair stands for all of them:

    params = PublicParams.setup(base_system, FoldingConfig())
    ivc = IVC(params)
    for advice in step_assignments:
        ivc.advance(StepWitness(advice))
    proof = ivc.finalize()
    assert proof.verify(params)

Each fold also yields a strict pair of the cycle circuit, proving the fold's
commitment arithmetic over GF(q). The next step folds it into the running
cycle pair (S, WS) inside the augmented circuit, and the decider checks the
relaxed relation of both running pairs.

The driver moves INIT -> RUNNING on the first successful step and to
FINALIZED on finalize(). A failing step raises and leaves the state as it
was before the call.
"""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from constraints.builder import Layout
from constraints.system import ConstraintSystem
from primitives.commitment import CommitmentKey, PedersenCommitment
from primitives.field import FF, P, ff_matrix, ints, to_int
from primitives.transcript import Transcript
from protocol.augmented import AugmentedCircuit, FoldRecord, fold_transcript, state_hash
from protocol.config import FoldingConfig
from protocol.cyclefold import CycleFolding, CycleInstance, CyclePending, fold_points
from protocol.data import Instance, Witness
from protocol.errors import CommitmentMismatch, ConstraintViolation, FoldingError, InvalidState
from protocol.stages import build_strict_pair, derive_challenges
from protocol.strategy import make_scheme

logger = logging.getLogger(__name__)


def params_digest(base: ConstraintSystem, config: FoldingConfig) -> int:
    """Field element binding the base circuit and the folding configuration."""
    h = hashlib.sha256()
    h.update(base.fingerprint())
    h.update(repr((config.strategy.value, config.max_degree)).encode())
    for value in config.poseidon.to_field_elements():
        h.update(int(value).to_bytes(32, "big"))
    h.update(config.commitment_label)
    return int.from_bytes(h.digest(), "big") % P


@dataclass
class StepWitness:
    """Raw assignment of one base step, shape (num_advice, num_rows)."""
    advice: FF

    def __post_init__(self):
        if not isinstance(self.advice, FF):
            self.advice = ff_matrix(self.advice)


class PublicParams:
    """Everything prover and verifier share: circuits, keys and folding schemes.

    Attributes:
        base: the user's step circuit
        config: folding configuration
        digest: params_digest of base and config
        augmented: the augmented circuit builder
        layout: gadget region fixed by the dry run
        system: augmented ConstraintSystem
        key: BN254 commitment key sized for the augmented system
        commitments: Pedersen scheme over key
        scheme: folding strategy over system
        cycle: cycle circuit checking the commitment arithmetic of a fold
        cycle_key: Grumpkin commitment key of the cycle circuit
        cycle_scheme: pairwise folding of cycle instances
    """

    def __init__(self, base: ConstraintSystem, config: FoldingConfig, digest: int,
                 augmented: AugmentedCircuit, layout: Layout, system: ConstraintSystem,
                 key: CommitmentKey):
        self.base = base
        self.config = config
        self.digest = digest
        self.augmented = augmented
        self.layout = layout
        self.system = system
        self.key = key
        self.commitments = PedersenCommitment(key)
        self.scheme = make_scheme(config.strategy, system, key)
        self.cycle = augmented.cycle
        self.cycle_key = augmented.cycle_key
        self.cycle_scheme = CycleFolding(self.cycle.system, self.cycle_key, config.poseidon, digest)

    @classmethod
    def setup(cls, base: ConstraintSystem, config: FoldingConfig = None) -> "PublicParams":
        config = config or FoldingConfig()
        digest = params_digest(base, config)
        augmented = AugmentedCircuit(base, config, digest)

        # Dry run of step 0 fixes the gadget region
        builder = augmented.synthesize_gadget(
            0, augmented.dummy_fold_record(), Instance.trivial(augmented.shape)
        )
        num_rows = max(builder.num_rows, base.num_rows)
        layout = builder.layout(num_rows)
        system = augmented.build_system(layout, num_rows)
        key = CommitmentKey.setup(system.commitment_size, config.commitment_label)
        logger.info(
            "public params: %d augmented rows (%d gadget), degree %d, %s folding, %d cycle rows",
            num_rows, builder.num_rows, system.degree, config.strategy.value, augmented.cycle.num_rows,
        )
        return cls(base, config, digest, augmented, layout, system, key)

    @property
    def num_rows(self) -> int:
        return self.system.num_rows

    def transcript(self) -> Transcript:
        return fold_transcript(self.config, self.digest)

    def check_layout(self, layout: Layout, step: int) -> None:
        """The gadget region of a step must match the one fixed at setup."""
        if (layout.selectors != self.layout.selectors
                or layout.copies != self.layout.copies
                or layout.public_cells != self.layout.public_cells):
            raise ConstraintViolation("augmented circuit structure differs from setup", step=step)


class IVCState(Enum):
    INIT = "init"
    RUNNING = "running"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class IVCProof:
    """Final running pairs and the last fold, handed to a decider.

    Attributes:
        steps: number of folded steps
        instance, witness: the running pair after the last step
        last_fold: the fold that produced it
        cycle_instance, cycle_witness: the running cycle pair of the last step
    """
    steps: int
    instance: Instance
    witness: Witness
    last_fold: FoldRecord
    cycle_instance: CycleInstance
    cycle_witness: Witness

    def verify(self, params: PublicParams) -> bool:
        """Decider: last fold, state digest of the last step and both relaxed relations."""
        running, incoming, proof = self.last_fold.running, self.last_fold.incoming, self.last_fold.proof
        if self.steps < 1:
            logger.warning("IVC proof rejected: no steps")
            return False
        try:
            if incoming.u != 1 or not incoming.error_commitment.is_identity():
                raise CommitmentMismatch("incoming", "last step is not a strict instance")

            expected_x = state_hash(params.config, params.digest, self.steps - 1, running, self.cycle_instance)
            if not len(incoming.public_inputs) or to_int(incoming.public_inputs[0]) != expected_x:
                raise CommitmentMismatch("public_inputs", "last step does not carry the state digest")

            challenges = derive_challenges(
                params.config.poseidon,
                ints(incoming.public_inputs),
                incoming.commitments[0],
                params.system.num_challenges,
            )
            if challenges != ints(incoming.challenges):
                raise CommitmentMismatch("challenges", "last step's challenges are not derived")

            params.scheme.verify_fold(params.transcript(), [running, incoming], proof, self.instance)
        except FoldingError as e:
            logger.warning("IVC proof rejected: %s", e)
            return False
        return (
            params.system.relaxed_is_satisfied(self.instance, self.witness, params.key)
            and params.cycle.system.relaxed_is_satisfied(self.cycle_instance, self.cycle_witness, params.cycle_key)
        )


class IVC:
    """Prover-side driver of an IVC chain."""

    def __init__(self, params: PublicParams):
        self.params = params
        self.state = IVCState.INIT
        self.step = 0
        self.instance = Instance.trivial(params.system)
        self.witness = Witness.trivial(params.system)
        self.last_fold = params.augmented.dummy_fold_record()
        self.cycle_instance = CycleInstance.trivial()
        self.cycle_witness = Witness.trivial(params.cycle.system)
        self.pending: Optional[CyclePending] = None

    def advance(self, step_witness: StepWitness) -> None:
        """Prove one step and fold it into the running pair."""
        if self.state is IVCState.FINALIZED:
            raise InvalidState(self.state, "advance")

        params = self.params
        advice = step_witness.advice
        try:
            params.base.check_assignment(advice)
        except ConstraintViolation as e:
            raise ConstraintViolation(e.message, gate=e.gate, row=e.row, step=self.step) from e

        # Running cycle pair of this step
        if self.pending is None:
            cycle_record = params.augmented.dummy_cycle_record()
            cycle_witness = self.cycle_witness
        else:
            cycle_record, cycle_witness = params.cycle_scheme.fold(
                self.cycle_instance, self.cycle_witness, self.pending
            )

        builder = params.augmented.synthesize_gadget(self.step, self.last_fold, self.instance, cycle_record)
        layout = builder.layout(params.num_rows)
        params.check_layout(layout, self.step)
        augmented_advice = params.augmented.assemble_advice(layout, advice)
        try:
            params.system.check_assignment(augmented_advice)
        except ConstraintViolation as e:
            raise ConstraintViolation(e.message, gate=e.gate, row=e.row, step=self.step) from e

        strict_instance, strict_witness = build_strict_pair(
            params.system, params.commitments, params.config.poseidon, augmented_advice
        )
        result = params.scheme.fold(
            params.transcript(), [self.instance, strict_instance], [self.witness, strict_witness]
        )
        points = fold_points(self.instance, strict_instance, result.proof.cross_term_commitments, result.instance)
        pending = params.cycle.prove(params.cycle_scheme.scheme, result.proof.challenge, points)

        # Nothing above touched self; commit the new state
        self.last_fold = FoldRecord(self.instance, strict_instance, result.proof)
        self.instance = result.instance
        self.witness = result.witness
        self.cycle_instance = cycle_record.folded
        self.cycle_witness = cycle_witness
        self.pending = pending
        self.step += 1
        self.state = IVCState.RUNNING
        logger.debug("IVC step %d folded", self.step - 1)

    def finalize(self) -> IVCProof:
        if self.state is IVCState.FINALIZED:
            raise InvalidState(self.state, "finalize")
        if self.step == 0:
            raise InvalidState(self.state, "finalize before any step")
        self.state = IVCState.FINALIZED
        logger.info("IVC finalized after %d steps", self.step)
        return IVCProof(
            self.step, self.instance, self.witness, self.last_fold, self.cycle_instance, self.cycle_witness
        )
