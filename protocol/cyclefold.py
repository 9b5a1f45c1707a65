"""Cycle folding: the commitment arithmetic of each IVC fold, proven on Grumpkin.

Folding the augmented circuit combines BN254 commitments, whose coordinates
live in GF(q), while the augmented circuit computes over GF(r). The cycle
circuit over GF(q) takes over that part. Given the challenge bits B of one
fold (r = 2^128 + 2B + 1) and the limb encodings of every commitment the
fold touches, it checks with the BN254 chip

    U'.W_k = sum_j r^j * (signed sum of U.W_k, u.W_k)      every round k
    U'.E   = sum_j r^j * (signed sum of U.E, T_1..T_m)

where the signed sums are the folding strategy's point programs
(witness_terms, error_terms), evaluated by Horner's rule.

B and the limbs sit in dedicated IO cells of the cycle circuit, so the
Grumpkin commitment of a cycle witness splits as

    W = rest + sum_j io_j * G_(cell j)

and the augmented circuit, which already holds B and the limbs, rebuilds W
from rest with a fixed-base msm. That ties the cycle instance to the very
fold whose scalars the augmented circuit checked. Cycle instances are folded
pairwise into a running cycle instance S; the decider checks S's relaxed
relation at the end of the chain.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from constraints.base import FoldContext
from constraints.builder import CircuitBuilder, Layout
from constraints.ecc import EccChip, EcPoint, ecc_builder
from constraints.system import Cell, ConstraintSystem
from primitives.commitment import LIMB_BITS, POINT_LIMBS, Commitment, CommitmentKey, PedersenCommitment
from primitives.curve import BN254, GRUMPKIN, AffinePoint
from primitives.field import FFq, Q, ff_matrix, powers, to_int
from primitives.poseidon import Domain, PoseidonConfig
from primitives.transcript import CHALLENGE_BITS, Transcript, challenge_bits
from protocol.data import Instance, Witness
from protocol.errors import CommitmentMismatch, ConstraintViolation
from protocol.stages import fold_matrices, fold_witness_rounds

logger = logging.getLogger(__name__)

CYCLE_DEGREE = 3
HIGH_LIMB_BITS = 254 - LIMB_BITS  # coordinates are below 2^254


@dataclass(frozen=True)
class CycleInstance:
    """Relaxed instance of the cycle circuit: one Grumpkin round commitment, E and u.

    The cycle circuit has no public inputs or challenges; its IO is part of
    the committed witness. u stays a plain integer (it grows by less than
    2^130 per fold, far from either field's modulus).
    """
    commitment: Commitment
    error_commitment: Commitment
    u: int

    @classmethod
    def trivial(cls) -> "CycleInstance":
        return cls(Commitment.identity(GRUMPKIN), Commitment.identity(GRUMPKIN), 0)

    @property
    def commitments(self) -> Tuple[Commitment, ...]:
        return (self.commitment,)

    @property
    def public_inputs(self):
        return FFq.Zeros(0)

    @property
    def challenges(self):
        return FFq.Zeros(0)

    def to_field_elements(self) -> List[int]:
        """u, W and E; Grumpkin coordinates are already elements of GF(r)."""
        return [int(self.u)] + self.commitment.to_field_elements() + self.error_commitment.to_field_elements()


@dataclass(frozen=True)
class CyclePending:
    """A strict cycle pair waiting to be folded, and its commitment without the IO cells."""
    instance: CycleInstance
    witness: Witness
    rest: Commitment


@dataclass(frozen=True)
class CycleRecord:
    """One fold of the running cycle instance, re-checked by the augmented circuit.

    Attributes:
        running: S before the fold
        rest: commitment of the incoming cycle witness with its IO cells zeroed
        cross_terms: T'_1..T'_m of the fold
        challenge: the structured folding challenge r'
        folded: S after the fold
    """
    running: CycleInstance
    rest: Commitment
    cross_terms: Tuple[Commitment, ...]
    challenge: int
    folded: CycleInstance

    @classmethod
    def trivial(cls, num_cross_terms: int) -> "CycleRecord":
        """Stand-in for step 0, where no cycle fold is checked."""
        identity = Commitment.identity(GRUMPKIN)
        instance = CycleInstance.trivial()
        return cls(instance, identity, (identity,) * num_cross_terms, 0, instance)


def fold_points(running: Instance, incoming: Instance, cross_terms: Sequence[Commitment],
                folded: Instance) -> List[Commitment]:
    """BN254 commitments of one fold, in cycle circuit order.

    Per round k: U.W_k, u.W_k, U'.W_k; then U.E, the cross terms and U'.E.
    """
    points = []
    for k in range(len(running.commitments)):
        points += [running.commitments[k], incoming.commitments[k], folded.commitments[k]]
    points.append(running.error_commitment)
    points.extend(cross_terms)
    points.append(folded.error_commitment)
    return points


def io_values(challenge: int, points: Sequence[Commitment]) -> List[int]:
    """The cycle circuit's IO: B, then four limbs per point."""
    values = [challenge_bits(challenge)]
    for point in points:
        values.extend(point.to_field_elements())
    return values


def io_bit_widths(num_points: int) -> List[int]:
    """Range of each IO value: 128 bits for B and the low limbs, 126 for the high ones."""
    return [CHALLENGE_BITS] + [LIMB_BITS, HIGH_LIMB_BITS] * (2 * num_points)


def _signed_sum(chip: EccChip, terms: Sequence[Tuple[int, int]], points: Sequence[EcPoint]) -> EcPoint:
    acc = None
    for sign, index in terms:
        point = points[index] if sign > 0 else chip.negate(points[index])
        acc = point if acc is None else chip.add(acc, point)
    return acc


def combine_points(chip: EccChip, program: Sequence[Sequence[Tuple[int, int]]],
                   points: Sequence[EcPoint], bits) -> EcPoint:
    """sum_k r^k * program[k](points) by Horner's rule, r = 2^128 + 2 bits + 1."""
    acc = _signed_sum(chip, program[-1], points)
    for terms in reversed(program[:-1]):
        acc = chip.add(_signed_sum(chip, terms, points), chip.mul(acc, bits, CHALLENGE_BITS))
    return acc


class CycleFoldCircuit:
    """The circuit over GF(q) that checks the commitment arithmetic of one fold.

    Args:
        strategy: folding scheme class of the augmented circuit (point programs)
        num_rounds: witness rounds of the augmented circuit
        num_cross_terms: cross-term commitments of an augmented fold
    """

    def __init__(self, strategy, num_rounds: int, num_cross_terms: int):
        self.num_rounds = num_rounds
        self.num_cross_terms = num_cross_terms
        self.witness_program = strategy.witness_terms()
        self.error_program = strategy.error_terms(num_cross_terms)
        self.num_points = 3 * num_rounds + num_cross_terms + 2

        # Dry run on identity points fixes the layout
        identity = Commitment.identity()
        builder = self.synthesize(1 << CHALLENGE_BITS | 1, [identity] * self.num_points)
        self.layout = builder.layout()
        layout = self.layout
        self.system = ConstraintSystem(
            num_rows=layout.num_rows,
            num_advice=builder.num_columns,
            fixed=ff_matrix(layout.selectors, width=layout.num_rows, field=FFq),
            gates=builder.gates(),
            copy_constraints=[(Cell(*a), Cell(*b)) for a, b in layout.copies],
            max_degree=CYCLE_DEGREE,
            field=FFq,
        )
        self.io_cells = [Cell(*cell) for cell in layout.public_cells]
        logger.info(
            "cycle circuit: %d rows, %d IO cells, degree %d",
            layout.num_rows, len(self.io_cells), self.system.degree,
        )

    @property
    def num_rows(self) -> int:
        return self.system.num_rows

    def synthesize(self, challenge: int, points: Sequence[Commitment]) -> CircuitBuilder:
        if len(points) != self.num_points:
            raise CommitmentMismatch("cycle points", f"expected {self.num_points}, got {len(points)}")
        b = ecc_builder(FFq)
        chip = EccChip(b, BN254)

        io = [b.assign(v) for v in io_values(challenge, points)]
        for var in io:
            b.public(var)
        bits = io[0]
        inputs = []
        for k in range(len(points)):
            limbs = io[1 + POINT_LIMBS * k:1 + POINT_LIMBS * (k + 1)]
            x = b.linear([(limbs[0], 1), (limbs[1], 1 << LIMB_BITS)])
            y = b.linear([(limbs[2], 1), (limbs[3], 1 << LIMB_BITS)])
            point = EcPoint(x, y)
            chip.assert_on_curve_or_identity(point)
            inputs.append(point)

        for k in range(self.num_rounds):
            running, incoming, folded = inputs[3 * k:3 * k + 3]
            chip.assert_equal(combine_points(chip, self.witness_program, [running, incoming], bits), folded)

        errors = inputs[3 * self.num_rounds:]
        combined = combine_points(chip, self.error_program, errors[:-1], bits)
        chip.assert_equal(combined, errors[-1])
        return b

    def io_bases(self, key: CommitmentKey) -> List[AffinePoint]:
        """Generators multiplying the IO cells in a commitment to the cycle witness."""
        return [
            key.curve.to_affine(key.generators[cell.column * self.num_rows + cell.row])
            for cell in self.io_cells
        ]

    def prove(self, scheme: PedersenCommitment, challenge: int, points: Sequence[Commitment]) -> CyclePending:
        """Strict cycle pair for one fold; raises ConstraintViolation if the fold is wrong."""
        b = self.synthesize(challenge, points)
        layout = b.layout(self.num_rows)
        self.check_layout(layout)
        advice = ff_matrix(layout.wires, width=self.num_rows, field=FFq)
        self.system.check_assignment(advice)

        io = [int(advice[cell.column][cell.row]) for cell in self.io_cells]
        rest_advice = advice.copy()
        for cell in self.io_cells:
            rest_advice[cell.column][cell.row] = 0
        rest = scheme.commit(rest_advice)
        curve = scheme.curve
        io_point = curve.msm([scheme.key.generators[c.column * self.num_rows + c.row] for c in self.io_cells], io)
        commitment = Commitment.from_point(curve.add(rest.to_point(), io_point), curve)

        instance = CycleInstance(commitment, Commitment.identity(curve), 1)
        witness = Witness(rounds=(advice,), error=FFq.Zeros((self.system.num_gates, self.num_rows)))
        return CyclePending(instance, witness, rest)

    def check_layout(self, layout: Layout) -> None:
        if (layout.selectors != self.layout.selectors
                or layout.copies != self.layout.copies
                or layout.public_cells != self.layout.public_cells):
            raise ConstraintViolation("cycle circuit structure differs from setup")


class CycleFolding:
    """Pairwise folding of cycle instances over Grumpkin."""

    def __init__(self, system: ConstraintSystem, key: CommitmentKey, poseidon: PoseidonConfig, digest: int):
        self.system = system
        self.scheme = PedersenCommitment(key)
        self.poseidon = poseidon
        self.digest = to_int(digest)

    @property
    def num_cross_terms(self) -> int:
        return self.system.degree - 1

    def transcript(self) -> Transcript:
        return Transcript(self.poseidon, seed=self.digest, domain=Domain.CYCLE)

    def cross_terms(self, instances: Sequence[CycleInstance], witnesses: Sequence[Witness]) -> List:
        system = self.system
        d = system.degree
        ctx1 = system.row_context(instances[0], witnesses[0])
        ctx2 = system.row_context(instances[1], witnesses[1])
        fold_ctx = FoldContext.pairwise(ctx1, ctx2)
        per_gate = []
        for evaluator in system.evaluators():
            poly = evaluator.evaluate(fold_ctx)
            per_gate.append([ctx1.broadcast(c) for c in poly.padded(d + 1)])
        return [system.field(np.stack([coeffs[k] for coeffs in per_gate])) for k in range(1, d)]

    def challenge(self, running: CycleInstance, incoming: CycleInstance,
                  cross_terms: Sequence[Commitment]) -> int:
        transcript = self.transcript()
        transcript.absorb_instance(running, "cycle_running")
        transcript.absorb_instance(incoming, "cycle_incoming")
        for k, c in enumerate(cross_terms, start=1):
            transcript.absorb_commitment(c, f"cycle_cross_term_{k}")
        return transcript.squeeze_fold_challenge("cycle_challenge")

    def fold_instances(self, running: CycleInstance, incoming: CycleInstance,
                       cross_terms: Sequence[Commitment], r: int) -> CycleInstance:
        if len(cross_terms) != self.num_cross_terms:
            raise CommitmentMismatch(
                "cycle_cross_terms", f"expected {self.num_cross_terms}, got {len(cross_terms)}"
            )
        error = self.scheme.linear_combination(
            [running.error_commitment] + list(cross_terms) + [incoming.error_commitment],
            powers(r, self.system.degree + 1, Q),
        )
        commitment = self.scheme.combine(running.commitment, incoming.commitment, r)
        return CycleInstance(commitment, error, running.u + r * incoming.u)

    def fold(self, running: CycleInstance, running_witness: Witness,
             pending: CyclePending) -> Tuple[CycleRecord, Witness]:
        """Fold a pending strict cycle pair into the running one."""
        instances = [running, pending.instance]
        witnesses = [running_witness, pending.witness]
        terms = self.cross_terms(instances, witnesses)
        commitments = tuple(self.scheme.commit(t) for t in terms)
        r = self.challenge(running, pending.instance, commitments)

        folded = self.fold_instances(running, pending.instance, commitments, r)
        witness = Witness(
            rounds=fold_witness_rounds(witnesses, [1, r]),
            error=fold_matrices(
                [running_witness.error] + terms + [pending.witness.error],
                powers(r, self.system.degree + 1, Q),
            ),
        )
        logger.debug("cycle fold: u' = %d", folded.u)
        return CycleRecord(running, pending.rest, commitments, r, folded), witness

