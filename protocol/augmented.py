"""Augmented step circuit: the base step plus a check of the previous fold.

Column layout of the augmented ConstraintSystem:

    advice  0..7             gadget region (standard gate and curve gates)
            8..8+a-1         base step columns
    fixed   0..8             gadget selectors (6 standard, bits, dadd, double)
            9                q_base (1 on the base rows)
            10..             base fixed columns

The base gates are multiplied by q_base and the base lookups are recompiled
over the augmented rows. Base rows occupy 0..n_base-1; rotations in base
gates must not wrap past the last base row. Below the base rows, lookup
tables repeat their first entry and every other base fixed column is zero.

The gadget region at step i, given the last fold (U_prev, u_prev, proof), the
claimed running instance U_i, and the last cycle fold (S_prev -> S_i):

    1. is_base = (i == 0)
    2. unless is_base: u_prev.X[0] == H(digest, i - 1, U_prev, S_prev)
       and u_prev's lookup challenge is H(X, W_0)
    3. r = 2^128 + 2B + 1 from transcript(digest; U_prev, u_prev, cross terms)
    4. unless is_base: the folded u, X and challenges equal U_i's
    5. the cycle instance s of the fold (U_prev, u_prev) -> U_i has the
       commitment rest + sum_j io_j G_j, io = (B, limbs of all its points)
    6. S_i = S_prev + r' s, with r' from the cycle transcript, computed with
       Grumpkin point arithmetic; unless is_base it equals the claimed S_i
    7. if is_base: U_i and S_i are trivial
    8. public X[0] = H(digest, i, U_i, S_i)

u_prev enters as a strict instance (u = 1, E = 0) through constants. The
BN254 commitments of U_i are not combined here: the cycle instance s proves
them over GF(q), and step 5 binds s to exactly the limbs hashed in steps 2
and 8.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from constraints.builder import REGION_COLUMNS, CircuitBuilder, Layout, Var
from constraints.ecc import EccChip, EcPoint, ecc_builder
from constraints.expression import Fixed
from constraints.gadgets import SpongeGadget, hash_gadget
from constraints.system import Cell, ConstraintSystem
from primitives.commitment import POINT_LIMBS, Commitment, CommitmentKey
from primitives.curve import GRUMPKIN
from primitives.field import FF, ff_matrix, ints, to_int
from primitives.poseidon import Domain, hash_elements
from primitives.transcript import CHALLENGE_BITS, Transcript
from protocol.config import FoldingConfig
from protocol.cyclefold import (
    CycleFoldCircuit,
    CycleInstance,
    CycleRecord,
    combine_points,
    io_bit_widths,
)
from protocol.data import FoldProof, Instance
from protocol.errors import CommitmentMismatch, TranscriptDesync
from protocol.nifs import PairwiseFolding
from protocol.strategy import scheme_class

logger = logging.getLogger(__name__)

GADGET_SELECTORS = ecc_builder(FF).num_selectors
Q_BASE = GADGET_SELECTORS
BASE_FIXED_OFFSET = GADGET_SELECTORS + 1
BASE_ADVICE_OFFSET = REGION_COLUMNS

SQUEEZE_HIGH_BITS = 254 - CHALLENGE_BITS


@dataclass(frozen=True)
class FoldRecord:
    """The last fold of the chain, re-verified by the next step.

    Attributes:
        running: running instance before the fold (U_prev)
        incoming: strict instance folded into it (u_prev)
        proof: the fold's proof
    """
    running: Instance
    incoming: Instance
    proof: FoldProof


@dataclass(frozen=True)
class InstanceShape:
    """Enough of a constraint system's shape to build its trivial instance."""
    rounds: Tuple[int, ...]
    num_public: int
    num_challenges: int


def fold_transcript(config: FoldingConfig, digest: int) -> Transcript:
    """Fresh transcript of one IVC fold, seeded with the parameters digest."""
    return Transcript(config.poseidon, seed=digest)


def state_hash(config: FoldingConfig, digest: int, step: int, instance: Instance,
               cycle_instance: CycleInstance) -> int:
    """H(digest, i, U, S): the public input X[0] carried by every step."""
    return hash_elements(
        config.poseidon,
        Domain.DIGEST,
        [digest, step] + instance.to_field_elements() + cycle_instance.to_field_elements(),
    )


class AugmentedCircuit:
    """Builds the augmented ConstraintSystem of a base step and its assignments.

    Also owns the cycle circuit proving the commitment arithmetic of its
    folds, and the Grumpkin key that cycle witnesses are committed with.
    """

    def __init__(self, base: ConstraintSystem, config: FoldingConfig, digest: int):
        self.base = base
        self.config = config
        self.digest = to_int(digest)
        self.degree = max(3, base.degree)

        n_lookups = len(base.lookups)
        round0 = REGION_COLUMNS + base.num_advice + n_lookups
        self.shape = InstanceShape(
            rounds=(round0, 3 * n_lookups) if n_lookups else (round0,),
            num_public=1 + base.num_public,
            num_challenges=base.num_challenges,
        )

        self.strategy = scheme_class(config.strategy)
        self.cycle = CycleFoldCircuit(self.strategy, len(self.shape.rounds), self.num_cross_terms)
        self.cycle_key = CommitmentKey.setup(
            self.cycle.system.commitment_size, config.commitment_label + b"/cycle", GRUMPKIN
        )
        self.cycle_bases = self.cycle.io_bases(self.cycle_key)

    @property
    def num_cross_terms(self) -> int:
        """Cross-term commitments of folding two augmented pairs (both strategies)."""
        return self.degree - 1

    @property
    def num_cycle_cross_terms(self) -> int:
        return self.cycle.system.degree - 1

    # --- Base case ---

    def dummy_fold_record(self) -> FoldRecord:
        """Stand-in for the fold before step 0.

        Trivial running instance, a trivial strict instance (u = 1), identity
        cross terms and the challenge the transcript gadget derives from them.
        """
        running = Instance.trivial(self.shape)
        trivial = Instance.trivial(self.shape)
        incoming = Instance(
            trivial.commitments, trivial.public_inputs, trivial.challenges, 1, trivial.error_commitment
        )
        cross = tuple(Commitment.identity() for _ in range(self.num_cross_terms))
        transcript = fold_transcript(self.config, self.digest)
        transcript.absorb_instance(running, "running_instance")
        transcript.absorb_instance(incoming, "incoming_instance")
        for k, c in enumerate(cross, start=1):
            transcript.absorb_commitment(c, f"cross_term_{k}")
        challenge = transcript.squeeze_fold_challenge("fold_challenge")
        return FoldRecord(running, incoming, FoldProof(cross, challenge, transcript.labels()))

    def dummy_cycle_record(self) -> CycleRecord:
        return CycleRecord.trivial(self.num_cycle_cross_terms)

    # --- Gadget region ---

    def synthesize_gadget(
        self,
        step: int,
        last_fold: FoldRecord,
        running: Instance,
        cycle_record: Optional[CycleRecord] = None,
    ) -> CircuitBuilder:
        """Run the gadget for step `step`; the cycle record defaults to the step-0 stand-in."""
        if cycle_record is None:
            cycle_record = self.dummy_cycle_record()
        b = ecc_builder(FF)
        chip = EccChip(b, GRUMPKIN)
        cfg = self.config.poseidon
        shape = self.shape

        digest = b.constant(self.digest)
        i = b.assign(step)
        is_base = b.is_zero(i)
        not_base = b.negate_bool(is_base)

        prev_running = [b.assign(v) for v in last_fold.running.to_field_elements()]
        incoming_values = last_fold.incoming.to_field_elements()
        identity_limbs = Commitment.identity().to_field_elements()
        incoming = (
            [b.constant(1)]
            + [b.assign(v) for v in incoming_values[1:-POINT_LIMBS]]
            + [b.constant(limb) for limb in identity_limbs]
        )
        prev_cycle = [b.assign(v) for v in cycle_record.running.to_field_elements()]

        # Previous strict instance carries the previous state hash
        i_prev = b.add_constant(i, -1)
        h_prev = hash_gadget(b, cfg, Domain.DIGEST, [digest, i_prev] + prev_running + prev_cycle)
        b.assert_equal_if(not_base, h_prev, incoming[1])

        # ... and correctly derived challenges
        if shape.num_challenges:
            self._check_challenges(b, not_base, incoming)

        # Transcript of the previous fold
        sponge = SpongeGadget(b, cfg, Domain.TRANSCRIPT)
        sponge.absorb(digest)
        sponge.absorb_many(prev_running)
        sponge.absorb_many(incoming)
        cross = [
            b.assign(limb)
            for c in last_fold.proof.cross_term_commitments
            for limb in c.to_field_elements()
        ]
        if len(cross) != POINT_LIMBS * self.num_cross_terms:
            raise CommitmentMismatch(
                "cross_term_commitments",
                f"expected {self.num_cross_terms}, got {len(last_fold.proof.cross_term_commitments)}",
            )
        sponge.absorb_many(cross)
        fold_bits = self._challenge_bits(chip, sponge.squeeze())
        r = self._challenge(b, fold_bits)
        if b.value(r) != to_int(last_fold.proof.challenge):
            raise TranscriptDesync(f"in-circuit folding challenge differs from the prover's at step {step}")

        # Folded scalars: u, X, challenges
        coeffs = self.strategy.synthesize_coefficients(b, r, 2)
        claimed = [b.assign(v) for v in running.to_field_elements()]
        num_scalars = 1 + shape.num_public + shape.num_challenges
        for k in range(num_scalars):
            t = b.mul(coeffs[0], prev_running[k])
            folded = b.mul_add(coeffs[1], incoming[k], t)
            b.assert_equal_if(not_base, folded, claimed[k])

        # Cycle instance of this fold, rebuilt from its IO
        points = self._point_limbs(prev_running, num_scalars)
        points += self._point_limbs(incoming, num_scalars)
        points += self._point_limbs(claimed, num_scalars)
        io = [fold_bits] + self._cycle_order(points, cross)
        rest = chip.witness(cycle_record.rest.point)
        chip.assert_on_curve_or_identity(rest)
        io_sum = chip.fixed_msm(self.cycle_bases, io, io_bit_widths(self.cycle.num_points))
        incoming_cycle = chip.add(rest, io_sum)

        # Fold it into the running cycle instance
        claimed_cycle = self._fold_cycle(
            b, chip, step, is_base, not_base, digest, prev_cycle, incoming_cycle, cycle_record
        )

        # Base case: running instance is trivial
        for var, value in zip(claimed, Instance.trivial(shape).to_field_elements()):
            b.assert_constant_if(is_base, var, value)

        output = hash_gadget(b, cfg, Domain.DIGEST, [digest, i] + claimed + claimed_cycle)
        b.public(output)
        logger.debug("augmented gadget for step %d: %d rows", step, b.num_rows)
        return b

    def _challenge_bits(self, chip: EccChip, squeezed: Var) -> Var:
        """B = squeezed mod 2^128; the high part is range-checked here, B by its ladders."""
        b = chip.builder
        value = b.value(squeezed)
        low = b.assign(value & ((1 << CHALLENGE_BITS) - 1))
        high = b.assign(value >> CHALLENGE_BITS)
        chip.decompose(high, SQUEEZE_HIGH_BITS)
        b.assert_equal(b.linear([(low, 1), (high, 1 << CHALLENGE_BITS)]), squeezed)
        return low

    @staticmethod
    def _challenge(b: CircuitBuilder, bits: Var) -> Var:
        return b.linear([(bits, 2)], (1 << CHALLENGE_BITS) + 1)

    def _point_limbs(self, encoded: Sequence[Var], num_scalars: int) -> List[List[Var]]:
        """Limbs of the round commitments and then E, from an encoded instance."""
        count = len(self.shape.rounds) + 1
        return [
            list(encoded[num_scalars + POINT_LIMBS * k:num_scalars + POINT_LIMBS * (k + 1)])
            for k in range(count)
        ]

    def _cycle_order(self, points: List[List[Var]], cross: Sequence[Var]) -> List[Var]:
        """Limbs in the cycle circuit's point order (see cyclefold.fold_points)."""
        per_instance = len(self.shape.rounds) + 1
        running, incoming, folded = (
            points[:per_instance], points[per_instance:2 * per_instance], points[2 * per_instance:]
        )
        ordered: List[Var] = []
        for k in range(len(self.shape.rounds)):
            ordered += running[k] + incoming[k] + folded[k]
        ordered += running[-1]
        ordered += list(cross)
        ordered += folded[-1]
        return ordered

    def _fold_cycle(self, b: CircuitBuilder, chip: EccChip, step: int, is_base: Var, not_base: Var,
                    digest: Var, prev_cycle: Sequence[Var], incoming: EcPoint,
                    record: CycleRecord) -> List[Var]:
        """S_prev + r' s with Grumpkin arithmetic; returns the claimed S_i, checked against it."""
        zero = b.constant(0)
        if len(record.cross_terms) != self.num_cycle_cross_terms:
            raise CommitmentMismatch(
                "cycle_cross_terms", f"expected {self.num_cycle_cross_terms}, got {len(record.cross_terms)}"
            )
        cross = [chip.witness(c.point) for c in record.cross_terms]
        for point in cross:
            chip.assert_on_curve_or_identity(point)

        sponge = SpongeGadget(b, self.config.poseidon, Domain.CYCLE)
        sponge.absorb(digest)
        sponge.absorb_many(prev_cycle)
        sponge.absorb_many([b.constant(1), incoming.x, incoming.y, zero, zero])
        for point in cross:
            sponge.absorb_many([point.x, point.y])
        bits = self._challenge_bits(chip, sponge.squeeze())
        r = self._challenge(b, bits)
        if step > 0 and b.value(r) != to_int(record.challenge):
            raise TranscriptDesync(f"in-circuit cycle folding challenge differs from the prover's at step {step}")

        u, w, e = prev_cycle[0], EcPoint(*prev_cycle[1:3]), EcPoint(*prev_cycle[3:5])
        folded_u = b.add(u, r)
        folded_w = combine_points(chip, PairwiseFolding.witness_terms(), [w, incoming], bits)
        folded_e = combine_points(chip, PairwiseFolding.error_terms(len(cross)), [e] + cross, bits)

        claimed = [b.assign(v) for v in record.folded.to_field_elements()]
        computed = [folded_u, folded_w.x, folded_w.y, folded_e.x, folded_e.y]
        for var, expected in zip(claimed, computed):
            b.assert_equal_if(not_base, expected, var)
            b.assert_constant_if(is_base, var, 0)
        return claimed

    def _check_challenges(self, b: CircuitBuilder, not_base: Var, incoming: Sequence[Var]) -> None:
        shape = self.shape
        public = incoming[1:1 + shape.num_public]
        challenges = incoming[1 + shape.num_public:1 + shape.num_public + shape.num_challenges]
        w0_start = 1 + shape.num_public + shape.num_challenges
        w0_limbs = incoming[w0_start:w0_start + POINT_LIMBS]
        sponge = SpongeGadget(b, self.config.poseidon, Domain.CHALLENGE)
        sponge.absorb_many(public)
        sponge.absorb_many(w0_limbs)
        for claimed in challenges:
            b.assert_equal_if(not_base, sponge.squeeze(), claimed)

    # --- Assembly ---

    def build_system(self, layout: Layout, num_rows: int) -> ConstraintSystem:
        """The augmented ConstraintSystem for a gadget layout padded to num_rows."""
        base = self.base
        n_base = base.num_rows
        pad = num_rows - n_base
        tables = {lookup.table for lookup in base.lookups}

        q_base = [1] * n_base + [0] * pad
        fixed_rows = [list(row) for row in layout.selectors] + [q_base]
        for k, row in enumerate(base.fixed):
            values = ints(row)
            filler = values[0] if k in tables else 0
            fixed_rows.append(values + [filler] * pad)

        builder = ecc_builder(FF)
        gates = builder.gates() + [
            Fixed(Q_BASE) * g.expression.map_columns(BASE_ADVICE_OFFSET, BASE_FIXED_OFFSET)
            for g in base.user_gates
        ]
        lookups = [lk.map_columns(BASE_ADVICE_OFFSET, BASE_FIXED_OFFSET) for lk in base.lookups]

        copies = [(Cell(*a), Cell(*c)) for a, c in layout.copies]
        copies += [
            (Cell(a.column + BASE_ADVICE_OFFSET, a.row), Cell(c.column + BASE_ADVICE_OFFSET, c.row))
            for a, c in base.copy_constraints
        ]
        public_cells = [Cell(*cell) for cell in layout.public_cells]
        public_cells += [Cell(c.column + BASE_ADVICE_OFFSET, c.row) for c in base.public_cells]

        return ConstraintSystem(
            num_rows=num_rows,
            num_advice=REGION_COLUMNS + base.num_advice,
            fixed=ff_matrix(fixed_rows, width=num_rows),
            gates=gates,
            lookups=lookups,
            copy_constraints=copies,
            public_cells=public_cells,
            max_degree=self.config.max_degree,
        )

    def assemble_advice(self, layout: Layout, base_advice: FF) -> FF:
        """Gadget wires next to the base assignment, zero-padded to the layout's rows."""
        n = layout.num_rows
        pad = [0] * (n - self.base.num_rows)
        rows = [list(w) for w in layout.wires]
        for row in base_advice:
            rows.append(ints(row) + pad)
        return ff_matrix(rows, width=n)
