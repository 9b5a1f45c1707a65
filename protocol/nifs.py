"""Pairwise non-interactive folding (NIFS).

Folds two relaxed pairs (U1, W1), (U2, W2) of the same constraint system
into one. For a system of degree d, every homogenized gate evaluated on
w1 + X * w2 is a degree-d polynomial in X:

    hom(w1 + X w2) = E1 + T_1 X + ... + T_{d-1} X^{d-1} + E2 X^d

The prover commits the cross terms T_k, binds them into the transcript and
only then squeezes r, so the folded error

    E' = E1 + sum_k r^k T_k + r^d E2

satisfies hom(w1 + r w2) = E'. Everything else folds linearly with the
coefficients (1, r).
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from constraints.base import FoldContext
from constraints.system import ConstraintSystem
from primitives.commitment import Commitment, CommitmentKey, PedersenCommitment
from primitives.field import FF, powers, to_int
from primitives.transcript import Transcript
from protocol.data import FoldProof, FoldResult, Instance, Witness
from protocol.errors import CommitmentMismatch, FoldingError, TranscriptDesync
from protocol.stages import compare_instances, fold_instance_linear, fold_matrices, fold_witness_rounds

logger = logging.getLogger(__name__)


class PairwiseFolding:
    """Two-instance folding scheme for one constraint system."""

    arity = 2

    def __init__(self, system: ConstraintSystem, key: CommitmentKey):
        self.system = system
        self.scheme = PedersenCommitment(key)

    # --- Coefficients ---

    @staticmethod
    def fold_coefficients(challenge: int, count: int = 2) -> List[int]:
        if count != 2:
            raise ValueError(f"pairwise folding takes exactly 2 instances, got {count}")
        return [1, to_int(challenge)]

    @staticmethod
    def synthesize_coefficients(builder, challenge, count: int = 2) -> List:
        """In-circuit fold_coefficients: builder variables for (1, r)."""
        if count != 2:
            raise ValueError(f"pairwise folding takes exactly 2 instances, got {count}")
        return [builder.constant(1), challenge]

    @staticmethod
    def witness_terms() -> List[List[Tuple[int, int]]]:
        """W' = W_U + r W_u as signed point sums per power of r (0 = W_U, 1 = W_u)."""
        return [[(1, 0)], [(1, 1)]]

    @staticmethod
    def error_terms(num_terms: int) -> List[List[Tuple[int, int]]]:
        """E' = E_U + sum_k r^k T_k for a strict incoming pair (0 = E_U, k = T_k)."""
        return [[(1, k)] for k in range(num_terms + 1)]

    @property
    def num_cross_terms(self) -> int:
        return self.system.degree - 1

    # --- Prover ---

    def cross_terms(self, instances: Sequence[Instance], witnesses: Sequence[Witness]) -> List[FF]:
        """T_1..T_{d-1}, each of shape (num_gates, num_rows)."""
        system = self.system
        d = system.degree
        ctx1 = system.row_context(instances[0], witnesses[0])
        ctx2 = system.row_context(instances[1], witnesses[1])
        fold_ctx = FoldContext.pairwise(ctx1, ctx2)

        per_gate = []
        for evaluator in system.evaluators():
            poly = evaluator.evaluate(fold_ctx)
            per_gate.append([ctx1.broadcast(c) for c in poly.padded(d + 1)])

        terms = []
        for k in range(1, d):
            if per_gate:
                terms.append(FF(np.stack([coeffs[k] for coeffs in per_gate])))
            else:
                terms.append(FF.Zeros((0, system.num_rows)))
        return terms

    def fold(self, transcript: Transcript, instances: Sequence[Instance],
             witnesses: Sequence[Witness]) -> FoldResult:
        self._check_arity(instances, witnesses)

        transcript.absorb_instance(instances[0], "running_instance")
        transcript.absorb_instance(instances[1], "incoming_instance")

        terms = self.cross_terms(instances, witnesses)
        commitments = tuple(self.scheme.commit(t) for t in terms)
        for k, c in enumerate(commitments, start=1):
            transcript.absorb_commitment(c, f"cross_term_{k}")

        r = transcript.squeeze_fold_challenge("fold_challenge")
        instance, witness = self.fold_with_challenge(instances, witnesses, terms, commitments, r)
        proof = FoldProof(commitments, r, transcript.labels())
        logger.debug("pairwise fold: %d cross terms, u' = %d", len(terms), instance.u)
        return FoldResult(instance, witness, proof)

    def fold_with_challenge(
        self,
        instances: Sequence[Instance],
        witnesses: Sequence[Witness],
        terms: Sequence[FF],
        commitments: Sequence[Commitment],
        r: int,
    ) -> Tuple[Instance, Witness]:
        """Fold with a given challenge r (no transcript)."""
        self._check_arity(instances, witnesses)
        d = self.system.degree
        r_powers = powers(r, d + 1)

        matrices = [witnesses[0].error] + list(terms) + [witnesses[1].error]
        witness = Witness(
            rounds=fold_witness_rounds(witnesses, self.fold_coefficients(r)),
            error=fold_matrices(matrices, r_powers),
        )
        instance = self.fold_instances(instances, commitments, r)
        return instance, witness

    # --- Verifier ---

    def fold_instances(self, instances: Sequence[Instance], commitments: Sequence[Commitment],
                       r: int) -> Instance:
        """Folded instance from public data only."""
        d = self.system.degree
        if len(commitments) != d - 1:
            raise CommitmentMismatch(
                "cross_term_commitments", f"expected {d - 1}, got {len(commitments)}"
            )
        r_powers = powers(r, d + 1)
        error_commitment = self.scheme.linear_combination(
            [instances[0].error_commitment] + list(commitments) + [instances[1].error_commitment],
            r_powers,
        )
        return fold_instance_linear(self.scheme, instances, self.fold_coefficients(r), error_commitment)

    def verify_fold(self, transcript: Transcript, instances: Sequence[Instance],
                    proof: FoldProof, folded: Instance) -> bool:
        """Replay the fold on public data; raises on any mismatch."""
        if len(instances) != 2:
            raise ValueError(f"pairwise folding takes exactly 2 instances, got {len(instances)}")

        transcript.absorb_instance(instances[0], "running_instance")
        transcript.absorb_instance(instances[1], "incoming_instance")
        for k, c in enumerate(proof.cross_term_commitments, start=1):
            transcript.absorb_commitment(c, f"cross_term_{k}")
        r = transcript.squeeze_fold_challenge("fold_challenge")

        if transcript.labels() != tuple(proof.transcript_log):
            raise TranscriptDesync(
                f"transcript log {transcript.labels()} differs from prover's {tuple(proof.transcript_log)}"
            )
        if r != to_int(proof.challenge):
            raise TranscriptDesync("folding challenge differs from the prover's")

        expected = self.fold_instances(instances, proof.cross_term_commitments, r)
        differing = compare_instances(expected, folded)
        if differing:
            raise CommitmentMismatch(differing[0], "folded instance does not match")
        return True

    def is_valid_fold(self, transcript: Transcript, instances: Sequence[Instance],
                      proof: FoldProof, folded: Instance) -> bool:
        try:
            return self.verify_fold(transcript, instances, proof, folded)
        except FoldingError as e:
            logger.warning("fold verification failed: %s", e)
            return False

    def _check_arity(self, instances, witnesses) -> None:
        if len(instances) != 2 or len(witnesses) != 2:
            raise ValueError(
                f"pairwise folding takes exactly 2 pairs, got {len(instances)}/{len(witnesses)}"
            )
