"""k-ary folding by Lagrange interpolation.

n = k + 1 relaxed pairs are placed at the nodes 0..k. Every folded variable
becomes V(X) = sum_i L_i(X) v_i, with L_i the Lagrange basis of the nodes, and
each homogenized gate evaluated on V is a polynomial G(X) of degree d*k. As
G(i) = E_i at every node,

    G(X) - sum_i L_i(X) E_i = Z(X) * K(X),      Z(X) = prod_i (X - i)

The prover commits the dk - k coefficients of K, then squeezes alpha and
folds everything with the weights L_i(alpha):

    E' = sum_i L_i(alpha) E_i + Z(alpha) * sum_j alpha^j K_j

A non-zero remainder in the division means some input does not satisfy the
relation, and folding stops with ConstraintViolation.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from constraints.base import FoldContext
from constraints.system import ConstraintSystem
from primitives.commitment import Commitment, CommitmentKey, PedersenCommitment
from primitives.field import FF, P, inverse, powers, to_int
from primitives.transcript import Transcript
from protocol.data import FoldProof, FoldResult, Instance, Witness
from protocol.errors import CommitmentMismatch, ConstraintViolation, FoldingError, TranscriptDesync
from protocol.stages import compare_instances, fold_instance_linear, fold_matrices, fold_witness_rounds

logger = logging.getLogger(__name__)


# --- Polynomials over the nodes 0..n-1 (int coefficients, low degree first) ---

def _poly_mul(a: List[int], b: List[int]) -> List[int]:
    out = [0] * (len(a) + len(b) - 1)
    for i, x in enumerate(a):
        for j, y in enumerate(b):
            out[i + j] = (out[i + j] + x * y) % P
    return out


def vanishing_polynomial(n: int) -> List[int]:
    """Z(X) = prod_{i<n} (X - i)."""
    z = [1]
    for i in range(n):
        z = _poly_mul(z, [(-i) % P, 1])
    return z


def lagrange_basis(n: int) -> List[List[int]]:
    """Coefficients of L_0..L_{n-1} over the nodes 0..n-1."""
    basis = []
    for i in range(n):
        numerator = [1]
        denominator = 1
        for j in range(n):
            if j != i:
                numerator = _poly_mul(numerator, [(-j) % P, 1])
                denominator = denominator * (i - j) % P
        scale = inverse(denominator)
        basis.append([c * scale % P for c in numerator])
    return basis


def lagrange_weights(n: int, x: int) -> List[int]:
    """L_0(x)..L_{n-1}(x)."""
    x = to_int(x)
    weights = []
    for i in range(n):
        num, den = 1, 1
        for j in range(n):
            if j != i:
                num = num * (x - j) % P
                den = den * (i - j) % P
        weights.append(num * inverse(den) % P)
    return weights


def vanishing_at(n: int, x: int) -> int:
    x = to_int(x)
    result = 1
    for i in range(n):
        result = result * (x - i) % P
    return result


class MultiFolding:
    """Folds two or more relaxed pairs of one constraint system."""

    def __init__(self, system: ConstraintSystem, key: CommitmentKey):
        self.system = system
        self.scheme = PedersenCommitment(key)

    @staticmethod
    def fold_coefficients(challenge: int, count: int = 2) -> List[int]:
        if count < 2:
            raise ValueError(f"folding needs at least 2 instances, got {count}")
        return lagrange_weights(count, challenge)

    @staticmethod
    def synthesize_coefficients(builder, challenge, count: int = 2) -> List:
        """In-circuit Lagrange weights L_i(alpha) over the nodes 0..count-1."""
        if count < 2:
            raise ValueError(f"folding needs at least 2 instances, got {count}")
        shifted = [builder.add_constant(challenge, -j) for j in range(count)]
        weights = []
        for i in range(count):
            den = 1
            for j in range(count):
                if j != i:
                    den = den * (i - j) % P
            acc = None
            for j in range(count):
                if j != i:
                    acc = shifted[j] if acc is None else builder.mul(acc, shifted[j])
            weights.append(builder.scale(acc, inverse(den)))
        return weights

    # Point programs for folding a running pair with one strict pair: entry k
    # lists the (sign, point) terms multiplying alpha^k.

    @staticmethod
    def witness_terms() -> List[List[Tuple[int, int]]]:
        """W' = (1 - alpha) W_0 + alpha W_1 = W_0 + alpha (W_1 - W_0)."""
        return [[(1, 0)], [(1, 1), (-1, 0)]]

    @staticmethod
    def error_terms(num_terms: int) -> List[List[Tuple[int, int]]]:
        """E' = (1 - alpha) E_0 + alpha (alpha - 1) sum_j alpha^j K_j, with E_1 zero.

        Point 0 is E_0 and point 1 + j is K_j.
        """
        if num_terms == 0:
            return [[(1, 0)], [(-1, 0)]]
        terms = [[(1, 0)], [(-1, 0), (-1, 1)]]
        terms.extend([(1, 1 + j), (-1, 2 + j)] for j in range(num_terms - 1))
        terms.append([(1, num_terms)])
        return terms

    def num_quotient_terms(self, count: int) -> int:
        k = count - 1
        return max(0, self.system.degree * k - k)

    # --- Prover ---

    def quotient(self, instances: Sequence[Instance], witnesses: Sequence[Witness]) -> List[FF]:
        """Coefficients K_0.. of (G(X) - sum L_i(X) E_i) / Z(X), each (num_gates, num_rows)."""
        system = self.system
        n = len(instances)
        degree = system.degree * (n - 1)
        basis = lagrange_basis(n)
        contexts = [system.row_context(u, w) for u, w in zip(instances, witnesses)]
        fold_ctx = FoldContext(contexts, basis)
        shape = (system.num_gates, system.num_rows)

        if system.num_gates:
            per_gate = []
            for evaluator in system.evaluators():
                poly = evaluator.evaluate(fold_ctx)
                per_gate.append([contexts[0].broadcast(c) for c in poly.padded(degree + 1)])
            coeffs = [FF(np.stack([g[k] for g in per_gate])) for k in range(degree + 1)]
        else:
            coeffs = [FF.Zeros(shape) for _ in range(degree + 1)]

        # Subtract the interpolated error terms
        for i, w in enumerate(witnesses):
            for k, c in enumerate(basis[i]):
                if c:
                    coeffs[k] = coeffs[k] - w.error * FF(c)

        # Long division by the monic Z(X)
        z = vanishing_polynomial(n)
        quotient = [FF.Zeros(shape) for _ in range(max(0, degree - n + 1))]
        for top in range(degree, n - 1, -1):
            q = coeffs[top]
            quotient[top - n] = q
            for j, zj in enumerate(z):
                if zj:
                    coeffs[top - n + j] = coeffs[top - n + j] - q * FF(zj)

        for k in range(min(n, degree + 1)):
            nonzero = np.argwhere(np.asarray(coeffs[k] != 0))
            if len(nonzero):
                gate, row = (int(v) for v in nonzero[0])
                raise ConstraintViolation("folded inputs do not satisfy the relation", gate=gate, row=row)

        return quotient[: self.num_quotient_terms(n)]

    def fold(self, transcript: Transcript, instances: Sequence[Instance],
             witnesses: Sequence[Witness]) -> FoldResult:
        self._check_arity(instances, witnesses)
        n = len(instances)

        for i, instance in enumerate(instances):
            transcript.absorb_instance(instance, f"instance_{i}")

        terms = self.quotient(instances, witnesses)
        commitments = tuple(self.scheme.commit(t) for t in terms)
        for j, c in enumerate(commitments):
            transcript.absorb_commitment(c, f"quotient_{j}")

        alpha = transcript.squeeze_fold_challenge("fold_challenge")
        instance, witness = self.fold_with_challenge(instances, witnesses, terms, commitments, alpha)
        logger.debug("%d-ary fold: %d quotient terms, u' = %d", n, len(terms), instance.u)
        return FoldResult(instance, witness, FoldProof(commitments, alpha, transcript.labels()))

    def fold_with_challenge(
        self,
        instances: Sequence[Instance],
        witnesses: Sequence[Witness],
        terms: Sequence[FF],
        commitments: Sequence[Commitment],
        alpha: int,
    ) -> Tuple[Instance, Witness]:
        n = len(instances)
        weights = self.fold_coefficients(alpha, n)
        z_alpha = vanishing_at(n, alpha)
        quotient_weights = [z_alpha * p % P for p in powers(alpha, len(terms))]

        witness = Witness(
            rounds=fold_witness_rounds(witnesses, weights),
            error=fold_matrices(
                [w.error for w in witnesses] + list(terms), weights + quotient_weights
            ),
        )
        instance = self.fold_instances(instances, commitments, alpha)
        return instance, witness

    # --- Verifier ---

    def fold_instances(self, instances: Sequence[Instance], commitments: Sequence[Commitment],
                       alpha: int) -> Instance:
        n = len(instances)
        expected_terms = self.num_quotient_terms(n)
        if len(commitments) != expected_terms:
            raise CommitmentMismatch(
                "cross_term_commitments", f"expected {expected_terms}, got {len(commitments)}"
            )
        weights = self.fold_coefficients(alpha, n)
        z_alpha = vanishing_at(n, alpha)
        quotient_weights = [z_alpha * p % P for p in powers(alpha, len(commitments))]
        error_commitment = self.scheme.linear_combination(
            [inst.error_commitment for inst in instances] + list(commitments),
            weights + quotient_weights,
        )
        return fold_instance_linear(self.scheme, instances, weights, error_commitment)

    def verify_fold(self, transcript: Transcript, instances: Sequence[Instance],
                    proof: FoldProof, folded: Instance) -> bool:
        if len(instances) < 2:
            raise ValueError(f"folding needs at least 2 instances, got {len(instances)}")

        for i, instance in enumerate(instances):
            transcript.absorb_instance(instance, f"instance_{i}")
        for j, c in enumerate(proof.cross_term_commitments):
            transcript.absorb_commitment(c, f"quotient_{j}")
        alpha = transcript.squeeze_fold_challenge("fold_challenge")

        if transcript.labels() != tuple(proof.transcript_log):
            raise TranscriptDesync(
                f"transcript log {transcript.labels()} differs from prover's {tuple(proof.transcript_log)}"
            )
        if alpha != to_int(proof.challenge):
            raise TranscriptDesync("folding challenge differs from the prover's")

        expected = self.fold_instances(instances, proof.cross_term_commitments, alpha)
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
        if len(instances) < 2 or len(instances) != len(witnesses):
            raise ValueError(
                f"folding needs at least 2 matching pairs, got {len(instances)}/{len(witnesses)}"
            )
