"""Data structures exchanged by the folding schemes.

Architecture Overview:
    Instance   public half of a relaxed pair: what the verifier sees
    Witness    private half: per-round column matrices and the error matrix
    FoldProof  what a fold adds for the verifier: cross-term commitments,
               the challenge and the transcript label log
    FoldResult output of a fold: folded Instance/Witness and the FoldProof

All of them are immutable; folding always returns new objects, so a failed
fold never leaves a half-updated pair behind.

Usage:
    instance = Instance.trivial(system)
    witness = Witness.trivial(system)
    result = strategy.fold(transcript, [instance, strict], [witness, strict_w])
"""

from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

from primitives.commitment import Commitment
from primitives.field import FF, ff_vector, ints, to_int


@dataclass(frozen=True, eq=False)
class Instance:
    """Relaxed instance.

    Attributes:
        commitments: one commitment per witness round
        public_inputs: X, FF vector
        challenges: derived challenges (beta of the lookups), FF vector
        u: relaxation scalar (1 for strict instances, 0 for the trivial one)
        error_commitment: commitment to the error matrix E
    """
    commitments: Tuple[Commitment, ...]
    public_inputs: FF
    challenges: FF
    u: int
    error_commitment: Commitment

    def __post_init__(self):
        object.__setattr__(self, "commitments", tuple(self.commitments))
        object.__setattr__(self, "u", to_int(self.u))
        if not isinstance(self.public_inputs, FF):
            object.__setattr__(self, "public_inputs", ff_vector(self.public_inputs))
        if not isinstance(self.challenges, FF):
            object.__setattr__(self, "challenges", ff_vector(self.challenges))

    @classmethod
    def trivial(cls, system) -> "Instance":
        """Identity commitments and all-zero scalars, including u = 0."""
        return cls(
            commitments=tuple(Commitment.identity() for _ in system.rounds),
            public_inputs=FF.Zeros(system.num_public),
            challenges=FF.Zeros(system.num_challenges),
            u=0,
            error_commitment=Commitment.identity(),
        )

    def is_trivial(self) -> bool:
        return (
            self.u == 0
            and all(c.is_identity() for c in self.commitments)
            and self.error_commitment.is_identity()
            and not any(ints(self.public_inputs))
            and not any(ints(self.challenges))
        )

    def to_field_elements(self) -> List[int]:
        """Canonical encoding: u, X, challenges, round commitments, E commitment."""
        elems = [self.u]
        elems.extend(ints(self.public_inputs))
        elems.extend(ints(self.challenges))
        for commitment in self.commitments:
            elems.extend(commitment.to_field_elements())
        elems.extend(self.error_commitment.to_field_elements())
        return elems

    def __eq__(self, other):
        if not isinstance(other, Instance):
            return NotImplemented
        return self.to_field_elements() == other.to_field_elements()

    def __hash__(self):
        return hash(tuple(self.to_field_elements()))


@dataclass(frozen=True, eq=False)
class Witness:
    """Relaxed witness.

    Attributes:
        rounds: per-round column matrices, shape (columns_in_round, num_rows)
        error: error matrix E, shape (num_gates, num_rows)
    """
    rounds: Tuple[FF, ...]
    error: FF

    def __post_init__(self):
        object.__setattr__(self, "rounds", tuple(self.rounds))

    @classmethod
    def trivial(cls, system) -> "Witness":
        return cls(
            rounds=tuple(system.field.Zeros((c, system.num_rows)) for c in system.rounds),
            error=system.field.Zeros((system.num_gates, system.num_rows)),
        )

    def __eq__(self, other):
        if not isinstance(other, Witness):
            return NotImplemented
        return (
            len(self.rounds) == len(other.rounds)
            and all(np.array_equal(a, b) for a, b in zip(self.rounds, other.rounds))
            and np.array_equal(self.error, other.error)
        )

    __hash__ = None


@dataclass(frozen=True)
class FoldProof:
    """Prover messages of one fold.

    Attributes:
        cross_term_commitments: T_1..T_{d-1} (pairwise) or K_0.. (multi)
        challenge: the squeezed folding challenge (r or alpha)
        transcript_log: labels absorbed/squeezed, in order
    """
    cross_term_commitments: Tuple[Commitment, ...]
    challenge: int
    transcript_log: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class FoldResult:
    instance: Instance
    witness: Witness
    proof: FoldProof
