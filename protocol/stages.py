"""Building strict pairs and the linear parts of folding.

A step's raw assignment becomes a strict (u = 1, E = 0) Instance/Witness in
stages, mirroring the commitment rounds of the constraint system:

    Stage 0: multiplicities of the lookups, commit round 0
    Challenges: beta = H(X, commitment of round 0)
    Stage 1: lookup helper columns h, g, z, commit round 1

Folding is linear in everything but the error term; fold_witness_rounds and
fold_instance_linear apply a vector of coefficients to every linear
component, and each strategy supplies its own error-term combination.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from constraints.base import RowContext
from constraints.lookup import helper_columns, multiplicities
from constraints.system import ConstraintSystem
from primitives.commitment import Commitment, PedersenCommitment
from primitives.field import FF, P, ff_vector, ints, to_int
from primitives.poseidon import Domain, PoseidonConfig, Sponge
from protocol.data import Instance, Witness

logger = logging.getLogger(__name__)


# --- Challenges ---

def derive_challenges(
    config: PoseidonConfig,
    public_inputs: Sequence[int],
    round0: Commitment,
    count: int,
) -> List[int]:
    """Challenges of a step: sponge over X and the round-0 commitment."""
    if count == 0:
        return []
    sponge = Sponge(config, Domain.CHALLENGE)
    sponge.absorb_many(int(x) for x in public_inputs)
    sponge.absorb_many(round0.to_field_elements())
    return [sponge.squeeze() for _ in range(count)]


# --- Strict pairs ---

def public_inputs_of(system: ConstraintSystem, advice: FF) -> FF:
    return ff_vector([to_int(advice[cell.column][cell.row]) for cell in system.public_cells])


def build_strict_pair(
    system: ConstraintSystem,
    scheme: PedersenCommitment,
    config: PoseidonConfig,
    advice: FF,
) -> Tuple[Instance, Witness]:
    """Commit a checked user assignment (num_advice, num_rows) as a strict pair."""
    public_inputs = public_inputs_of(system, advice)
    ctx = RowContext(list(advice), system.fixed, system.field.Zeros(1), 1)

    # Stage 0
    if system.lookups:
        m = multiplicities(system.lookups, ctx)
        round0 = system.field(np.concatenate([advice, m], axis=0))
    else:
        round0 = advice
    commitments = [scheme.commit(round0)]

    challenges = derive_challenges(config, ints(public_inputs), commitments[0], system.num_challenges)

    # Stage 1
    rounds = [round0]
    if system.lookups:
        round1 = helper_columns(system.lookups, ctx, m, challenges[0])
        rounds.append(round1)
        commitments.append(scheme.commit(round1))

    instance = Instance(
        commitments=tuple(commitments),
        public_inputs=public_inputs,
        challenges=ff_vector(challenges),
        u=1,
        error_commitment=Commitment.identity(),
    )
    witness = Witness(
        rounds=tuple(rounds),
        error=system.field.Zeros((system.num_gates, system.num_rows)),
    )
    logger.debug("strict pair built: X=%s", ints(public_inputs))
    return instance, witness


# --- Linear folding ---

def _weighted_sum(arrays: Sequence[FF], coeffs: Sequence[int]) -> FF:
    field = type(arrays[0])
    acc = None
    for array, c in zip(arrays, coeffs):
        c %= field.order
        if c == 0:
            term = field.Zeros(array.shape)
        elif c == 1:
            term = array
        else:
            term = array * field(c)
        acc = term if acc is None else acc + term
    return acc


def fold_witness_rounds(witnesses: Sequence[Witness], coeffs: Sequence[int]) -> Tuple[FF, ...]:
    return tuple(
        _weighted_sum([w.rounds[k] for w in witnesses], coeffs)
        for k in range(len(witnesses[0].rounds))
    )


def fold_matrices(matrices: Sequence[FF], coeffs: Sequence[int]) -> FF:
    return _weighted_sum(matrices, coeffs)


def fold_instance_linear(
    scheme: PedersenCommitment,
    instances: Sequence[Instance],
    coeffs: Sequence[int],
    error_commitment: Commitment,
) -> Instance:
    """Fold commitments, u, X and challenges with `coeffs`; E is supplied."""
    coeffs = [int(c) % P for c in coeffs]
    if len(instances) == 2 and coeffs[0] == 1:
        commitments = tuple(
            scheme.combine(a, b, coeffs[1])
            for a, b in zip(instances[0].commitments, instances[1].commitments)
        )
    else:
        commitments = tuple(
            scheme.linear_combination([inst.commitments[k] for inst in instances], coeffs)
            for k in range(len(instances[0].commitments))
        )
    return Instance(
        commitments=commitments,
        public_inputs=_weighted_sum([inst.public_inputs for inst in instances], coeffs),
        challenges=_weighted_sum([inst.challenges for inst in instances], coeffs),
        u=sum(c * inst.u for c, inst in zip(coeffs, instances)) % P,
        error_commitment=error_commitment,
    )


def compare_instances(expected: Instance, claimed: Instance) -> List[str]:
    """Names of the instance components that differ."""
    differing = []
    if len(expected.commitments) != len(claimed.commitments):
        differing.append("commitments")
    else:
        for k, (a, b) in enumerate(zip(expected.commitments, claimed.commitments)):
            if a != b:
                differing.append(f"commitments[{k}]")
    if expected.error_commitment != claimed.error_commitment:
        differing.append("error_commitment")
    if expected.u != claimed.u:
        differing.append("u")
    if ints(expected.public_inputs) != ints(claimed.public_inputs):
        differing.append("public_inputs")
    if ints(expected.challenges) != ints(claimed.challenges):
        differing.append("challenges")
    return differing
