"""Primitives - field, curve, hashing and commitment building blocks."""

from primitives.commitment import (
    POINT_LIMBS,
    Commitment,
    CommitmentKey,
    Opening,
    PedersenCommitment,
)
from primitives.curve import BN254, GRUMPKIN, Curve
from primitives.field import (
    FF,
    FFq,
    P,
    Q,
    batch_inverse,
    ff_matrix,
    ff_vector,
    ints,
    to_int,
)
from primitives.poseidon import (
    Domain,
    PoseidonConfig,
    Sponge,
    hash_elements,
    permute,
)
from primitives.transcript import Transcript

__all__ = [
    # Field
    "FF",
    "FFq",
    "P",
    "Q",
    "batch_inverse",
    "ff_matrix",
    "ff_vector",
    "ints",
    "to_int",
    # Curves
    "Curve",
    "BN254",
    "GRUMPKIN",
    # Commitments
    "POINT_LIMBS",
    "Commitment",
    "CommitmentKey",
    "Opening",
    "PedersenCommitment",
    # Hashing
    "Domain",
    "PoseidonConfig",
    "Sponge",
    "hash_elements",
    "permute",
    "Transcript",
]
