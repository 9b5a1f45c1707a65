"""
Fiat-Shamir transcript over the Poseidon duplex sponge.

One Transcript is created per folding session and passed explicitly to the
prover and the verifier. Besides the sponge it keeps an append-only log of
the labels of everything absorbed and squeezed; a verifier replaying the
session compares its log with the prover's to detect a diverging order of
operations before it compares any challenge.

Folding challenges are structured: a squeezed element s gives

    r = 2^128 + 2 * (s mod 2^128) + 1

which lies below both curve orders, so the same r scales points of BN254
and of Grumpkin, and an in-circuit double-and-add ladder over the 128 bits
of s computes r * P without exceptional cases.
"""

import logging
from typing import List, Optional, Tuple

from primitives.field import to_int
from primitives.poseidon import Domain, PoseidonConfig, Sponge

logger = logging.getLogger(__name__)

CHALLENGE_BITS = 128
_CHALLENGE_MASK = (1 << CHALLENGE_BITS) - 1


def fold_challenge(squeezed: int) -> int:
    """Structured folding challenge of a squeezed element."""
    return (1 << CHALLENGE_BITS) + 2 * (int(squeezed) & _CHALLENGE_MASK) + 1


def challenge_bits(challenge: int) -> int:
    """The 128-bit B of a structured challenge r = 2^128 + 2B + 1."""
    return (int(challenge) - (1 << CHALLENGE_BITS) - 1) >> 1


class Transcript:
    """
    Fiat-Shamir transcript.

    Attributes:
        config: Poseidon shape used by the sponge
        sponge: Duplex sponge (domain tag TRANSCRIPT unless given)
        log: Labels in the order they were absorbed or squeezed
    """

    def __init__(self, config: Optional[PoseidonConfig] = None, seed: Optional[int] = None,
                 domain: int = Domain.TRANSCRIPT):
        self.config = config or PoseidonConfig()
        self.sponge = Sponge(self.config, domain)
        self.log: List[str] = []
        if seed is not None:
            self.absorb(seed, "seed")

    def absorb(self, elem, label: str) -> None:
        self.log.append(label)
        self.sponge.absorb(to_int(elem))

    def absorb_many(self, elems, label: str) -> None:
        """Absorb a sequence under a single label."""
        self.log.append(label)
        self.sponge.absorb_many(to_int(e) for e in elems)

    def absorb_commitment(self, commitment, label: str) -> None:
        self.absorb_many(commitment.to_field_elements(), label)

    def absorb_instance(self, instance, label: str) -> None:
        """Absorb every public component of an instance (see Instance.to_field_elements)."""
        self.absorb_many(instance.to_field_elements(), label)

    def squeeze_challenge(self, label: str) -> int:
        self.log.append(label)
        challenge = self.sponge.squeeze()
        logger.debug("transcript challenge %s = %d", label, challenge)
        return challenge

    def squeeze_fold_challenge(self, label: str) -> int:
        """Squeeze and map to a structured folding challenge."""
        return fold_challenge(self.squeeze_challenge(label))

    def labels(self) -> Tuple[str, ...]:
        return tuple(self.log)
