"""In-circuit Poseidon permutation and sponge.

These replay primitives/poseidon.py operation for operation on builder
variables, so a SpongeGadget fed the same elements as a native Sponge
squeezes the same values.

Row cost per permutation (width t): three rows per S-box, with the round
constant folded into the first one, and one linear row per MDS output (the
constants of the lanes without an S-box are folded into q_c).
"""

from typing import List, Sequence

from constraints.builder import CircuitBuilder, Var
from primitives.field import P
from primitives.poseidon import PoseidonConfig, mds_matrix, round_constants


def _sbox(builder: CircuitBuilder, s: Var, c: int) -> Var:
    """(s + c)^5."""
    v = builder.value(s)
    x = (v + c) % P
    # (s + c)^2 = s*s + 2c*s + c^2
    x2 = builder.assign(x * x)
    builder.custom([s, s, x2], qm=1, q0=2 * c, q2=-1, qc=c * c)
    x4 = builder.mul(x2, x2)
    # x4 * (s + c) = x4*s + c*x4
    x5 = builder.assign(builder.value(x4) * x)
    builder.custom([x4, s, x5], qm=1, q0=c, q2=-1)
    return x5


def permute(builder: CircuitBuilder, state: Sequence[Var], config: PoseidonConfig) -> List[Var]:
    if len(state) != config.width:
        raise ValueError(f"state must have {config.width} elements, got {len(state)}")

    rc = round_constants(config)
    mds = mds_matrix(config.width)
    state = list(state)

    for r in range(config.total_rounds):
        full = config.is_full_round(r)
        lanes: List[Var] = []
        offsets: List[int] = []
        for i, s in enumerate(state):
            if full or i == 0:
                lanes.append(_sbox(builder, s, rc[r][i]))
                offsets.append(0)
            else:
                lanes.append(s)
                offsets.append(rc[r][i])
        state = [
            builder.linear(
                list(zip(lanes, row)),
                sum(m * o for m, o in zip(row, offsets)) % P,
            )
            for row in mds
        ]

    return state


class SpongeGadget:
    """In-circuit twin of primitives.poseidon.Sponge."""

    def __init__(self, builder: CircuitBuilder, config: PoseidonConfig, domain: int):
        self.builder = builder
        self.config = config
        zero = builder.constant(0)
        self.state: List[Var] = [zero] * (config.width - 1) + [builder.constant(int(domain))]
        self.pending: List[Var] = []
        self.output_ready = False

    def absorb(self, var: Var) -> None:
        self.pending.append(var)
        if len(self.pending) == self.config.rate:
            self._update_state()
            self.output_ready = True

    def absorb_many(self, variables: Sequence[Var]) -> None:
        for var in variables:
            self.absorb(var)

    def squeeze(self) -> Var:
        if self.pending:
            self._update_state()
        elif not self.output_ready:
            self.state = permute(self.builder, self.state, self.config)
        self.output_ready = False
        return self.state[0]

    def _update_state(self) -> None:
        state = list(self.state)
        for i, var in enumerate(self.pending):
            state[i] = self.builder.add(state[i], var)
        self.state = permute(self.builder, state, self.config)
        self.pending = []


def hash_gadget(builder: CircuitBuilder, config: PoseidonConfig, domain: int,
                variables: Sequence[Var]) -> Var:
    """In-circuit twin of primitives.poseidon.hash_elements."""
    sponge = SpongeGadget(builder, config, domain)
    sponge.absorb_many(variables)
    return sponge.squeeze()
