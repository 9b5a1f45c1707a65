"""Folding strategy contract and registry.

Every strategy implements the same duck-typed contract (FoldingScheme) and
is looked up by the FoldStrategy named in the FoldingConfig; callers never
branch on the concrete class.
"""

from typing import Callable, Dict, List, Protocol, Sequence, Tuple

from constraints.system import ConstraintSystem
from primitives.commitment import CommitmentKey
from primitives.transcript import Transcript
from protocol.config import FoldStrategy
from protocol.data import FoldProof, FoldResult, Instance, Witness
from protocol.multifold import MultiFolding
from protocol.nifs import PairwiseFolding


class FoldingScheme(Protocol):
    system: ConstraintSystem

    def fold(self, transcript: Transcript, instances: Sequence[Instance],
             witnesses: Sequence[Witness]) -> FoldResult: ...

    def verify_fold(self, transcript: Transcript, instances: Sequence[Instance],
                    proof: FoldProof, folded: Instance) -> bool: ...

    def is_valid_fold(self, transcript: Transcript, instances: Sequence[Instance],
                      proof: FoldProof, folded: Instance) -> bool: ...

    def fold_coefficients(self, challenge: int, count: int = 2) -> List[int]: ...

    def synthesize_coefficients(self, builder, challenge, count: int = 2) -> List: ...

    def witness_terms(self) -> List[List[Tuple[int, int]]]: ...

    def error_terms(self, num_terms: int) -> List[List[Tuple[int, int]]]: ...


_REGISTRY: Dict[FoldStrategy, Callable[[ConstraintSystem, CommitmentKey], FoldingScheme]] = {
    FoldStrategy.PAIRWISE: PairwiseFolding,
    FoldStrategy.MULTI: MultiFolding,
}


def make_scheme(strategy: FoldStrategy, system: ConstraintSystem, key: CommitmentKey) -> FoldingScheme:
    """Instantiate the folding scheme registered for `strategy`."""
    return scheme_class(strategy)(system, key)


def scheme_class(strategy: FoldStrategy):
    """Class registered for `strategy` (its coefficient methods are static)."""
    try:
        return _REGISTRY[strategy]
    except KeyError:
        raise ValueError(f"no folding scheme registered for {strategy}") from None
