"""Protocol - folding schemes, augmented circuit and IVC driver.

Submodules import the constraint layer, so they are imported explicitly
(protocol.nifs, protocol.ivc, ...) rather than re-exported here.
"""

from protocol.config import FoldingConfig, FoldStrategy
from protocol.errors import (
    CommitmentMismatch,
    ConstraintViolation,
    DegreeOverflow,
    FoldingError,
    InvalidState,
    TranscriptDesync,
)

__all__ = [
    # Config
    "FoldingConfig",
    "FoldStrategy",
    # Errors
    "FoldingError",
    "ConstraintViolation",
    "DegreeOverflow",
    "CommitmentMismatch",
    "TranscriptDesync",
    "InvalidState",
]
