"""Exceptions raised by the folding engine.

None of these are retried: every one is fatal for the operation that raised
it, and the IVC driver leaves its state untouched when a step fails.
"""

from typing import Optional


class FoldingError(Exception):
    """Error in folding or IVC operations."""
    pass


class ConstraintViolation(FoldingError):
    """A witness does not satisfy the circuit it is claimed for."""

    def __init__(self, message: str, gate: Optional[int] = None, row: Optional[int] = None,
                 step: Optional[int] = None):
        self.message = message
        self.gate = gate
        self.row = row
        self.step = step
        where = []
        if step is not None:
            where.append(f"step {step}")
        if gate is not None:
            where.append(f"gate {gate}")
        if row is not None:
            where.append(f"row {row}")
        super().__init__(f"{message} ({', '.join(where)})" if where else message)


class DegreeOverflow(FoldingError):
    """A gate exceeds the configured maximum degree."""

    def __init__(self, gate: int, degree: int, max_degree: int):
        self.gate = gate
        self.degree = degree
        self.max_degree = max_degree
        super().__init__(f"gate {gate} has degree {degree}, maximum is {max_degree}")


class CommitmentMismatch(FoldingError):
    """A recomputed commitment or folded value differs from the claimed one."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(f"mismatch in {field}" + (f": {message}" if message else ""))


class TranscriptDesync(FoldingError):
    """Prover and verifier transcripts diverged."""
    pass


class InvalidState(FoldingError):
    """An IVC operation was called in a state that does not allow it."""

    def __init__(self, state, operation: str):
        self.state = state
        self.operation = operation
        super().__init__(f"cannot {operation} in state {getattr(state, 'name', state)}")
