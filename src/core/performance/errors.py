"""
Exceptions raised by the performance engine.

Nothing here is user-facing. Messages are internal diagnostics; the
HTTP layer decides what to show.
"""

from typing import Optional


class PerformanceEngineError(Exception):
    """Base class for performance engine errors."""
    pass


class ValidationError(PerformanceEngineError):
    """
    Raised when a source event is malformed or an edit is not allowed.

    The event is dropped. We never create a record with a zeroed or
    guessed value in place of a missing one.
    """

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(PerformanceEngineError):
    """Raised when a performance id does not exist in the store."""
    pass


class ConcurrencyConflict(PerformanceEngineError):
    """
    Raised when a personal best scope ends up with zero or several flags.

    The maintainer handles this itself by re-running winner selection.
    It should never reach a caller.
    """

    def __init__(self, message: str, flagged_count: int) -> None:
        super().__init__(message)
        self.flagged_count = flagged_count


class PerformanceStoreError(PerformanceEngineError):
    """Raised when the underlying store fails to read or write."""
    pass


class RecomputeError(PerformanceEngineError):
    """
    Transient failure to repair a personal best scope.

    Raised only after the synchronous retry has also failed. Running
    recompute again later is always safe.
    """
    pass
