"""
Exceptions raised by pooled_http
"""

from typing import Optional

from .types import ErrorKind


class PoolError(Exception):
    """Base class for connection pool errors."""


class PoolTimeout(PoolError, TimeoutError):
    """No idle connection or free capacity became available in time."""


class PoolExhausted(PoolError):
    """The pool limits make the acquire request unsatisfiable."""


class PoolClosed(PoolError, RuntimeError):
    """Raised when using a pool that has been closed."""

    def __init__(self, message: str = "Connection pool is closed") -> None:
        super().__init__(message)


class TransportFailure(Exception):
    """
    A transport error that already knows its classification.

    Custom transports raise this instead of an httpx exception when they can
    tell precisely what went wrong.
    """

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class ExecutionFailed(Exception):
    """Terminal failure of a logical request after its last attempt."""

    def __init__(
        self,
        last_error: BaseException,
        *,
        error_kind: Optional[ErrorKind],
        attempts: int,
        request_id: str,
    ) -> None:
        kind = error_kind.value if error_kind else "unclassified"
        super().__init__(
            f"Request {request_id} failed after {attempts} attempt(s) "
            f"[{kind}]: {last_error}"
        )
        self.last_error = last_error
        self.error_kind = error_kind
        self.attempts = attempts
        self.request_id = request_id
