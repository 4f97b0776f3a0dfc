"""
Retry policy: failure classification and the retry decision
"""

import random
import socket
import ssl
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

import httpx

from .errors import TransportFailure
from .types import ErrorKind


# Default disposition per error kind. None means "retry only when the
# request is idempotent".
RETRY_DISPOSITIONS: Mapping[ErrorKind, Optional[bool]] = MappingProxyType({
    ErrorKind.NO_RESPONSE_FROM_PEER: True,
    ErrorKind.UNKNOWN_HOST: True,
    ErrorKind.CONNECT_TIMEOUT: False,
    ErrorKind.TLS_HANDSHAKE_FAILURE: False,
    ErrorKind.GENERIC_TLS_ERROR: False,
    ErrorKind.GENERIC_IO_TIMEOUT: False,
    ErrorKind.GENERIC_TRANSPORT: None,
})

# Kinds after which the socket state is unknown; the connection is discarded
CONNECTION_BREAKING_KINDS = frozenset({
    ErrorKind.NO_RESPONSE_FROM_PEER,
    ErrorKind.TLS_HANDSHAKE_FAILURE,
    ErrorKind.GENERIC_TLS_ERROR,
    ErrorKind.GENERIC_IO_TIMEOUT,
    ErrorKind.GENERIC_TRANSPORT,
})

# Methods whose requests enclose an entity
ENTITY_ENCLOSING_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Disconnect before the status line only; a truncated body is not a missing response
_NO_RESPONSE_MARKERS = ("without sending a response", "server disconnected")


def decide(
    error_kind: ErrorKind,
    attempt_count: int,
    request_is_idempotent: bool,
    max_attempts: int,
) -> bool:
    """
    Decide whether a failed request may be attempted again.

    The attempt cutoff is checked first, then the explicit disposition of
    the error kind, and only then the idempotency fallback.

    Args:
        error_kind: Classification of the last failure
        attempt_count: Attempts made so far (1 after the first failure)
        request_is_idempotent: Whether repeating the request is harmless
        max_attempts: Upper bound on attempts

    Returns:
        Whether to retry
    """
    if attempt_count >= max_attempts:
        return False

    disposition = RETRY_DISPOSITIONS.get(error_kind)
    if disposition is not None:
        return disposition

    return request_is_idempotent


def breaks_connection(error_kind: ErrorKind) -> bool:
    """Whether a failure of this kind leaves the connection unusable"""
    return error_kind in CONNECTION_BREAKING_KINDS


def is_idempotent(request: httpx.Request) -> bool:
    """
    Check if a request may be repeated without extra side effects.

    Entity-enclosing methods and any request carrying a body are treated as
    non-idempotent, since the body may already have been partially sent.
    """
    if request.method.upper() in ENTITY_ENCLOSING_METHODS:
        return False

    if "transfer-encoding" in request.headers:
        return False

    content_length = request.headers.get("content-length")
    if content_length is not None and content_length.strip() not in ("", "0"):
        return False

    return True


def _cause_chain(error: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_error(error: BaseException) -> Optional[ErrorKind]:
    """
    Map a transport exception to an ErrorKind.

    httpx wraps the socket and ssl errors raised by the network layer, so
    the cause chain is walked to find them.

    Returns:
        The error kind, or None when ``error`` is not a transport failure
    """
    if isinstance(error, TransportFailure):
        return error.kind

    if not isinstance(error, (httpx.TransportError, OSError)):
        return None

    if isinstance(error, httpx.ConnectTimeout):
        return ErrorKind.CONNECT_TIMEOUT

    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return ErrorKind.GENERIC_IO_TIMEOUT

    chain = list(_cause_chain(error))

    if any(isinstance(exc, socket.gaierror) for exc in chain):
        return ErrorKind.UNKNOWN_HOST

    if any(isinstance(exc, ssl.SSLError) for exc in chain):
        if isinstance(error, httpx.ConnectError):
            return ErrorKind.TLS_HANDSHAKE_FAILURE
        return ErrorKind.GENERIC_TLS_ERROR

    if isinstance(error, httpx.RemoteProtocolError):
        message = str(error).lower()
        if any(marker in message for marker in _NO_RESPONSE_MARKERS):
            return ErrorKind.NO_RESPONSE_FROM_PEER

    return ErrorKind.GENERIC_TRANSPORT


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit plus the backoff applied between attempts"""

    max_attempts: int = 5
    base_delay_seconds: float = 0.0
    max_delay_seconds: float = 5.0
    jitter_factor: float = 0.0

    def should_retry(
        self,
        error_kind: ErrorKind,
        attempt_count: int,
        request_is_idempotent: bool,
        max_attempts: Optional[int] = None,
    ) -> bool:
        limit = self.max_attempts if max_attempts is None else max_attempts
        return decide(error_kind, attempt_count, request_is_idempotent, limit)

    def delay_for(self, attempt_count: int) -> float:
        """
        Backoff delay before the next attempt.

        Exponential in the number of failed attempts, with jitter applied
        around the computed value:
        delay = min(cap, base * 2^(n-1)) * (1 - jitter/2 + random * jitter)
        """
        if self.base_delay_seconds <= 0:
            return 0.0

        exponential = min(
            self.max_delay_seconds,
            self.base_delay_seconds * (2 ** max(0, attempt_count - 1)),
        )
        jitter_amount = random.random() * self.jitter_factor * exponential
        delay = exponential * (1 - self.jitter_factor / 2) + jitter_amount
        return min(delay, self.max_delay_seconds)
