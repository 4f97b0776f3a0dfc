"""
Type definitions for pooled_http
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

import httpx


DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class Route:
    """Pooling bucket: one destination (scheme, host, port)"""

    scheme: str
    host: str
    port: int

    @classmethod
    def from_url(cls, url: Any) -> "Route":
        """Build a route from a URL string or httpx.URL"""
        parsed = url if isinstance(url, httpx.URL) else httpx.URL(str(url))
        scheme = parsed.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise ValueError(f"Unsupported URL scheme: {parsed.scheme!r}")
        if not parsed.host:
            raise ValueError(f"URL has no host: {url}")
        port = parsed.port or DEFAULT_PORTS[scheme]
        return cls(scheme=scheme, host=parsed.host.lower(), port=port)

    def __str__(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


class ConnectionState(str, Enum):
    """Connection state"""

    IDLE = "idle"
    LEASED = "leased"
    CLOSED = "closed"


@dataclass(eq=False)
class PooledConnection:
    """
    A leasable handle bound to a route.

    Identity is the object itself; the pool hands out the same instance on
    reuse, so equality is by identity.
    """

    id: str
    route: Route
    transport: httpx.BaseTransport
    state: ConnectionState
    created_at: float
    last_used_at: float
    request_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.state != ConnectionState.CLOSED

    def __repr__(self) -> str:
        return (
            f"PooledConnection(id={self.id!r}, route={str(self.route)!r}, "
            f"state={self.state.value!r}, request_count={self.request_count})"
        )


@dataclass(frozen=True)
class PoolLimits:
    """Capacity limits, fixed at pool construction"""

    max_total: int = 200
    max_per_route: int = 20
    per_route: Mapping[Route, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "per_route", MappingProxyType(dict(self.per_route)))

    def __hash__(self) -> int:
        return hash((self.max_total, self.max_per_route, frozenset(self.per_route.items())))

    def for_route(self, route: Route) -> int:
        """Get the per-route maximum, honoring overrides"""
        return self.per_route.get(route, self.max_per_route)


class ErrorKind(str, Enum):
    """Transport failure classification, decided once per failed attempt"""

    NO_RESPONSE_FROM_PEER = "no_response_from_peer"
    UNKNOWN_HOST = "unknown_host"
    CONNECT_TIMEOUT = "connect_timeout"
    TLS_HANDSHAKE_FAILURE = "tls_handshake_failure"
    GENERIC_TLS_ERROR = "generic_tls_error"
    GENERIC_IO_TIMEOUT = "generic_io_timeout"
    GENERIC_TRANSPORT = "generic_transport"


@dataclass
class Attempt:
    """Book-keeping for one logical request across its attempts"""

    request_id: str
    execution_count: int = 0
    last_error: Optional[BaseException] = None
    last_error_kind: Optional[ErrorKind] = None


@dataclass
class PoolStats:
    """Connection pool statistics"""

    total_created: int
    total_closed: int
    total_reused: int
    leased_connections: int
    idle_connections: int
    pending_acquires: int
    leased_by_route: Dict[str, int]
    idle_by_route: Dict[str, int]
    peak_leased: int
    hit_ratio: float


class PoolEventType(str, Enum):
    """Pool event types"""

    CONNECTION_CREATED = "connection:created"
    CONNECTION_ACQUIRED = "connection:acquired"
    CONNECTION_RELEASED = "connection:released"
    CONNECTION_CLOSED = "connection:closed"
    CONNECTION_INVALIDATED = "connection:invalidated"
    CONNECTION_EXPIRED = "connection:expired"
    ACQUIRE_WAITING = "acquire:waiting"
    ACQUIRE_TIMEOUT = "acquire:timeout"
    POOL_CLOSED = "pool:closed"


@dataclass
class PoolEvent:
    """Pool event"""

    type: PoolEventType
    timestamp: float
    connection_id: Optional[str] = None
    route: Optional[Route] = None
    data: Optional[Dict[str, Any]] = None


PoolEventListener = Callable[[PoolEvent], None]


@dataclass
class ExecutorEvent:
    """Event emitted by the request executor"""

    type: str
    """One of attempt:start, attempt:success, attempt:fail, retry:wait"""

    request_id: str
    attempt: int
    data: Dict[str, Any] = field(default_factory=dict)


ExecutorEventListener = Callable[[ExecutorEvent], None]
