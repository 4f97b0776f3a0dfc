"""
pooled_http - Thread-safe pooled HTTP client runtime with retry and idle eviction
"""

from .types import (
    Route,
    ConnectionState,
    PooledConnection,
    PoolLimits,
    ErrorKind,
    Attempt,
    PoolStats,
    PoolEventType,
    PoolEvent,
    PoolEventListener,
    ExecutorEvent,
    ExecutorEventListener,
)
from .errors import (
    PoolError,
    PoolTimeout,
    PoolExhausted,
    PoolClosed,
    TransportFailure,
    ExecutionFailed,
)
from .config import (
    PoolConfig,
    DEFAULT_POOL_CONFIG,
    merge_config,
    validate_config,
    generate_connection_id,
)
from .settings import ClientSettings, get_settings
from .transport import TransportFactory, create_route_transport
from .pool import ConnectionPool
from .retry import (
    RETRY_DISPOSITIONS,
    RetryPolicy,
    decide,
    classify_error,
    is_idempotent,
    breaks_connection,
)
from .executor import RequestExecutor
from .evictor import IdleEvictor, EvictorState
from .harness import ConcurrencyHarness, HarnessReport, UnitResult
from .client import PooledHttpClient

__all__ = [
    # Types
    "Route",
    "ConnectionState",
    "PooledConnection",
    "PoolLimits",
    "ErrorKind",
    "Attempt",
    "PoolStats",
    "PoolEventType",
    "PoolEvent",
    "PoolEventListener",
    "ExecutorEvent",
    "ExecutorEventListener",
    # Errors
    "PoolError",
    "PoolTimeout",
    "PoolExhausted",
    "PoolClosed",
    "TransportFailure",
    "ExecutionFailed",
    # Config
    "PoolConfig",
    "DEFAULT_POOL_CONFIG",
    "merge_config",
    "validate_config",
    "generate_connection_id",
    "ClientSettings",
    "get_settings",
    # Transport
    "TransportFactory",
    "create_route_transport",
    # Pool
    "ConnectionPool",
    # Retry
    "RETRY_DISPOSITIONS",
    "RetryPolicy",
    "decide",
    "classify_error",
    "is_idempotent",
    "breaks_connection",
    # Executor
    "RequestExecutor",
    # Evictor
    "IdleEvictor",
    "EvictorState",
    # Harness
    "ConcurrencyHarness",
    "HarnessReport",
    "UnitResult",
    # Client
    "PooledHttpClient",
]


__version__ = "1.0.0"
