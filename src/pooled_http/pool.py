"""
Connection pool implementation
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .config import PoolConfig, generate_connection_id, validate_config
from .errors import PoolClosed, PoolExhausted, PoolTimeout
from .transport import TransportFactory, create_route_transport
from .types import (
    ConnectionState,
    PooledConnection,
    PoolEvent,
    PoolEventListener,
    PoolEventType,
    PoolLimits,
    PoolStats,
    Route,
)

logger = logging.getLogger(__name__)

_PendingEvent = Tuple[PoolEventType, Optional[PooledConnection], Optional[Route], Optional[Dict[str, Any]]]


class ConnectionPool:
    """
    Thread-safe connection pool partitioned by route.

    All accounting (idle lists, leases, per-route counts) lives behind a
    single condition variable. The lock is only held while that accounting
    changes: transports are closed and listeners are called after it is
    released.

    Invariants:
    - leased connections <= max_total, and open (idle + leased) <= max_total
    - leased connections for a route <= the route's limit
    - an open connection is either idle or leased, never both
    """

    def __init__(
        self,
        limits: Optional[PoolLimits] = None,
        transport_factory: Optional[TransportFactory] = None,
        *,
        pool_id: str = "default-pool",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits = limits or PoolLimits()
        if self._limits.max_total < 0 or self._limits.max_per_route < 0:
            raise ValueError("Pool limits must be non-negative")
        self._id = pool_id
        self._factory = transport_factory or create_route_transport
        self._clock = clock

        self._lock = threading.Lock()
        self._available = threading.Condition(self._lock)
        self._idle: Dict[Route, List[PooledConnection]] = {}
        self._idle_count = 0
        self._leased: Dict[str, PooledConnection] = {}
        self._leased_per_route: Dict[Route, int] = {}
        self._pending = 0
        self._closed = False
        self._listeners: Dict[PoolEventType, Set[PoolEventListener]] = {}

        # Statistics
        self._stats = {
            "total_created": 0,
            "total_closed": 0,
            "total_reused": 0,
            "total_acquired": 0,
            "peak_leased": 0,
        }

    @classmethod
    def from_config(
        cls,
        config: PoolConfig,
        transport_factory: Optional[TransportFactory] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> "ConnectionPool":
        """Create a pool from a PoolConfig, rejecting invalid values"""
        errors = validate_config(config)
        if errors:
            raise ValueError(f"Invalid pool config: {'; '.join(errors)}")
        return cls(config.limits, transport_factory, pool_id=config.id, clock=clock)

    @property
    def id(self) -> str:
        """Get the pool ID"""
        return self._id

    @property
    def limits(self) -> PoolLimits:
        return self._limits

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(self, route: Route, timeout: Optional[float] = None) -> PooledConnection:
        """
        Lease a connection for ``route``.

        Reuses the most recently released idle connection of the route when
        there is one, otherwise creates a connection if the limits allow it.
        Blocks until one of those becomes possible; ``timeout`` of None waits
        indefinitely.

        Raises:
            PoolExhausted: the limits can never satisfy a lease for ``route``
            PoolTimeout: nothing became available within ``timeout`` seconds
            PoolClosed: the pool is (or gets) closed
        """
        route_limit = self._limits.for_route(route)
        if self._limits.max_total == 0 or route_limit == 0:
            raise PoolExhausted(
                f"No connection can be leased for {route}: "
                f"max_total={self._limits.max_total}, max_per_route={route_limit}"
            )

        deadline = None if timeout is None else time.monotonic() + timeout
        events: List[_PendingEvent] = []
        to_close: List[PooledConnection] = []
        waiting = False

        try:
            with self._available:
                while True:
                    if self._closed:
                        raise PoolClosed()

                    connection = self._lease_idle(route)
                    if connection is not None:
                        events.append((PoolEventType.CONNECTION_ACQUIRED, connection, route, {"reused": True}))
                        break

                    if self._make_room(route, route_limit, to_close, events):
                        connection = self._create_connection(route)
                        events.append((PoolEventType.CONNECTION_CREATED, connection, route, None))
                        events.append((PoolEventType.CONNECTION_ACQUIRED, connection, route, {"reused": False}))
                        break

                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        events.append((PoolEventType.ACQUIRE_TIMEOUT, None, route, {"timeout_seconds": timeout}))
                        raise PoolTimeout(
                            f"Timed out after {timeout}s waiting for a connection to {route}"
                        )

                    if not waiting:
                        waiting = True
                        logger.debug(f"acquire: waiting for capacity on {route}")
                        events.append((PoolEventType.ACQUIRE_WAITING, None, route, None))

                    self._pending += 1
                    try:
                        self._available.wait(remaining)
                    finally:
                        self._pending -= 1
        finally:
            self._close_transports(to_close)
            self._emit_all(events)

        logger.debug(f"acquire: leased {connection.id} for {route}")
        return connection

    def release(self, connection: PooledConnection) -> None:
        """Return a leased connection to the idle set of its route"""
        with self._available:
            if not self._is_leased(connection):
                logger.warning(
                    f"Ignoring release of connection {connection.id} "
                    f"(state={connection.state.value}): not leased from pool {self._id}"
                )
                return

            self._unlease(connection)
            connection.state = ConnectionState.IDLE
            connection.last_used_at = self._clock()
            self._idle.setdefault(connection.route, []).append(connection)
            self._idle_count += 1
            self._available.notify_all()

        logger.debug(f"release: {connection.id} idle on {connection.route}")
        self._emit(PoolEventType.CONNECTION_RELEASED, connection.id, connection.route)

    def invalidate(self, connection: PooledConnection, error: Optional[BaseException] = None) -> None:
        """Take a broken leased connection out of circulation and close it"""
        with self._available:
            if not self._is_leased(connection):
                logger.warning(
                    f"Ignoring invalidation of connection {connection.id} "
                    f"(state={connection.state.value}): not leased from pool {self._id}"
                )
                return

            self._unlease(connection)
            connection.state = ConnectionState.CLOSED
            self._stats["total_closed"] += 1
            self._available.notify_all()

        logger.debug(f"invalidate: closing {connection.id} on {connection.route}: {error}")
        self._close_transports([connection])
        self._emit(
            PoolEventType.CONNECTION_INVALIDATED,
            connection.id,
            connection.route,
            {"error": str(error) if error else None},
        )
        self._emit(PoolEventType.CONNECTION_CLOSED, connection.id, connection.route)

    def close_expired(self, idle_threshold: float) -> int:
        """
        Close idle connections unused for longer than ``idle_threshold`` seconds.

        Leased connections are never touched. Returns the number of
        connections closed.
        """
        now = self._clock()
        expired: List[PooledConnection] = []

        with self._available:
            for route in list(self._idle):
                keep = []
                for conn in self._idle[route]:
                    if now - conn.last_used_at > idle_threshold:
                        conn.state = ConnectionState.CLOSED
                        expired.append(conn)
                    else:
                        keep.append(conn)
                if keep:
                    self._idle[route] = keep
                else:
                    del self._idle[route]

            self._idle_count -= len(expired)
            self._stats["total_closed"] += len(expired)
            if expired:
                self._available.notify_all()

        if expired:
            logger.debug(f"close_expired: closing {len(expired)} connection(s) idle > {idle_threshold}s")
        self._close_transports(expired)
        for conn in expired:
            self._emit(PoolEventType.CONNECTION_EXPIRED, conn.id, conn.route)
            self._emit(PoolEventType.CONNECTION_CLOSED, conn.id, conn.route)
        return len(expired)

    def close(self) -> None:
        """Close the pool and every idle and leased connection"""
        with self._available:
            if self._closed:
                return
            self._closed = True

            connections = [c for conns in self._idle.values() for c in conns]
            connections.extend(self._leased.values())
            for conn in connections:
                conn.state = ConnectionState.CLOSED

            self._idle.clear()
            self._idle_count = 0
            self._leased.clear()
            self._leased_per_route.clear()
            self._stats["total_closed"] += len(connections)
            self._available.notify_all()

        logger.info(f"Closing pool {self._id}: {len(connections)} connection(s)")
        self._close_transports(connections)
        for conn in connections:
            self._emit(PoolEventType.CONNECTION_CLOSED, conn.id, conn.route)
        self._emit(PoolEventType.POOL_CLOSED)

    def get_stats(self) -> PoolStats:
        """Get pool statistics"""
        with self._lock:
            leased_by_route = {
                str(route): count for route, count in self._leased_per_route.items() if count
            }
            idle_by_route = {str(route): len(conns) for route, conns in self._idle.items()}
            acquired = self._stats["total_acquired"]
            return PoolStats(
                total_created=self._stats["total_created"],
                total_closed=self._stats["total_closed"],
                total_reused=self._stats["total_reused"],
                leased_connections=len(self._leased),
                idle_connections=self._idle_count,
                pending_acquires=self._pending,
                leased_by_route=leased_by_route,
                idle_by_route=idle_by_route,
                peak_leased=self._stats["peak_leased"],
                hit_ratio=self._stats["total_reused"] / acquired if acquired else 0.0,
            )

    def on(self, event_type: PoolEventType, listener: PoolEventListener) -> None:
        """Add an event listener"""
        with self._lock:
            self._listeners.setdefault(event_type, set()).add(listener)

    def off(self, event_type: PoolEventType, listener: PoolEventListener) -> None:
        """Remove an event listener"""
        with self._lock:
            if event_type in self._listeners:
                self._listeners[event_type].discard(listener)

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # The helpers below expect the lock to be held.

    def _is_leased(self, connection: PooledConnection) -> bool:
        return (
            connection.state == ConnectionState.LEASED
            and self._leased.get(connection.id) is connection
        )

    def _lease_idle(self, route: Route) -> Optional[PooledConnection]:
        """Pop the most recently used idle connection for the route"""
        idle = self._idle.get(route)
        if not idle:
            return None

        connection = idle.pop()
        if not idle:
            del self._idle[route]
        self._idle_count -= 1
        self._stats["total_reused"] += 1
        self._lease(connection)
        return connection

    def _make_room(
        self,
        route: Route,
        route_limit: int,
        to_close: List[PooledConnection],
        events: List[_PendingEvent],
    ) -> bool:
        """Check whether a new connection may be opened for the route"""
        if self._leased_per_route.get(route, 0) >= route_limit:
            return False

        if len(self._leased) + self._idle_count < self._limits.max_total:
            return True

        # At the total limit: reclaim the least recently used idle
        # connection of another route, if any.
        victim: Optional[PooledConnection] = None
        for conns in self._idle.values():
            if conns and (victim is None or conns[0].last_used_at < victim.last_used_at):
                victim = conns[0]
        if victim is None:
            return False

        victims = self._idle[victim.route]
        victims.pop(0)
        if not victims:
            del self._idle[victim.route]
        self._idle_count -= 1
        victim.state = ConnectionState.CLOSED
        self._stats["total_closed"] += 1
        to_close.append(victim)
        events.append((PoolEventType.CONNECTION_CLOSED, victim, victim.route, {"reason": "reclaimed"}))
        return True

    def _create_connection(self, route: Route) -> PooledConnection:
        now = self._clock()
        connection = PooledConnection(
            id=generate_connection_id(),
            route=route,
            transport=self._factory(route),
            state=ConnectionState.LEASED,
            created_at=now,
            last_used_at=now,
        )
        self._stats["total_created"] += 1
        self._lease(connection)
        return connection

    def _lease(self, connection: PooledConnection) -> None:
        connection.state = ConnectionState.LEASED
        connection.request_count += 1
        self._leased[connection.id] = connection
        route = connection.route
        self._leased_per_route[route] = self._leased_per_route.get(route, 0) + 1
        self._stats["total_acquired"] += 1
        self._stats["peak_leased"] = max(self._stats["peak_leased"], len(self._leased))

    def _unlease(self, connection: PooledConnection) -> None:
        del self._leased[connection.id]
        route = connection.route
        remaining = self._leased_per_route.get(route, 0) - 1
        if remaining > 0:
            self._leased_per_route[route] = remaining
        else:
            self._leased_per_route.pop(route, None)

    # Lock-free helpers

    def _close_transports(self, connections: List[PooledConnection]) -> None:
        for conn in connections:
            try:
                conn.transport.close()
            except Exception:
                logger.exception(f"Error closing connection {conn.id} to {conn.route}")

    def _emit_all(self, events: List[_PendingEvent]) -> None:
        for event_type, connection, route, data in events:
            self._emit(event_type, connection.id if connection else None, route, data)

    def _emit(
        self,
        event_type: PoolEventType,
        connection_id: Optional[str] = None,
        route: Optional[Route] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit an event"""
        with self._lock:
            listeners = list(self._listeners.get(event_type, ()))
        if not listeners:
            return

        event = PoolEvent(
            type=event_type,
            timestamp=time.time(),
            connection_id=connection_id,
            route=route,
            data=data,
        )
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.warning(f"Pool event listener failed for {event_type.value}", exc_info=True)
