"""
Shared fixtures for pooled_http tests.
"""
import threading
from typing import Callable, List, Optional

import httpx
import pytest

from pooled_http.pool import ConnectionPool
from pooled_http.types import PoolLimits, Route


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers whether it was closed."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        super().__init__(handler)
        self.closed = False

    def close(self) -> None:
        self.closed = True


class TransportRecorder:
    """Transport factory that records every transport it builds."""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.handler = handler or (lambda request: httpx.Response(200, content=b"OK"))
        self.transports: List[RecordingTransport] = []
        self._lock = threading.Lock()

    def __call__(self, route: Route) -> RecordingTransport:
        transport = RecordingTransport(lambda request: self.handler(request))
        with self._lock:
            self.transports.append(transport)
        return transport


@pytest.fixture
def route():
    """Default test route."""
    return Route(scheme="https", host="api.example.com", port=443)


@pytest.fixture
def other_route():
    """A second route."""
    return Route(scheme="http", host="other.example.com", port=80)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return TransportRecorder()


@pytest.fixture
def make_pool(recorder, clock):
    """Build pools that are closed after the test."""
    pools: List[ConnectionPool] = []

    def factory(max_total: int = 10, max_per_route: int = 5, **kwargs) -> ConnectionPool:
        pool = ConnectionPool(
            PoolLimits(max_total=max_total, max_per_route=max_per_route, **kwargs),
            recorder,
            pool_id="test-pool",
            clock=clock,
        )
        pools.append(pool)
        return pool

    yield factory

    for pool in pools:
        pool.close()
