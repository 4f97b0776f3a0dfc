"""
Tests for ConnectionPool

Coverage includes:
- Decision/Branch Coverage: acquire/release/invalidate paths
- State Transition Testing: idle -> leased -> idle / closed
- Capacity invariants under contention
- Eviction of expired idle connections
- Event emission
"""

import logging
import threading
import time
from typing import List

import pytest

from pooled_http.errors import PoolClosed, PoolExhausted, PoolTimeout
from pooled_http.types import ConnectionState, PoolEvent, PoolEventType, Route


class TestConnectionPool:
    """Tests for ConnectionPool"""

    class TestAcquire:
        """Tests for acquire"""

        def test_creates_new_connection_when_empty(self, make_pool, route, recorder):
            """Should create a leased connection bound to the route"""
            pool = make_pool()

            connection = pool.acquire(route, timeout=1)

            assert connection.route == route
            assert connection.state == ConnectionState.LEASED
            assert connection.request_count == 1
            assert len(recorder.transports) == 1
            assert connection.transport is recorder.transports[0]

        def test_reuses_idle_connection(self, make_pool, route, recorder):
            """Should prefer reuse over creation"""
            pool = make_pool()
            first = pool.acquire(route, timeout=1)
            pool.release(first)

            second = pool.acquire(route, timeout=1)

            assert second is first
            assert second.request_count == 2
            assert len(recorder.transports) == 1

        def test_prefers_most_recently_used_idle_connection(self, make_pool, route, clock):
            """Should pick the most recently released idle connection"""
            pool = make_pool()
            older = pool.acquire(route, timeout=1)
            newer = pool.acquire(route, timeout=1)
            pool.release(older)
            clock.advance(5)
            pool.release(newer)

            assert pool.acquire(route, timeout=1) is newer
            assert pool.acquire(route, timeout=1) is older

        def test_does_not_share_idle_connections_across_routes(self, make_pool, route, other_route):
            """Should keep idle connections in their own route"""
            pool = make_pool()
            first = pool.acquire(route, timeout=1)
            pool.release(first)

            other = pool.acquire(other_route, timeout=1)

            assert other is not first
            assert other.route == other_route

        def test_times_out_when_route_is_full(self, make_pool, route):
            """Should raise PoolTimeout once the per-route limit is reached"""
            pool = make_pool(max_total=10, max_per_route=1)
            pool.acquire(route, timeout=1)

            started = time.monotonic()
            with pytest.raises(PoolTimeout):
                pool.acquire(route, timeout=0.1)
            assert time.monotonic() - started >= 0.09

        def test_times_out_when_pool_is_full(self, make_pool, route, other_route):
            """Should raise PoolTimeout once the total limit is reached"""
            pool = make_pool(max_total=1, max_per_route=1)
            pool.acquire(route, timeout=1)

            with pytest.raises(PoolTimeout):
                pool.acquire(other_route, timeout=0.05)

        def test_timeout_leaves_no_phantom_lease(self, make_pool, route):
            """Should not count a timed out acquire as leased"""
            pool = make_pool(max_total=1, max_per_route=1)
            held = pool.acquire(route, timeout=1)
            with pytest.raises(PoolTimeout):
                pool.acquire(route, timeout=0.01)

            stats = pool.get_stats()
            assert stats.leased_connections == 1
            assert stats.pending_acquires == 0

            pool.release(held)
            assert pool.acquire(route, timeout=0) is held

        def test_zero_per_route_limit_is_exhausted(self, make_pool, route):
            """Should fail immediately when the route can never be served"""
            pool = make_pool(max_per_route=0)
            with pytest.raises(PoolExhausted):
                pool.acquire(route, timeout=5)

        def test_zero_route_override_is_exhausted(self, make_pool, route, other_route):
            """Should honor a per-route override of zero"""
            pool = make_pool(max_per_route=5, per_route={route: 0})
            with pytest.raises(PoolExhausted):
                pool.acquire(route, timeout=5)
            assert pool.acquire(other_route, timeout=1).route == other_route

        def test_route_override_raises_limit(self, make_pool, route):
            """Should allow more connections for an overridden route"""
            pool = make_pool(max_total=10, max_per_route=1, per_route={route: 3})
            leased = [pool.acquire(route, timeout=0) for _ in range(3)]
            assert len({c.id for c in leased}) == 3

        def test_reclaims_idle_connection_of_other_route_at_total_limit(
            self, make_pool, route, other_route, recorder
        ):
            """Should close an idle connection elsewhere to open one for a new route"""
            pool = make_pool(max_total=1, max_per_route=1)
            idle = pool.acquire(other_route, timeout=0)
            pool.release(idle)

            connection = pool.acquire(route, timeout=0)

            assert connection.route == route
            assert idle.state == ConnectionState.CLOSED
            assert recorder.transports[0].closed is True
            stats = pool.get_stats()
            assert stats.idle_connections == 0
            assert stats.leased_connections == 1

        def test_raises_when_closed(self, make_pool, route):
            """Should reject acquire on a closed pool"""
            pool = make_pool()
            pool.close()
            with pytest.raises(PoolClosed, match="Connection pool is closed"):
                pool.acquire(route, timeout=1)

        def test_close_wakes_waiters(self, make_pool, route):
            """Should fail blocked acquires with PoolClosed when the pool closes"""
            pool = make_pool(max_total=1, max_per_route=1)
            pool.acquire(route, timeout=0)
            errors: List[BaseException] = []

            def waiter():
                try:
                    pool.acquire(route, timeout=5)
                except BaseException as e:
                    errors.append(e)

            thread = threading.Thread(target=waiter)
            thread.start()
            _wait_for(lambda: pool.get_stats().pending_acquires == 1)
            pool.close()
            thread.join(timeout=2)

            assert not thread.is_alive()
            assert len(errors) == 1
            assert isinstance(errors[0], PoolClosed)

    class TestRelease:
        """Tests for release"""

        def test_returns_connection_to_idle(self, make_pool, route, clock):
            """Should make the connection idle without changing route or identity"""
            pool = make_pool()
            connection = pool.acquire(route, timeout=1)
            connection_id = connection.id
            clock.advance(7)

            pool.release(connection)

            assert connection.state == ConnectionState.IDLE
            assert connection.id == connection_id
            assert connection.route == route
            assert connection.last_used_at == clock.now
            stats = pool.get_stats()
            assert stats.idle_connections == 1
            assert stats.leased_connections == 0

        def test_double_release_is_ignored_with_warning(self, make_pool, route, caplog):
            """Should log and ignore a second release"""
            pool = make_pool()
            connection = pool.acquire(route, timeout=1)
            pool.release(connection)

            with caplog.at_level(logging.WARNING, logger="pooled_http.pool"):
                pool.release(connection)

            assert "Ignoring release" in caplog.text
            assert pool.get_stats().idle_connections == 1

        def test_release_of_unknown_connection_is_ignored(self, make_pool, route, caplog):
            """Should ignore connections leased from another pool"""
            pool = make_pool()
            foreign = make_pool().acquire(route, timeout=1)

            with caplog.at_level(logging.WARNING, logger="pooled_http.pool"):
                pool.release(foreign)

            assert "not leased from pool" in caplog.text
            assert pool.get_stats().idle_connections == 0

        def test_release_after_close_is_ignored(self, make_pool, route):
            """Should not resurrect a connection closed by pool shutdown"""
            pool = make_pool()
            connection = pool.acquire(route, timeout=1)
            pool.close()

            pool.release(connection)

            assert connection.state == ConnectionState.CLOSED
            assert pool.get_stats().idle_connections == 0

        def test_release_unblocks_waiting_acquire(self, make_pool, route):
            """Should hand freed capacity to a blocked acquire before it times out"""
            pool = make_pool(max_total=1, max_per_route=1)
            held = pool.acquire(route, timeout=0)
            acquired = []

            thread = threading.Thread(target=lambda: acquired.append(pool.acquire(route, timeout=5)))
            thread.start()
            _wait_for(lambda: pool.get_stats().pending_acquires == 1)
            pool.release(held)
            thread.join(timeout=2)

            assert acquired == [held]

    class TestInvalidate:
        """Tests for invalidate"""

        def test_closes_and_frees_capacity(self, make_pool, route, recorder):
            """Should close the connection and never return it to idle"""
            pool = make_pool(max_total=1, max_per_route=1)
            connection = pool.acquire(route, timeout=0)

            pool.invalidate(connection, ConnectionResetError("reset"))

            assert connection.state == ConnectionState.CLOSED
            assert recorder.transports[0].closed is True
            stats = pool.get_stats()
            assert stats.idle_connections == 0
            assert stats.leased_connections == 0

            replacement = pool.acquire(route, timeout=0)
            assert replacement is not connection

        def test_ignores_connection_not_leased(self, make_pool, route, caplog):
            """Should ignore an idle connection"""
            pool = make_pool()
            connection = pool.acquire(route, timeout=0)
            pool.release(connection)

            with caplog.at_level(logging.WARNING, logger="pooled_http.pool"):
                pool.invalidate(connection)

            assert connection.state == ConnectionState.IDLE
            assert "Ignoring invalidation" in caplog.text

    class TestCloseExpired:
        """Tests for close_expired"""

        def test_closes_only_connections_past_threshold(self, make_pool, route, clock, recorder):
            """Should close stale idle connections and keep fresh ones"""
            pool = make_pool()
            stale = pool.acquire(route, timeout=0)
            fresh = pool.acquire(route, timeout=0)
            pool.release(stale)
            clock.advance(8)
            pool.release(fresh)
            clock.advance(5)

            closed = pool.close_expired(10)

            assert closed == 1
            assert stale.state == ConnectionState.CLOSED
            assert fresh.state == ConnectionState.IDLE
            assert recorder.transports[0].closed is True
            assert recorder.transports[1].closed is False

        def test_age_equal_to_threshold_is_kept(self, make_pool, route, clock):
            """Should only close connections strictly older than the threshold"""
            pool = make_pool()
            connection = pool.acquire(route, timeout=0)
            pool.release(connection)
            clock.advance(10)

            assert pool.close_expired(10) == 0
            assert connection.state == ConnectionState.IDLE

        def test_never_touches_leased_connections(self, make_pool, route, clock):
            """Should leave leased connections alone however old"""
            pool = make_pool()
            connection = pool.acquire(route, timeout=0)
            clock.advance(1000)

            assert pool.close_expired(1) == 0
            assert connection.state == ConnectionState.LEASED

        def test_logs_and_continues_when_close_fails(self, make_pool, route, clock, recorder, caplog):
            """Should log transport close errors and still close the rest"""
            pool = make_pool()
            first = pool.acquire(route, timeout=0)
            second = pool.acquire(route, timeout=0)
            pool.release(first)
            pool.release(second)

            def broken_close():
                raise OSError("close failed")

            first.transport.close = broken_close
            clock.advance(60)

            with caplog.at_level(logging.ERROR, logger="pooled_http.pool"):
                closed = pool.close_expired(10)

            assert closed == 2
            assert "Error closing connection" in caplog.text
            assert recorder.transports[1].closed is True

    class TestClose:
        """Tests for close"""

        def test_closes_idle_and_leased_connections(self, make_pool, route, recorder):
            """Should close every connection"""
            pool = make_pool()
            leased = pool.acquire(route, timeout=0)
            idle = pool.acquire(route, timeout=0)
            pool.release(idle)

            pool.close()

            assert pool.closed is True
            assert leased.state == ConnectionState.CLOSED
            assert idle.state == ConnectionState.CLOSED
            assert all(t.closed for t in recorder.transports)

        def test_close_is_idempotent(self, make_pool):
            """Should allow closing twice"""
            pool = make_pool()
            pool.close()
            pool.close()
            assert pool.closed is True

    class TestStats:
        """Tests for get_stats"""

        def test_counts_and_hit_ratio(self, make_pool, route, other_route):
            """Should report created, reused and per-route counts"""
            pool = make_pool()
            a = pool.acquire(route, timeout=0)
            pool.release(a)
            pool.acquire(route, timeout=0)
            pool.acquire(other_route, timeout=0)

            stats = pool.get_stats()

            assert stats.total_created == 2
            assert stats.total_reused == 1
            assert stats.leased_connections == 2
            assert stats.leased_by_route == {str(route): 1, str(other_route): 1}
            assert stats.peak_leased == 2
            assert stats.hit_ratio == pytest.approx(1 / 3)

    class TestEvents:
        """Tests for event listeners"""

        def test_emits_lifecycle_events(self, make_pool, route):
            """Should emit created, acquired and released events"""
            pool = make_pool()
            events: List[PoolEvent] = []
            for event_type in (
                PoolEventType.CONNECTION_CREATED,
                PoolEventType.CONNECTION_ACQUIRED,
                PoolEventType.CONNECTION_RELEASED,
            ):
                pool.on(event_type, events.append)

            connection = pool.acquire(route, timeout=0)
            pool.release(connection)

            assert [e.type for e in events] == [
                PoolEventType.CONNECTION_CREATED,
                PoolEventType.CONNECTION_ACQUIRED,
                PoolEventType.CONNECTION_RELEASED,
            ]
            assert all(e.connection_id == connection.id for e in events)
            assert all(e.route == route for e in events)

        def test_emits_timeout_event(self, make_pool, route):
            """Should emit acquire:timeout"""
            pool = make_pool(max_total=1, max_per_route=1)
            events: List[PoolEvent] = []
            pool.on(PoolEventType.ACQUIRE_TIMEOUT, events.append)
            pool.acquire(route, timeout=0)

            with pytest.raises(PoolTimeout):
                pool.acquire(route, timeout=0)

            assert len(events) == 1

        def test_listener_errors_do_not_break_pool(self, make_pool, route, caplog):
            """Should log listener failures and carry on"""
            pool = make_pool()

            def bad_listener(event):
                raise RuntimeError("listener error")

            pool.on(PoolEventType.CONNECTION_ACQUIRED, bad_listener)
            with caplog.at_level(logging.WARNING, logger="pooled_http.pool"):
                connection = pool.acquire(route, timeout=0)

            assert connection.state == ConnectionState.LEASED
            assert "listener failed" in caplog.text

        def test_off_removes_listener(self, make_pool, route):
            """Should stop delivering events after off"""
            pool = make_pool()
            events: List[PoolEvent] = []
            pool.on(PoolEventType.CONNECTION_CREATED, events.append)
            pool.off(PoolEventType.CONNECTION_CREATED, events.append)

            pool.acquire(route, timeout=0)

            assert events == []

    class TestContention:
        """Tests for behavior under concurrent callers"""

        def test_two_of_three_concurrent_acquires_succeed_immediately(self, make_pool, route):
            """Should lease two connections and block the third until a release"""
            pool = make_pool(max_total=2, max_per_route=2)
            leased = []
            leased_lock = threading.Lock()

            def acquire():
                connection = pool.acquire(route, timeout=5)
                with leased_lock:
                    leased.append(connection)

            threads = [threading.Thread(target=acquire) for _ in range(3)]
            for thread in threads:
                thread.start()

            _wait_for(lambda: len(leased) == 2 and pool.get_stats().pending_acquires == 1)
            assert pool.get_stats().leased_connections == 2

            pool.release(leased[0])
            for thread in threads:
                thread.join(timeout=2)

            assert len(leased) == 3
            assert leased[2] is leased[0]
            assert pool.get_stats().peak_leased == 2

        def test_limits_hold_under_contention(self, make_pool, route, other_route):
            """Should never exceed total or per-route limits"""
            pool = make_pool(max_total=3, max_per_route=2)
            violations = []

            def check_limits(event):
                stats = pool.get_stats()
                if stats.leased_connections > 3:
                    violations.append(stats)
                if any(count > 2 for count in stats.leased_by_route.values()):
                    violations.append(stats)

            pool.on(PoolEventType.CONNECTION_ACQUIRED, check_limits)

            def worker(target: Route):
                for _ in range(50):
                    connection = pool.acquire(target, timeout=5)
                    pool.release(connection)

            threads = [
                threading.Thread(target=worker, args=(route if i % 2 else other_route,))
                for i in range(8)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=10)

            stats = pool.get_stats()
            assert violations == []
            assert stats.peak_leased <= 3
            assert stats.leased_connections == 0
            assert stats.total_created <= 3 + stats.total_closed


def _wait_for(condition, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.005)
