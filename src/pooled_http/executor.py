"""
Request executor: lease, attempt, classify, retry
"""

import logging
import time
from typing import Callable, Optional

import httpx

from .config import PoolConfig, generate_request_id, merge_config
from .errors import ExecutionFailed
from .pool import ConnectionPool
from .retry import RetryPolicy, breaks_connection, classify_error, is_idempotent
from .types import Attempt, ErrorKind, ExecutorEvent, ExecutorEventListener, Route

logger = logging.getLogger(__name__)


class RequestExecutor:
    """
    Request Executor

    Runs one logical request against a shared ConnectionPool:
    - leases a connection for the request's route
    - performs the attempt bounded by the connect/transfer timeouts
    - releases the connection, or invalidates it when the failure broke it
    - asks the RetryPolicy whether to try again

    Callers only see a response or a single ExecutionFailed; intermediate
    attempts are visible through event listeners.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        config: Optional[PoolConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Create a new RequestExecutor.

        Args:
            pool: Pool shared by every caller of this executor
            config: Default timeouts and attempt limit
            retry_policy: Overrides the policy derived from ``config``
            sleep: Used for backoff between attempts
        """
        self._pool = pool
        self._config = merge_config(config)
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=self._config.max_retry_attempts,
            base_delay_seconds=self._config.retry_base_delay_seconds,
            max_delay_seconds=self._config.retry_max_delay_seconds,
            jitter_factor=self._config.retry_jitter_factor,
        )
        self._sleep = sleep
        self._listeners: list[ExecutorEventListener] = []

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def execute(
        self,
        request: httpx.Request,
        *,
        max_attempts: Optional[int] = None,
        connect_timeout: Optional[float] = None,
        acquire_timeout: Optional[float] = None,
        transfer_timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        Execute a request with pooling and retries.

        Returns:
            The response, with its body already read

        Raises:
            ExecutionFailed: a non-retryable failure, or attempts exhausted
            PoolTimeout / PoolExhausted / PoolClosed: from acquiring a connection
        """
        limit = max_attempts if max_attempts is not None else self._retry_policy.max_attempts
        connect = self._config.connect_timeout_seconds if connect_timeout is None else connect_timeout
        acquire = self._config.acquire_timeout_seconds if acquire_timeout is None else acquire_timeout
        transfer = self._config.transfer_timeout_seconds if transfer_timeout is None else transfer_timeout

        route = Route.from_url(request.url)
        idempotent = is_idempotent(request)
        request.extensions["timeout"] = httpx.Timeout(
            transfer, connect=connect, pool=acquire
        ).as_dict()

        attempt = Attempt(request_id=generate_request_id())

        while True:
            self._emit(ExecutorEvent("attempt:start", attempt.request_id, attempt.execution_count + 1))
            connection = self._pool.acquire(route, acquire)
            started = time.monotonic()
            response = None

            try:
                response = connection.transport.handle_request(request)
                try:
                    response.read()
                finally:
                    response.close()
            except Exception as error:
                kind = classify_error(error)
                if kind is None:
                    # Not a transport failure; the connection state is unknown
                    self._pool.invalidate(connection, error)
                    raise
                if response is not None and kind == ErrorKind.NO_RESPONSE_FROM_PEER:
                    # Status line already arrived; the body read failed
                    kind = ErrorKind.GENERIC_TRANSPORT

                if breaks_connection(kind):
                    self._pool.invalidate(connection, error)
                else:
                    self._pool.release(connection)

                attempt.execution_count += 1
                attempt.last_error = error
                attempt.last_error_kind = kind
                will_retry = self._retry_policy.should_retry(
                    kind, attempt.execution_count, idempotent, limit
                )

                self._emit(ExecutorEvent(
                    "attempt:fail",
                    attempt.request_id,
                    attempt.execution_count,
                    {"error": str(error), "error_kind": kind.value, "will_retry": will_retry},
                ))

                if not will_retry:
                    logger.debug(
                        f"execute: {request.method} {request.url} failed after "
                        f"{attempt.execution_count} attempt(s): {kind.value}"
                    )
                    raise ExecutionFailed(
                        error,
                        error_kind=kind,
                        attempts=attempt.execution_count,
                        request_id=attempt.request_id,
                    ) from error

                logger.warning(
                    f"Retrying {request.method} {request.url} after {kind.value} "
                    f"(attempt {attempt.execution_count}/{limit}): {error}"
                )
                delay = self._retry_policy.delay_for(attempt.execution_count)
                if delay > 0:
                    self._emit(ExecutorEvent(
                        "retry:wait",
                        attempt.request_id,
                        attempt.execution_count,
                        {"delay_seconds": delay},
                    ))
                    self._sleep(delay)
                continue
            except BaseException as error:
                self._pool.invalidate(connection, error)
                raise

            self._pool.release(connection)
            attempt.execution_count += 1
            self._emit(ExecutorEvent(
                "attempt:success",
                attempt.request_id,
                attempt.execution_count,
                {"duration_seconds": time.monotonic() - started, "status_code": response.status_code},
            ))
            return response

    def on(self, listener: ExecutorEventListener) -> Callable[[], None]:
        """
        Add an event listener.

        Returns:
            Function to remove the listener
        """
        self._listeners.append(listener)
        return lambda: self.off(listener)

    def off(self, listener: ExecutorEventListener) -> None:
        """Remove an event listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: ExecutorEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning(f"Executor event listener failed for {event.type}", exc_info=True)
