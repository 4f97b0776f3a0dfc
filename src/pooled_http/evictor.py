"""
Background eviction of idle pooled connections
"""

import logging
import threading
from enum import Enum
from typing import Any, Optional

from .pool import ConnectionPool

logger = logging.getLogger(__name__)


class EvictorState(str, Enum):
    """Evictor lifecycle state"""

    STOPPED = "stopped"
    RUNNING = "running"


class IdleEvictor:
    """
    Periodically closes connections idle for longer than ``idle_threshold``.

    Runs in a daemon thread. ``stop()`` sets the stop signal, which also
    interrupts the current sleep, so shutdown does not wait for
    ``sweep_interval`` to elapse. A sweep never raises: failures are logged
    and the next sweep runs as usual.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        *,
        sweep_interval: float = 3.0,
        idle_threshold: float = 30.0,
        name: Optional[str] = None,
    ) -> None:
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        self._pool = pool
        self._sweep_interval = sweep_interval
        self._idle_threshold = idle_threshold
        self._name = name or f"idle-evictor-{pool.id}"
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self.sweeps = 0

    @property
    def state(self) -> EvictorState:
        thread = self._thread
        if thread is not None and thread.is_alive():
            return EvictorState.RUNNING
        return EvictorState.STOPPED

    @property
    def running(self) -> bool:
        return self.state == EvictorState.RUNNING

    def start(self) -> None:
        """Start sweeping in the background; no-op when already running"""
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
        logger.info(
            f"{self._name} started: sweep every {self._sweep_interval}s, "
            f"idle threshold {self._idle_threshold}s"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the evictor to stop and wait for the thread to exit"""
        with self._state_lock:
            thread = self._thread
            self._stop_event.set()
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout)
        if thread.is_alive():
            logger.warning(f"{self._name} did not stop within {timeout}s")
        else:
            logger.info(f"{self._name} stopped")

    def sweep(self) -> int:
        """Run one eviction pass now. Returns the number of connections closed."""
        try:
            closed = self._pool.close_expired(self._idle_threshold)
        except Exception:
            logger.exception(f"{self._name}: eviction sweep failed")
            return 0
        self.sweeps += 1
        if closed:
            logger.debug(f"{self._name}: closed {closed} idle connection(s)")
        return closed

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if self._stop_event.wait(self._sweep_interval):
                break
            self.sweep()

    def __enter__(self) -> "IdleEvictor":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
