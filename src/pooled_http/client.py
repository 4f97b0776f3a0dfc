"""
Long-lived client owning the pool, executor and evictor
"""

import logging
from typing import Any, Optional

import httpx

from .config import PoolConfig
from .evictor import IdleEvictor
from .executor import RequestExecutor
from .pool import ConnectionPool
from .settings import ClientSettings, get_settings
from .transport import TransportFactory

logger = logging.getLogger(__name__)


class PooledHttpClient:
    """
    Builds a ConnectionPool, RequestExecutor and IdleEvictor together and
    tears them down together. One instance is meant to be shared by every
    caller in the process.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        config: Optional[PoolConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
        start_evictor: bool = True,
    ) -> None:
        self._config = config or (settings or get_settings()).to_pool_config()
        self._pool = ConnectionPool.from_config(self._config, transport_factory)
        self._executor = RequestExecutor(self._pool, self._config)
        self._evictor = IdleEvictor(
            self._pool,
            sweep_interval=self._config.sweep_interval_seconds,
            idle_threshold=self._config.idle_threshold_seconds,
        )
        if start_evictor:
            self._evictor.start()

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def executor(self) -> RequestExecutor:
        return self._executor

    @property
    def evictor(self) -> IdleEvictor:
        return self._evictor

    @property
    def config(self) -> PoolConfig:
        return self._config

    def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Build and execute a request.

        Keyword arguments accepted by httpx.Request (params, headers,
        content, json, ...) are passed through; max_attempts and the
        timeout overrides go to the executor.
        """
        execute_kwargs = {
            key: kwargs.pop(key)
            for key in ("max_attempts", "connect_timeout", "acquire_timeout", "transfer_timeout")
            if key in kwargs
        }
        request = httpx.Request(method, url, **kwargs)
        return self._executor.execute(request, **execute_kwargs)

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def close(self) -> None:
        """Stop the evictor, then close every pooled connection"""
        self._evictor.stop()
        self._pool.close()

    def __enter__(self) -> "PooledHttpClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
