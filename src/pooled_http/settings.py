"""Client settings loaded from environment variables."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .config import PoolConfig


class ClientSettings(BaseSettings):
    """
    Runtime settings for the pooled HTTP client.

    Every field can be set through a ``POOLED_HTTP_`` prefixed environment
    variable, e.g. ``POOLED_HTTP_MAX_TOTAL_CONNECTIONS=50``.
    """

    model_config = SettingsConfigDict(env_prefix="POOLED_HTTP_", case_sensitive=False)

    pool_id: str = "default-pool"

    # Pool limits
    max_total_connections: int = Field(default=200, ge=0)
    max_connections_per_route: int = Field(default=20, ge=0)

    # Timeouts (seconds)
    connect_timeout: float = Field(default=1.0, ge=0)
    acquire_timeout: float = Field(default=0.5, ge=0)
    transfer_timeout: float = Field(default=10.0, ge=0)

    # Retry
    max_retry_attempts: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=0.0, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)
    retry_jitter_factor: float = Field(default=0.0, ge=0, le=1)

    # Evictor
    idle_threshold: float = Field(default=30.0, ge=0)
    sweep_interval: float = Field(default=3.0, gt=0)

    def to_pool_config(self) -> PoolConfig:
        return PoolConfig(
            id=self.pool_id,
            max_total_connections=self.max_total_connections,
            max_connections_per_route=self.max_connections_per_route,
            connect_timeout_seconds=self.connect_timeout,
            acquire_timeout_seconds=self.acquire_timeout,
            transfer_timeout_seconds=self.transfer_timeout,
            max_retry_attempts=self.max_retry_attempts,
            retry_base_delay_seconds=self.retry_base_delay,
            retry_max_delay_seconds=self.retry_max_delay,
            retry_jitter_factor=self.retry_jitter_factor,
            idle_threshold_seconds=self.idle_threshold,
            sweep_interval_seconds=self.sweep_interval,
        )


@lru_cache()
def get_settings() -> ClientSettings:
    """Get cached settings instance."""
    return ClientSettings()
