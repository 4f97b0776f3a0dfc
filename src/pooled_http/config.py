"""
Configuration utilities for pooled_http
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from .types import PoolLimits, Route


@dataclass
class PoolConfig:
    """Connection pool, executor and evictor configuration"""

    id: str = "default-pool"
    max_total_connections: int = 200
    max_connections_per_route: int = 20
    max_connections_by_route: Dict[Route, int] = field(default_factory=dict)
    connect_timeout_seconds: float = 1.0
    acquire_timeout_seconds: float = 0.5
    transfer_timeout_seconds: float = 10.0
    max_retry_attempts: int = 5
    retry_base_delay_seconds: float = 0.0
    retry_max_delay_seconds: float = 5.0
    retry_jitter_factor: float = 0.0
    idle_threshold_seconds: float = 30.0
    sweep_interval_seconds: float = 3.0

    @property
    def limits(self) -> PoolLimits:
        return PoolLimits(
            max_total=self.max_total_connections,
            max_per_route=self.max_connections_per_route,
            per_route=dict(self.max_connections_by_route),
        )


# Default configuration
DEFAULT_POOL_CONFIG = PoolConfig()


def merge_config(config: Optional[PoolConfig] = None) -> PoolConfig:
    """Merge configuration with defaults"""
    if config is None:
        return replace(
            DEFAULT_POOL_CONFIG,
            max_connections_by_route=dict(DEFAULT_POOL_CONFIG.max_connections_by_route),
        )
    return config


def validate_config(config: PoolConfig) -> list[str]:
    """Validate configuration values"""
    errors = []

    if config.max_total_connections < 0:
        errors.append("max_total_connections must be non-negative")

    if config.max_connections_per_route < 0:
        errors.append("max_connections_per_route must be non-negative")

    for route, limit in config.max_connections_by_route.items():
        if limit < 0:
            errors.append(f"max connections for {route} must be non-negative")

    if config.connect_timeout_seconds < 0:
        errors.append("connect_timeout_seconds must be non-negative")

    if config.acquire_timeout_seconds < 0:
        errors.append("acquire_timeout_seconds must be non-negative")

    if config.transfer_timeout_seconds < 0:
        errors.append("transfer_timeout_seconds must be non-negative")

    if config.max_retry_attempts < 1:
        errors.append("max_retry_attempts must be at least 1")

    if config.retry_base_delay_seconds < 0:
        errors.append("retry_base_delay_seconds must be non-negative")

    if not 0 <= config.retry_jitter_factor <= 1:
        errors.append("retry_jitter_factor must be between 0 and 1")

    if config.idle_threshold_seconds < 0:
        errors.append("idle_threshold_seconds must be non-negative")

    if config.sweep_interval_seconds <= 0:
        errors.append("sweep_interval_seconds must be positive")

    return errors


def generate_connection_id() -> str:
    """Generate a unique connection ID"""
    return f"conn-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def generate_request_id() -> str:
    """Generate a unique request ID"""
    return f"req-{uuid.uuid4().hex[:12]}"
