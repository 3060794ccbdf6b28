"""
Shared configuration management for the network gateway.
"""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class GatewayConfig(BaseConfig):
    """Network gateway configuration.

    Durations are expressed in seconds. Every option can be supplied through
    the environment, e.g. ``GATEWAY_CACHE_TTL_SECONDS=30``.
    """

    service_name: str = Field(default="network-gateway")

    # Upstream
    base_url: str = Field(default="http://localhost:8000")

    # Cache
    cache_ttl_seconds: float = Field(default=300.0)
    cache_max_size: int = Field(default=1000)
    # None keeps expiry lazy; a positive value enables the periodic sweep
    cache_sweep_interval_seconds: Optional[float] = Field(default=None)
    invalidation_mode: Literal["substring", "path_prefix"] = Field(default="substring")

    # Batch scheduler
    batch_delay_seconds: float = Field(default=0.05)
    # None preserves pure debounce behaviour (a steady stream can defer flushes)
    batch_max_wait_seconds: Optional[float] = Field(default=None)

    # Transport timeouts
    connect_timeout_seconds: float = Field(default=10.0)
    send_timeout_seconds: float = Field(default=10.0)
    receive_timeout_seconds: float = Field(default=10.0)

    @field_validator(
        "cache_ttl_seconds",
        "connect_timeout_seconds",
        "send_timeout_seconds",
        "receive_timeout_seconds",
    )
    @classmethod
    def _positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("batch_delay_seconds")
    @classmethod
    def _non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("cache_max_size")
    @classmethod
    def _positive_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("cache_sweep_interval_seconds", "batch_max_wait_seconds")
    @classmethod
    def _optional_positive(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("must be greater than zero when set")
        return value


def get_config(**overrides) -> GatewayConfig:
    """Get gateway configuration, applying explicit overrides over the environment."""
    return GatewayConfig(**overrides)
