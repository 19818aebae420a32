"""Engine configuration loaded from the environment."""
from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(str, Enum):
    """Persistent store backends."""
    MEMORY = "memory"
    REDIS = "redis"


class EngineSettings(BaseSettings):
    """Configuration for the chainsync engine."""

    model_config = SettingsConfigDict(
        env_prefix="CHAINSYNC_",
        extra="ignore",
        validate_assignment=True,
    )

    # Store configuration
    store_backend: StoreBackend = Field(
        default=StoreBackend.MEMORY,
        description="Document store backend (memory or redis)"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used by the redis backend"
    )
    redis_namespace: str = Field(
        default="chainsync",
        description="Prefix for every key written to Redis"
    )

    # Coalescer
    coalescer_max_depth: int = Field(
        default=64,
        ge=1,
        description="Maximum queued operations per key before rejecting"
    )

    # Confirmation waiter
    wait_timeout: Optional[float] = Field(
        default=300.0,
        description="Default seconds before an unresolved wait is abandoned"
    )

    # Retry policy for track/balance
    retry_max_attempts: int = Field(default=1, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=8.0, ge=0)
    retry_jitter: float = Field(default=0.0, ge=0)

    # Token resolution
    mark_failed_tokens_as_nat: bool = Field(
        default=False,
        description="Treat any failed token resolution as proof of a non-token"
    )

    # Logging
    log_level: str = Field(default="INFO")
    debug: bool = Field(default=False)


def get_settings(**overrides) -> EngineSettings:
    """Build settings from the environment with explicit overrides."""
    return EngineSettings(**overrides)
