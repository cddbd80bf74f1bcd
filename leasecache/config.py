"""
Configuration management using Pydantic Settings.
Environment variables are validated once, at startup.
"""

from functools import lru_cache
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings loaded from ``LEASECACHE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEASECACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Redis Configuration
    # ===================
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection string shared by store, leases and stale fan-out"
    )
    redis_pool_size: int = Field(default=10, ge=1)

    # ===================
    # Key Layout
    # ===================
    cache_namespace: str = Field(
        default="leasecache:",
        description="Prefix joined to a cache key to form its lease name"
    )
    store_prefix: str = Field(default="cache:", description="Prefix for stored values")
    lease_prefix: str = Field(default="lease:", description="Prefix for lease records")
    store_ttl: int | None = Field(
        default=None,
        ge=1,
        description="Optional TTL in seconds for stored values (None keeps them until overwritten)"
    )

    # ===================
    # Population
    # ===================
    lease_expires_in: int = Field(
        default=300,
        gt=0,
        description="Lease lifetime in ms; also the backoff after a failed background populate"
    )
    populate_timeout: int = Field(default=1000 * 30, gt=0, description="Populate budget in ms")
    lease_retry_count: int = Field(
        default=1,
        ge=1,
        description="Acquire attempts before treating the lease as held elsewhere"
    )
    lease_retry_delay: float = Field(default=0.05, ge=0, description="Seconds between acquire attempts")

    # ===================
    # Stale Fan-out
    # ===================
    stale_channel: str = Field(default="leasecache:stale", description="Redis pub/sub channel")

    # ===================
    # Logging
    # ===================
    log_level: str = Field(default="INFO")


class PopulateConfig(BaseModel):
    """Immutable per-cache population settings.

    ``populate`` receives a key and returns the fresh value, either directly
    or as an awaitable. Durations are milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    populate: Callable[[str], Any]
    lease_expires_in: int = Field(default=300, gt=0)
    populate_timeout: int = Field(default=1000 * 30, gt=0)

    @classmethod
    def from_settings(cls, populate: Callable[[str], Any], settings: Settings) -> "PopulateConfig":
        return cls(
            populate=populate,
            lease_expires_in=settings.lease_expires_in,
            populate_timeout=settings.populate_timeout,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
