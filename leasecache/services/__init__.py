"""
Cache services: stores, leases, event delivery and the populating cache.
"""

from typing import Any, Callable, Optional

from redis.asyncio import Redis

from leasecache.config import PopulateConfig, Settings, get_settings
from leasecache.services.events import EventEmitter, RedisStaleListener, publish_stale
from leasecache.services.lease import Lease, LeaseCoordinator, MemoryLeaseCoordinator, RedisLeaseCoordinator
from leasecache.services.populate import PopulatingCache
from leasecache.services.store import CacheStore, MemoryCacheStore, RedisCacheStore


def create_cache(
    populate: Callable[[str], Any],
    redis: Optional[Redis] = None,
    notifier: Optional[EventEmitter] = None,
    settings: Optional[Settings] = None,
    **overrides: Any,
) -> PopulatingCache:
    """Build a Redis-backed populating cache from settings.

    ``overrides`` replace individual ``PopulateConfig`` fields, e.g.
    ``populate_timeout=5000``. A client created here is closed by
    ``PopulatingCache.close()``; a passed-in ``redis`` is left to the caller.
    """
    settings = settings or get_settings()
    owns_redis = redis is None
    if owns_redis:
        redis = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=settings.redis_pool_size,
        )

    config = PopulateConfig.from_settings(populate, settings)
    if overrides:
        config = PopulateConfig(**{**config.model_dump(), **overrides})

    return PopulatingCache(
        store=RedisCacheStore(redis, prefix=settings.store_prefix, ttl=settings.store_ttl),
        leases=RedisLeaseCoordinator(
            redis,
            prefix=settings.lease_prefix,
            retry_count=settings.lease_retry_count,
            retry_delay=settings.lease_retry_delay,
        ),
        config=config,
        notifier=notifier,
        namespace=settings.cache_namespace,
        owns_store=owns_redis,
    )


__all__ = [
    "create_cache",
    "PopulatingCache",
    "CacheStore",
    "RedisCacheStore",
    "MemoryCacheStore",
    "Lease",
    "LeaseCoordinator",
    "RedisLeaseCoordinator",
    "MemoryLeaseCoordinator",
    "EventEmitter",
    "RedisStaleListener",
    "publish_stale",
]
