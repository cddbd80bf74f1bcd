"""
leasecache - self-populating cache with lease-coordinated refresh.

On a miss the value is computed inline. When a key is marked stale, every
process hears about it but only the one holding the key's lease recomputes it.
"""

from leasecache.config import PopulateConfig, Settings, get_settings
from leasecache.errors import (
    CacheError,
    LeaseHeldError,
    LockError,
    PopulateError,
    PopulateTimeoutError,
)
from leasecache.services import (
    EventEmitter,
    MemoryCacheStore,
    MemoryLeaseCoordinator,
    PopulatingCache,
    RedisCacheStore,
    RedisLeaseCoordinator,
    RedisStaleListener,
    create_cache,
    publish_stale,
)

__version__ = "0.1.0"

__all__ = [
    "create_cache",
    "PopulatingCache",
    "PopulateConfig",
    "Settings",
    "get_settings",
    "RedisCacheStore",
    "MemoryCacheStore",
    "RedisLeaseCoordinator",
    "MemoryLeaseCoordinator",
    "EventEmitter",
    "RedisStaleListener",
    "publish_stale",
    "CacheError",
    "PopulateError",
    "PopulateTimeoutError",
    "LockError",
    "LeaseHeldError",
]
