"""
Cache stores consumed by the populating cache.

Only ``get`` / ``set`` / ``delete`` are used by the population protocol.
Unlike a best-effort read-through cache, write failures are not swallowed
here: the populator reports them to whoever asked for the value.
"""

import json
import time
from decimal import Decimal
from typing import Any, Optional, Protocol

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from leasecache.config import settings
from leasecache.utils.logging import get_logger

logger = get_logger(__name__)


def _serialize_decimal(obj):
    """JSON serializer for Decimal and Enum types."""
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "value"):  # Enum
        return obj.value
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


class CacheStore(Protocol):
    """Key/value store shared by every cooperating process."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisCacheStore:
    """JSON-over-Redis cache store.

    Values are serialized with :func:`json.dumps` and stored under
    ``prefix + key``. A ``ttl`` (seconds) is applied to every write when set.
    """

    def __init__(
        self,
        redis: Optional[Redis] = None,
        prefix: Optional[str] = None,
        ttl: Optional[int] = None,
    ):
        self._redis = redis
        self._prefix = settings.store_prefix if prefix is None else prefix
        self._ttl = settings.store_ttl if ttl is None else ttl

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis cache store not connected")
        return self._redis

    async def connect(self) -> None:
        """Connect to Redis using ``settings.redis_url``."""
        if self._redis is not None:
            return
        self._redis = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            max_connections=settings.redis_pool_size,
        )
        await self._redis.ping()
        logger.info("Redis cache store connected", url=settings.redis_url.split("@")[-1])

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis cache store closed")

    async def health_check(self) -> dict:
        """Return store health status."""
        if self._redis is None:
            return {"status": "unavailable", "reason": "not connected"}
        try:
            await self._redis.ping()
        except Exception as e:
            return {"status": "unhealthy", "reason": str(e)}
        try:
            info = await self._redis.info("memory")
            used_memory = info.get("used_memory_human", "unknown")
        except ResponseError:
            # Some Redis-compatible servers do not implement INFO sections
            used_memory = "unknown"
        return {"status": "healthy", "used_memory": used_memory}

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            # Unreadable entries are treated as misses and get repopulated
            logger.warning("Cache deserialize failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any) -> None:
        data = json.dumps(value, default=_serialize_decimal)
        await self.redis.set(self._key(key), data, ex=self._ttl)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))


class MemoryCacheStore:
    """In-process store for tests and single-process deployments."""

    def __init__(self, ttl: Optional[float] = None):
        self._ttl = ttl
        self._data: dict[str, tuple[Any, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any) -> None:
        expires_at = time.monotonic() + self._ttl if self._ttl else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)
