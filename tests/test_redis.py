"""
Tests for the Redis-backed store, leases and stale fan-out (via fakeredis).
"""

import asyncio
from decimal import Decimal

import pytest

from leasecache.config import Settings
from leasecache.errors import LeaseHeldError
from leasecache.services import create_cache
from leasecache.services.events import EventEmitter, RedisStaleListener, publish_stale
from leasecache.services.lease import RedisLeaseCoordinator
from leasecache.services.store import RedisCacheStore


class UnreachableRedis:
    """Client stand-in whose server is down."""

    async def ping(self):
        raise ConnectionError("connection refused")


class TestRedisCacheStore:
    """Test RedisCacheStore."""

    async def test_round_trip_with_prefix(self, fake_redis):
        """Test values are JSON encoded under the prefix."""
        store = RedisCacheStore(fake_redis, prefix="c:")

        await store.set("k", {"price": Decimal("0.65"), "n": 3})

        assert await fake_redis.get("c:k") == '{"price": "0.65", "n": 3}'
        assert await store.get("k") == {"price": "0.65", "n": 3}

    async def test_missing_key(self, fake_redis):
        """Test a missing key reads as None."""
        store = RedisCacheStore(fake_redis, prefix="c:")
        assert await store.get("nope") is None

    async def test_corrupt_entry_is_a_miss(self, fake_redis):
        """Test undecodable data is treated as absent."""
        store = RedisCacheStore(fake_redis, prefix="c:")
        await fake_redis.set("c:k", "{not json")
        assert await store.get("k") is None

    async def test_ttl_applied(self, fake_redis):
        """Test writes carry the configured TTL."""
        store = RedisCacheStore(fake_redis, prefix="c:", ttl=60)
        await store.set("k", "v")

        ttl = await fake_redis.ttl("c:k")
        assert 0 < ttl <= 60

    async def test_delete(self, fake_redis):
        """Test delete removes the entry."""
        store = RedisCacheStore(fake_redis, prefix="c:")
        await store.set("k", "v")
        await store.delete("k")
        assert await fake_redis.exists("c:k") == 0

    async def test_unconnected_store_raises(self):
        """Test using a store before connect() fails loudly."""
        store = RedisCacheStore(prefix="c:")
        with pytest.raises(RuntimeError):
            await store.get("k")

    async def test_health_check(self, fake_redis):
        """Test health check reports a reachable store."""
        store = RedisCacheStore(fake_redis, prefix="c:")
        health = await store.health_check()
        assert health["status"] == "healthy"
        assert "used_memory" in health
        assert (await RedisCacheStore(prefix="c:").health_check())["status"] == "unavailable"

    async def test_health_check_unreachable(self):
        """Test health check reports a client that cannot reach Redis."""
        store = RedisCacheStore(UnreachableRedis(), prefix="c:")
        health = await store.health_check()
        assert health == {"status": "unhealthy", "reason": "connection refused"}


class TestRedisLeaseCoordinator:
    """Test RedisLeaseCoordinator."""

    async def test_acquire_and_release(self, fake_redis):
        """Test a lease is stored with its token and removed on release."""
        leases = RedisLeaseCoordinator(fake_redis, prefix="lease:", retry_count=1)

        lease = await leases.acquire("ns:k", 1000)

        assert await fake_redis.get("lease:ns:k") == lease.token
        assert await lease.release() is True
        assert await fake_redis.exists("lease:ns:k") == 0

    async def test_contention(self, fake_redis):
        """Test a held lease raises LeaseHeldError after all attempts."""
        leases = RedisLeaseCoordinator(fake_redis, prefix="lease:", retry_count=3, retry_delay=0.01)
        await leases.acquire("ns:k", 1000)

        with pytest.raises(LeaseHeldError) as exc_info:
            await leases.acquire("ns:k", 1000)
        assert exc_info.value.lease_name == "ns:k"

    async def test_retry_picks_up_released_lease(self, fake_redis):
        """Test a retrying acquire succeeds once the holder lets go."""
        leases = RedisLeaseCoordinator(fake_redis, prefix="lease:", retry_count=5, retry_delay=0.02)
        held = await leases.acquire("ns:k", 1000)

        async def release_soon():
            await asyncio.sleep(0.03)
            await held.release()

        waiter = asyncio.create_task(release_soon())
        lease = await leases.acquire("ns:k", 1000)
        await waiter

        assert lease.token != held.token

    async def test_lease_expires(self, fake_redis):
        """Test an unreleased lease auto-expires."""
        leases = RedisLeaseCoordinator(fake_redis, prefix="lease:", retry_count=1)
        stale = await leases.acquire("ns:k", 50)
        await asyncio.sleep(0.1)

        fresh = await leases.acquire("ns:k", 1000)

        # The expired holder must not remove the new lease
        assert await stale.release() is False
        assert await fake_redis.get("lease:ns:k") == fresh.token

    async def test_release_keeps_regranted_lease(self, fake_redis):
        """Test release leaves a lease alone once another holder owns the key."""
        leases = RedisLeaseCoordinator(fake_redis, prefix="lease:", retry_count=1)
        lease = await leases.acquire("ns:k", 1000)

        await fake_redis.set("lease:ns:k", "other-holder", px=1000)

        assert await lease.release() is False
        assert await fake_redis.get("lease:ns:k") == "other-holder"

    async def test_explicit_retry_count_is_kept(self, fake_redis):
        """Test an explicit retry_count is not replaced by the setting."""
        leases = RedisLeaseCoordinator(fake_redis, prefix="lease:", retry_count=4)
        assert leases.retry_count == 4

        with pytest.raises(ValueError):
            RedisLeaseCoordinator(fake_redis, prefix="lease:", retry_count=0)


class TestStaleFanOut:
    """Test Redis pub/sub delivery of stale events."""

    async def test_listener_emits_stale(self, fake_redis):
        """Test a published key reaches local stale handlers."""
        notifier = EventEmitter()
        received = []
        notifier.on("stale", received.append)
        listener = RedisStaleListener(fake_redis, notifier, channel="test:stale", poll_interval=0.05)

        await listener.start()
        try:
            await publish_stale(fake_redis, "k", channel="test:stale")
            for _ in range(40):
                if received:
                    break
                await asyncio.sleep(0.05)
        finally:
            await listener.stop()

        assert received == ["k"]
        assert not listener.is_running


class TestCreateCache:
    """Test the Redis-backed factory end to end."""

    async def test_get_and_stale_refresh(self, fake_redis):
        """Test a miss populates through Redis and a stale event refreshes once."""
        values = iter(["v1", "v2", "v3"])
        calls = []

        async def populate(key):
            calls.append(key)
            await asyncio.sleep(0.02)
            return next(values)

        settings = Settings(cache_namespace="app:", store_prefix="c:", lease_prefix="l:")
        cache = create_cache(populate, redis=fake_redis, settings=settings, populate_timeout=1000)

        assert await cache.get("k") == "v1"
        assert await cache.get("k") == "v1"

        await cache.mark_stale("k")
        await cache.mark_stale("k")
        await cache.drain()

        assert calls == ["k", "k"]
        assert await cache.get("k") == "v2"
        assert await fake_redis.exists("l:app:k") == 0
        assert cache.config.populate_timeout == 1000

    async def test_close_closes_created_client(self, fake_redis, monkeypatch):
        """Test a client built by the factory is closed with the cache."""
        closed = []

        async def aclose():
            closed.append(True)

        monkeypatch.setattr(fake_redis, "aclose", aclose)
        monkeypatch.setattr("leasecache.services.Redis.from_url", lambda *args, **kwargs: fake_redis)

        async def populate(key):
            return "v1"

        cache = create_cache(populate, settings=Settings(cache_namespace="app:"))
        assert await cache.get("k") == "v1"

        await cache.close()
        assert closed == [True]

    async def test_close_leaves_passed_client_open(self, fake_redis, monkeypatch):
        """Test a caller-supplied client stays open after close."""
        closed = []

        async def aclose():
            closed.append(True)

        monkeypatch.setattr(fake_redis, "aclose", aclose)

        async def populate(key):
            return "v1"

        cache = create_cache(populate, redis=fake_redis, settings=Settings(cache_namespace="app:"))
        await cache.close()

        assert closed == []
        assert await fake_redis.ping()
