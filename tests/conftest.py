"""
Pytest configuration and fixtures.
"""

import asyncio
from typing import Any, Optional

import pytest

try:
    from fakeredis import aioredis as fakeredis_aioredis
except ImportError:  # pragma: no cover - optional test dependency
    fakeredis_aioredis = None

from leasecache.config import PopulateConfig
from leasecache.services.events import EventEmitter
from leasecache.services.lease import MemoryLeaseCoordinator
from leasecache.services.populate import PopulatingCache
from leasecache.services.store import MemoryCacheStore


class RecordingStore(MemoryCacheStore):
    """Memory store that records every write."""

    def __init__(self):
        super().__init__()
        self.writes: list[tuple[str, Any]] = []

    async def set(self, key: str, value: Any) -> None:
        self.writes.append((key, value))
        await super().set(key, value)


class CountingPopulate:
    """Async populate function that counts calls and can be slowed down."""

    def __init__(self, value: Any = "v1", delay: float = 0.0, error: Optional[Exception] = None):
        self.value = value
        self.delay = delay
        self.error = error
        self.calls: list[str] = []

    async def __call__(self, key: str) -> Any:
        self.calls.append(key)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def leases() -> MemoryLeaseCoordinator:
    return MemoryLeaseCoordinator()


@pytest.fixture
def populate_fn() -> CountingPopulate:
    return CountingPopulate()


@pytest.fixture
def make_cache(store, leases):
    """Build a PopulatingCache over the shared store and leases."""

    def _make(populate, notifier: Optional[EventEmitter] = None, **config) -> PopulatingCache:
        return PopulatingCache(
            store=store,
            leases=leases,
            config=PopulateConfig(populate=populate, **config),
            notifier=notifier,
            namespace="test:",
        )

    return _make


@pytest.fixture
def fake_redis():
    """Provide an isolated fakeredis client for each test."""
    if fakeredis_aioredis is None:
        pytest.skip("fakeredis is not available")
    return fakeredis_aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def populate_factory():
    """Build CountingPopulate instances with custom behaviour."""
    return CountingPopulate
