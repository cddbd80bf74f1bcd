"""
Time-bounded leases shared by every process talking to the same Redis.

A lease is a redis-py ``Lock``: a ``SET name token NX PX lifetime`` record,
released by a token-checked script so a holder whose lease already expired
cannot remove the next holder's. Contention is reported as
:class:`LeaseHeldError`; every other failure (connection, protocol)
propagates unchanged so callers can tell the two apart.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from leasecache.config import settings
from leasecache.errors import LeaseHeldError
from leasecache.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Lease:
    """A granted lease. ``release()`` gives it back early."""
    name: str
    token: str
    lifetime_ms: int
    _releaser: Callable[[], Awaitable[bool]] = field(repr=False)

    async def release(self) -> bool:
        """Release the lease. Returns False if it had already expired or changed hands."""
        return await self._releaser()


class LeaseCoordinator(Protocol):
    """Distributed mutual exclusion, consumed through acquire/release only."""

    async def acquire(self, name: str, lifetime_ms: int) -> Lease:
        ...


class RedisLeaseCoordinator:
    """Lease coordinator backed by redis-py's ``Lock``."""

    def __init__(
        self,
        redis: Redis,
        prefix: Optional[str] = None,
        retry_count: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self._redis = redis
        self._prefix = settings.lease_prefix if prefix is None else prefix
        self.retry_count = settings.lease_retry_count if retry_count is None else retry_count
        self.retry_delay = settings.lease_retry_delay if retry_delay is None else retry_delay
        if self.retry_count < 1:
            raise ValueError(f"retry_count must be at least 1, got {self.retry_count}")

    def _lease_key(self, name: str) -> str:
        return f"{self._prefix}{name}"

    async def _try_acquire(self, lock: Lock, name: str, token: str) -> None:
        if not await lock.acquire(blocking=False, token=token):
            raise LeaseHeldError(name)

    async def acquire(self, name: str, lifetime_ms: int) -> Lease:
        """Acquire ``name`` for ``lifetime_ms``.

        Raises:
            LeaseHeldError: still held by someone else after all attempts
            redis.exceptions.RedisError: Redis could not be reached or refused the command
        """
        token = uuid.uuid4().hex
        lifetime = lifetime_ms / 1000
        lock = self._redis.lock(
            self._lease_key(name),
            timeout=lifetime,
            sleep=min(self.retry_delay, lifetime),
            blocking=False,
            thread_local=False,
        )
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_count),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(LeaseHeldError),
            reraise=True,
        ):
            with attempt:
                await self._try_acquire(lock, name, token)

        logger.debug("Lease acquired", lease=name, lifetime_ms=lifetime_ms)
        return Lease(
            name=name,
            token=token,
            lifetime_ms=lifetime_ms,
            _releaser=lambda: self._release(lock, name),
        )

    async def _release(self, lock: Lock, name: str) -> bool:
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.debug("Lease already expired or re-granted", lease=name)
            return False
        logger.debug("Lease released", lease=name)
        return True


class MemoryLeaseCoordinator:
    """Single-process lease coordinator with monotonic-clock expiry."""

    def __init__(self):
        # name -> (token, expires_at)
        self._leases: dict[str, tuple[str, float]] = {}

    def is_held(self, name: str) -> bool:
        entry = self._leases.get(name)
        return entry is not None and time.monotonic() < entry[1]

    async def acquire(self, name: str, lifetime_ms: int) -> Lease:
        if self.is_held(name):
            raise LeaseHeldError(name)
        token = uuid.uuid4().hex
        self._leases[name] = (token, time.monotonic() + lifetime_ms / 1000)
        return Lease(
            name=name,
            token=token,
            lifetime_ms=lifetime_ms,
            _releaser=lambda: self._release(name, token),
        )

    async def _release(self, name: str, token: str) -> bool:
        entry = self._leases.get(name)
        if entry is None or entry[0] != token or not self.is_held(name):
            return False
        del self._leases[name]
        return True
