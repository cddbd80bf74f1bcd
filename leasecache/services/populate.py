"""
Self-populating cache with lease-coordinated background refresh.

Reads are served from the store; a miss is populated inline. Stale events
are broadcast to every process, so background repopulation first takes out
a lease on the key and only the holder recomputes the value.
"""

import asyncio
import inspect
from typing import Any, Optional

from leasecache.config import PopulateConfig, settings
from leasecache.errors import LeaseHeldError, LockError, PopulateError, PopulateTimeoutError
from leasecache.services.events import ERROR, STALE, EventEmitter
from leasecache.services.lease import LeaseCoordinator
from leasecache.services.store import CacheStore
from leasecache.utils.logging import LoggerMixin, log_context
from leasecache.utils.timeout import complete_within


def _is_coroutine_function(fn: Any) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None))


class PopulatingCache(LoggerMixin):
    """Cache facade that fills itself using ``config.populate``.

    Args:
        store: underlying key/value store
        leases: coordinator shared with the other processes
        config: populate function and its time budgets
        notifier: where ``stale`` events arrive and ``error`` events go
        namespace: prefix joined to a key to name its lease
        owns_store: close the store when the cache is closed
    """

    def __init__(
        self,
        store: CacheStore,
        leases: LeaseCoordinator,
        config: PopulateConfig,
        notifier: Optional[EventEmitter] = None,
        namespace: Optional[str] = None,
        owns_store: bool = False,
    ):
        self._store = store
        self._leases = leases
        self._config = config
        self._owns_store = owns_store
        self._nsp = settings.cache_namespace if namespace is None else namespace
        self.notifier = notifier or EventEmitter()

        self._background: set[asyncio.Task] = set()
        self._hits = 0
        self._misses = 0
        self._populates = 0
        self._leased_populates = 0
        self._skipped = 0
        self._failures = 0

        self.notifier.on(STALE, self._on_stale_event)

    @property
    def config(self) -> PopulateConfig:
        return self._config

    def lease_name(self, key: str) -> str:
        return f"{self._nsp}{key}"

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Get a value, populating it on a miss.

        Concurrent misses on the same key are not coalesced; each caller
        populates and the last write wins.
        """
        value = await self._store.get(key)
        if value is not None:
            self._hits += 1
            return value
        self._misses += 1
        return await self.populate(key)

    async def set(self, key: str, value: Any) -> None:
        await self._store.set(key, value)

    async def delete(self, key: str) -> None:
        await self._store.delete(key)

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------

    async def populate(self, key: str) -> Any:
        """Compute ``key`` with the populate function and write it to the store.

        Raises:
            PopulateError: the populate function raised
            PopulateTimeoutError: it ran past ``populate_timeout``
            Exception: whatever the store raised while writing
        """
        self._populates += 1
        populate = self._config.populate
        try:
            if _is_coroutine_function(populate):
                pending = populate(key)
            else:
                # Blocking functions run off the loop so the deadline still applies
                pending = asyncio.to_thread(populate, key)
            result = await complete_within(pending, self._config.populate_timeout, key=key)
            if inspect.isawaitable(result):
                result = await complete_within(result, self._config.populate_timeout, key=key)
        except PopulateTimeoutError:
            raise
        except Exception as e:
            raise PopulateError(f"populate threw an error; cause: {e}", key=key) from e

        await self.set(key, result)
        self.log.debug("Populated", key=key)
        return result

    async def leased_populate(self, key: str) -> Optional[Any]:
        """Populate ``key`` while holding its lease.

        Returns the new value, or None when another process already holds
        the lease. On failure the lease is kept until it expires, which
        spaces out retries by ``lease_expires_in``.

        Raises:
            LockError: the lease coordinator failed
            PopulateError: populating or writing failed after the lease was granted
        """
        lease_name = self.lease_name(key)
        self._leased_populates += 1

        try:
            lease = await self._leases.acquire(lease_name, self._config.lease_expires_in)
        except LeaseHeldError:
            self._skipped += 1
            self.log.debug("Lease held elsewhere, skipping", lease=lease_name)
            return None
        except Exception as e:
            raise LockError(f"could not acquire lock for: {lease_name}", lease_name, key=key) from e

        try:
            value = await self.populate(key)
        except Exception as e:
            raise PopulateError(f'failed to populate "{lease_name}"', key=key, lease_name=lease_name) from e

        try:
            await lease.release()
        except Exception as e:
            self.log.warning("Lease release failed, leaving it to expire", lease=lease_name, exc=e)
        return value

    # ------------------------------------------------------------------
    # Stale events
    # ------------------------------------------------------------------

    async def mark_stale(self, key: str) -> None:
        """Emit a stale event for ``key`` on this process's notifier."""
        await self.notifier.emit(STALE, key)

    def _on_stale_event(self, key: str) -> None:
        task = asyncio.create_task(self._refresh(key))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(self, key: str) -> None:
        with log_context(key=key):
            try:
                await self.leased_populate(key)
            except Exception as e:
                self._failures += 1
                await self._emit_error(e)

    async def _emit_error(self, error: Exception) -> None:
        if self.notifier.listener_count(ERROR) == 0:
            self.log.error("Background repopulation failed", exc=error)
            return
        await self.notifier.emit(ERROR, error)

    async def drain(self) -> None:
        """Wait for every in-flight background repopulation to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Detach from the notifier, wait for background work and close an owned store."""
        self.notifier.off(STALE, self._on_stale_event)
        await self.drain()
        if self._owns_store:
            close = getattr(self._store, "close", None)
            if close is not None:
                await close()

    def stats(self) -> dict:
        """Return hit/miss and population counters."""
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
            "populates": self._populates,
            "leased_populates": self._leased_populates,
            "skipped": self._skipped,
            "failures": self._failures,
        }
