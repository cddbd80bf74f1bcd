"""
Deadline guard for awaitables that must not be cancelled.

``asyncio.wait_for`` cancels the wrapped task on timeout. A populate call may
already be half way through writing to the store, so here the caller stops
waiting but the operation is left to finish on its own.
"""

import asyncio
from typing import Any, Awaitable, Optional

from leasecache.errors import PopulateTimeoutError
from leasecache.utils.logging import get_logger

logger = get_logger(__name__)


def _discard_late_result(task: asyncio.Future, key: Optional[str]) -> None:
    """Retrieve the outcome of an abandoned task so asyncio does not warn about it."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Late populate failure discarded", key=key, error=str(exc))
    else:
        logger.debug("Late populate result discarded", key=key)


async def complete_within(
    awaitable: Awaitable[Any],
    timeout_ms: int,
    *,
    key: Optional[str] = None,
) -> Any:
    """Await ``awaitable`` for at most ``timeout_ms`` milliseconds.

    Returns its result, or re-raises its exception, when it finishes in time.
    Otherwise raises :class:`PopulateTimeoutError`; the operation keeps
    running and whatever it eventually produces is ignored.
    """
    task = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    if task in done:
        return task.result()

    task.add_done_callback(lambda t: _discard_late_result(t, key))
    raise PopulateTimeoutError(timeout_ms, key=key)
