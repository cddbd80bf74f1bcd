"""
Event delivery for stale notifications and background errors.

``EventEmitter`` is the in-process publish/subscribe surface the populating
cache registers its ``stale`` handler on and reports ``error`` events to.
``RedisStaleListener`` fans stale keys out to every process over Redis
pub/sub; delivery is at-least-once and duplicate events are expected.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Optional

from redis.asyncio import Redis

from leasecache.config import settings
from leasecache.utils.logging import get_logger

logger = get_logger(__name__)

STALE = "stale"
ERROR = "error"


class EventEmitter:
    """Named events with sync or coroutine handlers."""

    def __init__(self):
        self._handlers: dict[str, list[Callable]] = defaultdict(list)

    def on(self, event: str, handler: Callable) -> None:
        """Register ``handler`` for ``event``."""
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable) -> None:
        """Remove a previously registered handler."""
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, *args: Any) -> None:
        """Call every handler for ``event`` in registration order.

        A failing handler is logged and skipped so one bad subscriber cannot
        break delivery to the rest.
        """
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Event handler failed", event_name=event, error=str(e))


async def publish_stale(redis: Redis, key: str, channel: Optional[str] = None) -> int:
    """Broadcast that ``key`` is stale. Returns the number of receiving processes."""
    return await redis.publish(channel or settings.stale_channel, key)


class RedisStaleListener:
    """
    Receives stale keys from a Redis channel and re-emits them locally.

    Every process runs one listener, so every process sees every stale key;
    the lease decides which one actually repopulates.
    """

    def __init__(
        self,
        redis: Redis,
        notifier: EventEmitter,
        channel: Optional[str] = None,
        poll_interval: float = 1.0,
    ):
        self._redis = redis
        self.notifier = notifier
        self.channel = channel or settings.stale_channel
        self.poll_interval = poll_interval

        self._pubsub = None
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Subscribe and start the receive loop."""
        if self._running:
            return

        self._pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(self.channel)
        self._running = True
        self._task = asyncio.create_task(self._receive_loop())
        logger.info("Stale listener started", channel=self.channel)

    async def stop(self) -> None:
        """Stop the receive loop and unsubscribe."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        logger.info("Stale listener stopped", channel=self.channel)

    async def _receive_loop(self) -> None:
        """Main receive loop."""
        while self._running:
            try:
                message = await self._pubsub.get_message(timeout=self.poll_interval)
                if message is None or message.get("type") != "message":
                    continue
                key = message["data"]
                if isinstance(key, bytes):
                    key = key.decode()
                await self.notifier.emit(STALE, key)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Stale listener error", channel=self.channel, error=str(e))
                await asyncio.sleep(self.poll_interval)
