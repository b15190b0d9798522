"""Redis Pub/Sub fan-out between service instances.

Best effort: an instance that is down or resubscribing misses events, and
clients recover them through history catch-up on reconnect.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

import redis.asyncio as aioredis

from clinic_chat.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 2.0

OnEventCallback = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, payload: dict[str, Any]) -> None:
        event_type = payload.get("event_type", "unknown")
        receivers = await self._redis.publish(channel, serialize_event(event_type, payload))
        if not receivers:
            logger.debug("No instance listening on %s for %s", channel, event_type)


class RedisPubSubSubscriber:
    """Listens on one channel in a background task and hands events to ``callback``.

    Resubscribes after connection errors. A failing callback is logged and
    does not stop the loop.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        callback: OnEventCallback,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name="redis-pubsub-subscriber")
        logger.info("Fan-out subscriber started on %s", self._channel)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Fan-out subscriber stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self._listen()
            except aioredis.RedisError as exc:
                logger.warning(
                    "Fan-out subscription lost (%s), resubscribing in %.0fs",
                    exc, RECONNECT_DELAY_SECONDS,
                )
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    async def _listen(self) -> None:
        async with self._redis.pubsub(ignore_subscribe_messages=True) as pubsub:
            await pubsub.subscribe(self._channel)
            async for message in pubsub.listen():
                if message is not None and message["type"] == "message":
                    await self._handle(message["data"])

    async def _handle(self, raw: str | bytes) -> None:
        try:
            event_type, data = deserialize_event(raw)
        except ValueError:
            logger.warning("Dropping malformed fan-out message", exc_info=True)
            return
        try:
            await self._callback(event_type, data)
        except Exception:
            logger.exception("Fan-out handler failed for %s", event_type)
