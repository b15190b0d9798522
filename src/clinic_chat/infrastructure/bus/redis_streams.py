"""Redis Streams consumer for portal appointment events."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

OnStreamEventCallback = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]

ERROR_BACKOFF_SECONDS = 5.0


class RedisStreamConsumer:
    """XREADGROUP consumer for one stream and consumer group.

    An entry is acked only after its handler succeeds. Failed entries stay
    pending and are claimed again once idle for ``reclaim_idle_ms``; after
    ``max_deliveries`` attempts an entry is acked and logged as dropped.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        stream: str,
        group: str,
        consumer: str,
        callback: OnStreamEventCallback,
        *,
        batch_size: int = 10,
        block_ms: int = 5000,
        reclaim_idle_ms: int = 60_000,
        max_deliveries: int = 5,
    ) -> None:
        self._redis = redis
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._callback = callback
        self._batch_size = batch_size
        self._block_ms = block_ms
        self._reclaim_idle_ms = reclaim_idle_ms
        self._max_deliveries = max_deliveries
        self._task: asyncio.Task[None] | None = None

    async def ensure_group(self) -> None:
        try:
            await self._redis.xgroup_create(self._stream, self._group, id="$", mkstream=True)
            logger.info("Created consumer group %s on %s", self._group, self._stream)
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def start(self) -> None:
        await self.ensure_group()
        self._task = asyncio.create_task(self._consume(), name="redis-stream-consumer")
        logger.info("Stream consumer %s started on %s/%s", self._consumer, self._stream, self._group)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stream consumer %s stopped", self._consumer)

    async def _consume(self) -> None:
        while True:
            try:
                await self._reclaim_stale()
                entries = await self._redis.xreadgroup(
                    groupname=self._group,
                    consumername=self._consumer,
                    streams={self._stream: ">"},
                    count=self._batch_size,
                    block=self._block_ms,
                )
                for _stream, messages in entries or ():
                    await self._dispatch(messages)
            except aioredis.RedisError:
                logger.exception("Stream read failed, retrying in %.0fs", ERROR_BACKOFF_SECONDS)
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    async def _reclaim_stale(self) -> None:
        pending = await self._redis.xpending_range(
            self._stream,
            self._group,
            min="-",
            max="+",
            count=self._batch_size,
            idle=self._reclaim_idle_ms,
        )
        if not pending:
            return

        retry_ids = []
        for entry in pending:
            if entry["times_delivered"] >= self._max_deliveries:
                logger.error(
                    "Dropping stream entry %s after %d deliveries",
                    entry["message_id"], entry["times_delivered"],
                )
                await self._redis.xack(self._stream, self._group, entry["message_id"])
            else:
                retry_ids.append(entry["message_id"])
        if not retry_ids:
            return

        claimed = await self._redis.xclaim(
            self._stream,
            self._group,
            self._consumer,
            min_idle_time=self._reclaim_idle_ms,
            message_ids=retry_ids,
        )
        logger.info("Re-claimed %d stale stream entries", len(claimed))
        await self._dispatch(claimed)

    async def _dispatch(self, messages: list[tuple[str, dict[str, Any] | None]]) -> None:
        for msg_id, fields in messages:
            if not fields:
                # Trimmed from the stream while still pending
                await self._redis.xack(self._stream, self._group, msg_id)
                continue
            event_type = fields.get("event_type", "unknown")
            try:
                await self._callback(event_type, fields)
            except Exception:
                logger.exception("Handler failed for stream entry %s (%s)", msg_id, event_type)
                continue
            await self._redis.xack(self._stream, self._group, msg_id)
