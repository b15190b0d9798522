"""Outbox relay: publishes committed chat events to the cross-instance fan-out channel.

Run one or more copies; records are claimed with SKIP LOCKED.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis

from clinic_chat.application.ports.bus import EventPublisher
from clinic_chat.application.repositories.outbox import OutboxRecord
from clinic_chat.application.uow import UnitOfWork
from clinic_chat.config import settings
from clinic_chat.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from clinic_chat.infrastructure.db.session import uow_scope

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 5
MAX_DELAY_SECONDS = 300


def retry_at(attempts: int, now: datetime | None = None) -> datetime:
    """Exponential backoff capped at MAX_DELAY_SECONDS."""
    delay = min(BASE_DELAY_SECONDS * 2 ** attempts, MAX_DELAY_SECONDS)
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=delay)


async def process_batch(uow: UnitOfWork, publisher: EventPublisher) -> int:
    """Publish one batch in insertion order. Returns the number of records sent."""
    batch = await uow.outbox.fetch_pending(settings.OUTBOX_BATCH_SIZE)
    if not batch:
        return 0

    sent: list[int] = []
    for record in batch:
        try:
            await publisher.publish(
                settings.REDIS_PUBSUB_CHANNEL,
                {"event_type": record.event_type, **record.payload},
            )
        except Exception as exc:
            await _record_failure(uow, record, exc)
        else:
            sent.append(record.id)

    await uow.outbox.mark_sent(sent)
    await uow.commit()
    if sent:
        logger.info("Published %d/%d outbox records", len(sent), len(batch))
    return len(sent)


async def _record_failure(uow: UnitOfWork, record: OutboxRecord, exc: Exception) -> None:
    attempt = record.attempts + 1
    if attempt >= settings.OUTBOX_MAX_ATTEMPTS:
        logger.error(
            "Outbox record %d (%s) dead after %d attempts: %r",
            record.id, record.event_type, attempt, exc,
        )
        await uow.outbox.mark_dead(record.id, repr(exc))
        return
    logger.warning(
        "Outbox record %d (%s) attempt %d failed: %r",
        record.id, record.event_type, attempt, exc,
    )
    await uow.outbox.mark_failed(record.id, retry_at(record.attempts), repr(exc))


async def run_outbox_worker() -> None:
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    publisher = RedisPubSubPublisher(redis)
    logger.info(
        "Outbox worker started (poll=%.1fs, batch=%d, max_attempts=%d)",
        settings.OUTBOX_POLL_INTERVAL,
        settings.OUTBOX_BATCH_SIZE,
        settings.OUTBOX_MAX_ATTEMPTS,
    )
    try:
        while True:
            sent = 0
            try:
                async with uow_scope() as uow:
                    sent = await process_batch(uow, publisher)
            except Exception:
                logger.exception("Outbox worker loop error")
            # Drain a backlog without waiting between full batches
            if sent < settings.OUTBOX_BATCH_SIZE:
                await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL)
    finally:
        await redis.aclose()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_outbox_worker())


if __name__ == "__main__":
    main()
