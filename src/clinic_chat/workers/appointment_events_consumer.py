"""Consumer for portal appointment events via Redis Streams.

``appointment.confirmed`` opens the appointment's conversation ahead of the
first message; ``appointment.cancelled`` closes it.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import redis.asyncio as aioredis

from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.ports.directory import AppointmentDirectory
from clinic_chat.application.uow import UnitOfWork
from clinic_chat.config import settings
from clinic_chat.domain.value_objects.enums import Role
from clinic_chat.infrastructure.bus.redis_streams import RedisStreamConsumer
from clinic_chat.infrastructure.db.session import uow_scope
from clinic_chat.infrastructure.directory.portal_directory import PortalDirectory
from clinic_chat.services import conversation_service

logger = logging.getLogger(__name__)


async def handle_event(
    event_type: str,
    fields: dict[str, Any],
    uow: UnitOfWork,
    directory: AppointmentDirectory,
) -> None:
    """Dispatch a stream event to the appropriate handler."""
    if event_type == "appointment.confirmed":
        await _handle_confirmed(int(fields["appointment_id"]), uow, directory)
    elif event_type == "appointment.cancelled":
        await _handle_cancelled(int(fields["appointment_id"]), uow)
    else:
        logger.debug("Ignoring unknown event: %s", event_type)


async def _handle_confirmed(
    appointment_id: int,
    uow: UnitOfWork,
    directory: AppointmentDirectory,
) -> None:
    conv = await conversation_service.resolve_or_create_for_appointment(
        appointment_id, uow, directory,
    )
    logger.info("Appointment %d has conversation %s", appointment_id, conv.id)


async def _handle_cancelled(appointment_id: int, uow: UnitOfWork) -> None:
    conv = await uow.conversations.get_by_appointment(appointment_id)
    if conv is None:
        logger.debug("No conversation for cancelled appointment %d", appointment_id)
        return

    # Close on behalf of the doctor so the system message has a real sender
    closer = Principal(participant_id=conv.participant_b, role=Role.DOCTOR)
    _, system_msg = await conversation_service.close_conversation(conv.id, closer, uow)
    if system_msg is not None:
        logger.info("Closed conversation %s (appointment %d cancelled)", conv.id, appointment_id)


async def run_consumer() -> None:
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    directory = PortalDirectory.from_settings(
        settings.PORTAL_API_URL, settings.PORTAL_API_TOKEN, settings.PORTAL_API_TIMEOUT,
    )
    consumer_name = f"consumer-{uuid.uuid4().hex[:8]}"

    async def _on_event(event_type: str, fields: dict[str, Any]) -> None:
        async with uow_scope() as uow:
            await handle_event(event_type, fields, uow, directory)

    consumer = RedisStreamConsumer(
        redis=redis,
        stream=settings.APPOINTMENT_EVENTS_STREAM,
        group=settings.APPOINTMENT_EVENTS_GROUP,
        consumer=consumer_name,
        callback=_on_event,
    )
    await consumer.start()
    logger.info("Appointment events consumer started (%s)", consumer_name)

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await consumer.stop()
        await directory.aclose()
        await redis.aclose()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_consumer())


if __name__ == "__main__":
    main()
