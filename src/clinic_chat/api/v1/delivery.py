"""Append / read / close followed by the local realtime broadcast.

Shared by the WebSocket router and the HTTP fallback so both paths produce
the same events.
"""
from __future__ import annotations

import logging
from uuid import UUID

from clinic_chat.api.deps import UoWFactory
from clinic_chat.application.dto.message import MessageContentDTO
from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import ConflictAlreadyRead
from clinic_chat.application.ports.clock import Clock
from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.entities.message import Message
from clinic_chat.domain.entities.read_state import ReadMarker
from clinic_chat.infrastructure.ws.manager import ConnectionManager
from clinic_chat.services import conversation_service, message_service, read_state_service

logger = logging.getLogger(__name__)


async def deliver_message(
    manager: ConnectionManager,
    uow_factory: UoWFactory,
    conversation_id: UUID,
    principal: Principal,
    content: MessageContentDTO,
    clock: Clock,
) -> tuple[Message, bool]:
    async with manager.lock_for(conversation_id):
        async with uow_factory() as uow:
            msg, created = await message_service.append_message(
                conversation_id, principal, content, uow, clock=clock,
            )
            conversation = await uow.conversations.get_by_id(conversation_id)
        if created:
            await manager.broadcast_to_conversation(
                conversation_id,
                "message.appended",
                message_service.message_payload(msg),
                participant_ids=conversation.participants if conversation else (),
            )
    return msg, created


async def deliver_read(
    manager: ConnectionManager,
    uow_factory: UoWFactory,
    conversation_id: UUID,
    principal: Principal,
    last_message_id: UUID | None,
    *,
    origin_session: str | None = None,
) -> ReadMarker | None:
    """Advance the read marker and notify. None when it was already there."""
    async with uow_factory() as uow:
        try:
            marker, event = await read_state_service.mark_read(
                conversation_id, principal, uow, last_message_id=last_message_id,
            )
        except ConflictAlreadyRead:
            logger.debug("Stale mark_read from %s on %s", principal.principal_key, conversation_id)
            return None

    await manager.send_to_participants(
        event.notify_participant_ids,
        "read.advanced",
        {
            "conversation_id": str(event.conversation_id),
            "participant_id": event.participant_id,
            "last_read_message_id": str(event.last_read_message_id),
            "last_read_at": event.last_read_at.isoformat(),
        },
        exclude_session=origin_session,
    )
    return marker


async def deliver_close(
    manager: ConnectionManager,
    uow_factory: UoWFactory,
    conversation_id: UUID,
    principal: Principal,
    clock: Clock,
) -> Conversation:
    async with manager.lock_for(conversation_id):
        async with uow_factory() as uow:
            conversation, system_msg = await conversation_service.close_conversation(
                conversation_id, principal, uow, clock=clock,
            )
        if system_msg is not None:
            await manager.broadcast_to_conversation(
                conversation_id,
                "message.appended",
                message_service.message_payload(system_msg),
                participant_ids=conversation.participants,
            )
    return conversation
