from __future__ import annotations

import logging
import uuid

from clinic_chat.application.dto.conversation import UnreadSummaryDTO
from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import (
    ConflictAlreadyRead,
    NotFoundError,
)
from clinic_chat.application.policies.permissions import assert_conversation_access
from clinic_chat.application.uow import UnitOfWork
from clinic_chat.config import settings
from clinic_chat.domain.entities.read_state import ReadMarker
from clinic_chat.domain.events.read_advanced import ReadAdvanced

logger = logging.getLogger(__name__)


async def mark_read(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
    *,
    last_message_id: uuid.UUID | None = None,
) -> tuple[ReadMarker, ReadAdvanced]:
    """Advance the caller's read marker to ``last_message_id`` (default: latest message).

    Raises ConflictAlreadyRead when the marker would not move forward,
    including an empty conversation.
    """
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(principal, conversation)

    if last_message_id is None:
        target = await uow.messages.get_latest(conversation_id)
        if target is None:
            raise ConflictAlreadyRead("Nothing to read")
    else:
        target = await uow.messages.get_by_id(last_message_id)
        if target is None or target.conversation_id != conversation_id:
            raise NotFoundError("Message not found in this conversation")

    marker = await uow.read_state_w.advance(
        conversation_id,
        principal.participant_id,
        target.id,
        target.created_at,
    )
    if marker is None:
        raise ConflictAlreadyRead("Read marker already at or past this message")

    event = ReadAdvanced(
        conversation_id=conversation_id,
        participant_id=principal.participant_id,
        last_read_message_id=target.id,
        last_read_at=target.created_at,
        notify_participant_ids=conversation.participants,
    )
    await uow.outbox.add(
        "chat.read_advanced",
        {
            "conversation_id": str(event.conversation_id),
            "participant_id": event.participant_id,
            "last_read_message_id": str(event.last_read_message_id),
            "last_read_at": event.last_read_at.isoformat(),
            "participant_ids": list(event.notify_participant_ids),
            "origin": settings.INSTANCE_ID,
        },
    )
    await uow.commit()
    logger.debug(
        "Participant %s read %s up to %s",
        principal.participant_id, conversation_id, target.id,
    )
    return marker, event


async def unread_summary(principal: Principal, uow: UnitOfWork) -> UnreadSummaryDTO:
    conversation_ids = await uow.conversations.list_ids_for_participant(principal.participant_id)
    if not conversation_ids:
        return UnreadSummaryDTO(per_conversation={})
    positions = await uow.read_state.positions_for(principal.participant_id, conversation_ids)
    counts = await uow.messages.count_unread(principal.participant_id, positions)
    return UnreadSummaryDTO(
        per_conversation={cid: counts.get(cid, 0) for cid in conversation_ids},
    )


async def unread_count(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> int:
    positions = await uow.read_state.positions_for(principal.participant_id, [conversation_id])
    counts = await uow.messages.count_unread(principal.participant_id, positions)
    return counts.get(conversation_id, 0)
