from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import Any

from clinic_chat.application.dto.message import MessageContentDTO
from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import (
    StoreUnavailableError,
    TransientDeliveryError,
    ValidationError,
)
from clinic_chat.application.policies.permissions import (
    assert_conversation_access,
    assert_open,
)
from clinic_chat.application.ports.clock import Clock, SystemClock, next_timestamp
from clinic_chat.application.uow import UnitOfWork
from clinic_chat.config import settings
from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.entities.message import Attachment, Message
from clinic_chat.domain.events.message_appended import MessageAppended
from clinic_chat.domain.value_objects.cursor import decode_cursor

logger = logging.getLogger(__name__)

_system_clock = SystemClock()


def message_payload(msg: Message) -> dict[str, Any]:
    """Wire shape shared by HTTP responses, realtime events and the outbox."""
    return {
        "id": str(msg.id),
        "conversation_id": str(msg.conversation_id),
        "sender_id": msg.sender_id,
        "sender_role": str(msg.sender_role),
        "kind": str(msg.kind),
        "body": msg.body,
        "attachment": msg.attachment.to_dict() if msg.attachment else None,
        "client_temp_id": str(msg.client_temp_id),
        "created_at": msg.created_at.isoformat(),
    }


async def append_message(
    conversation_id: uuid.UUID,
    principal: Principal,
    content: MessageContentDTO,
    uow: UnitOfWork,
    *,
    clock: Clock = _system_clock,
) -> tuple[Message, bool]:
    """Append a message idempotently.

    Returns (message, created). A retry carrying the same client_temp_id
    gets the stored message back with created=False. Store failures surface
    as TransientDeliveryError tagged with the client_temp_id.
    """
    content.validate(settings.MESSAGE_MAX_LENGTH)

    try:
        conversation = await uow.conversations_w.lock(conversation_id)
        conversation = assert_conversation_access(principal, conversation)

        existing = await uow.messages_w.get_by_client_temp_id(
            conversation_id, principal.participant_id, content.client_temp_id,
        )
        if existing is not None:
            return existing, False

        assert_open(conversation)
        msg, created = await record_message(
            conversation,
            principal,
            content.kind,
            body=content.body,
            attachment=content.attachment,
            client_temp_id=content.client_temp_id,
            uow=uow,
            clock=clock,
        )
        await uow.commit()
    except StoreUnavailableError as exc:
        logger.warning(
            "Append to %s failed (client_temp_id=%s): %s",
            conversation_id, content.client_temp_id, exc,
        )
        raise TransientDeliveryError(
            "Message could not be stored, retry later",
            client_temp_id=content.client_temp_id,
        ) from exc

    return msg, created


async def record_message(
    conversation: Conversation,
    principal: Principal,
    kind: str,
    *,
    body: str | None,
    attachment: Attachment | None,
    client_temp_id: uuid.UUID,
    uow: UnitOfWork,
    clock: Clock = _system_clock,
) -> tuple[Message, bool]:
    """Write a message plus its outbox event without committing.

    Returns (message, created); a concurrent insert of the same
    client_temp_id yields the stored row and writes no event.

    The caller must hold the conversation lock so created_at stays strictly
    increasing within the conversation.
    """
    msg = Message(
        id=uuid.uuid4(),
        conversation_id=conversation.id,
        sender_id=principal.participant_id,
        sender_role=principal.role,
        kind=kind,
        body=body,
        attachment=attachment,
        client_temp_id=client_temp_id,
        created_at=next_timestamp(clock, conversation.last_message_at),
    )
    msg, created = await uow.messages_w.append(msg)
    if not created:
        return msg, False

    await uow.conversations_w.touch_last_message_at(conversation.id, msg.created_at)
    event = MessageAppended(conversation_id=conversation.id, message=message_payload(msg))
    await uow.outbox.add(
        "chat.message_appended",
        {
            **dataclasses.asdict(event),
            "conversation_id": str(conversation.id),
            "participant_ids": list(conversation.participants),
            "origin": settings.INSTANCE_ID,
        },
    )
    return msg, True


async def list_since(
    conversation_id: uuid.UUID,
    principal: Principal,
    cursor: str | None,
    limit: int,
    uow: UnitOfWork,
) -> list[Message]:
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_conversation_access(principal, conversation)
    if cursor:
        try:
            decode_cursor(cursor)
        except ValueError as exc:
            raise ValidationError("Malformed cursor") from exc
    return await uow.messages.list_since(conversation_id, cursor=cursor, limit=limit)
