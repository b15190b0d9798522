from __future__ import annotations

import dataclasses
import logging
import uuid

from clinic_chat.application.dto.conversation import (
    ConversationFilterDTO,
    ConversationSummaryDTO,
)
from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import (
    FailedPreconditionError,
    NotAParticipantError,
    NotFoundError,
    ValidationError,
)
from clinic_chat.application.policies.permissions import assert_conversation_access
from clinic_chat.application.ports.clock import Clock, SystemClock
from clinic_chat.application.ports.directory import AppointmentDirectory, ParticipantDirectory
from clinic_chat.application.uow import UnitOfWork
from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.entities.message import Message
from clinic_chat.domain.events.conversation_created import ConversationCreated
from clinic_chat.domain.value_objects.enums import (
    ConversationKind,
    ConversationStatus,
    MessageKind,
)
from clinic_chat.domain.value_objects.cursor import decode_cursor
from clinic_chat.domain.value_objects.pair import ParticipantPair
from clinic_chat.services import message_service

logger = logging.getLogger(__name__)

_system_clock = SystemClock()


async def resolve_or_create_direct(
    participant_a: int,
    participant_b: int,
    uow: UnitOfWork,
    directory: ParticipantDirectory,
    *,
    clock: Clock = _system_clock,
) -> Conversation:
    """Return the direct conversation for the unordered pair, creating it if absent.

    Safe when both participants open the chat at the same time: the pair is
    unique in the store and the loser of the race gets the winner's row.
    """
    if participant_a == participant_b:
        raise ValidationError("Cannot open a direct conversation with yourself")

    pair = ParticipantPair.of(participant_a, participant_b)
    existing = await uow.conversations.get_direct(pair)
    if existing is not None:
        return existing

    for participant_id in (pair.low, pair.high):
        if not await directory.exists(participant_id):
            raise NotFoundError(f"Participant {participant_id} not found")

    now = clock.now()
    candidate = Conversation(
        id=uuid.uuid4(),
        kind=ConversationKind.DIRECT,
        participant_a=pair.low,
        participant_b=pair.high,
        appointment_id=None,
        status=ConversationStatus.ACTIVE,
        last_message_at=None,
        created_at=now,
        updated_at=now,
    )
    return await _create(candidate, uow)


async def resolve_or_create_for_appointment(
    appointment_id: int,
    uow: UnitOfWork,
    directory: AppointmentDirectory,
    *,
    clock: Clock = _system_clock,
) -> Conversation:
    """Return the conversation bound to the appointment, creating it if absent."""
    existing = await uow.conversations.get_by_appointment(appointment_id)
    if existing is not None:
        return existing

    parties = await directory.get_parties(appointment_id)
    if parties is None:
        raise FailedPreconditionError(
            f"Appointment {appointment_id} has no resolvable participants"
        )

    now = clock.now()
    candidate = Conversation(
        id=uuid.uuid4(),
        kind=ConversationKind.APPOINTMENT,
        participant_a=parties.patient_id,
        participant_b=parties.doctor_id,
        appointment_id=appointment_id,
        status=ConversationStatus.ACTIVE,
        last_message_at=None,
        created_at=now,
        updated_at=now,
    )
    return await _create(candidate, uow)


async def open_appointment_conversation(
    appointment_id: int,
    principal: Principal,
    uow: UnitOfWork,
    directory: AppointmentDirectory,
) -> Conversation:
    """Caller-facing variant: only the appointment's patient or doctor may open it."""
    conversation = await resolve_or_create_for_appointment(appointment_id, uow, directory)
    if not conversation.has_participant(principal.participant_id):
        raise NotAParticipantError("Not a party of this appointment")
    return conversation


async def _create(candidate: Conversation, uow: UnitOfWork) -> Conversation:
    conversation, created = await uow.conversations_w.create_if_absent(candidate)
    if not created:
        logger.debug("Lost creation race, reusing conversation %s", conversation.id)
        await uow.rollback()
        return conversation

    event = ConversationCreated(
        conversation_id=conversation.id,
        kind=conversation.kind,
        participant_a=conversation.participant_a,
        participant_b=conversation.participant_b,
        appointment_id=conversation.appointment_id,
    )
    await uow.outbox.add("chat.conversation_created", dataclasses.asdict(event))
    await uow.commit()
    logger.info("Created %s conversation %s", conversation.kind, conversation.id)
    return conversation


async def list_conversations_for(
    principal: Principal,
    filters: ConversationFilterDTO,
    uow: UnitOfWork,
) -> list[ConversationSummaryDTO]:
    if filters.cursor:
        try:
            decode_cursor(filters.cursor)
        except ValueError as exc:
            raise ValidationError("Malformed cursor") from exc
    conversations = await uow.conversations.list_for_participant(
        principal.participant_id, filters,
    )
    if not conversations:
        return []

    positions = await uow.read_state.positions_for(
        principal.participant_id, [c.id for c in conversations],
    )
    counts = await uow.messages.count_unread(principal.participant_id, positions)
    return [
        ConversationSummaryDTO(conversation=c, unread_count=counts.get(c.id, 0))
        for c in conversations
    ]


async def get_conversation(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> Conversation:
    conversation = await uow.conversations.get_by_id(conversation_id)
    return assert_conversation_access(principal, conversation)


async def close_conversation(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
    *,
    clock: Clock = _system_clock,
) -> tuple[Conversation, Message | None]:
    """Close the conversation and record a system message.

    Closing an already closed conversation is a no-op and returns no message.
    """
    conversation = await uow.conversations_w.lock(conversation_id)
    conversation = assert_conversation_access(principal, conversation)
    if conversation.is_closed:
        return conversation, None

    await uow.conversations_w.close(conversation_id)
    system_msg, _ = await message_service.record_message(
        conversation,
        principal,
        MessageKind.SYSTEM,
        body="Conversation closed",
        attachment=None,
        client_temp_id=uuid.uuid4(),
        uow=uow,
        clock=clock,
    )
    await uow.commit()
    closed = dataclasses.replace(
        conversation,
        status=ConversationStatus.CLOSED,
        last_message_at=system_msg.created_at,
    )
    return closed, system_msg
