from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from clinic_chat.application.dto.conversation import ConversationFilterDTO
from clinic_chat.application.exceptions import (
    FailedPreconditionError,
    NotAParticipantError,
    NotFoundError,
    ValidationError,
)
from clinic_chat.domain.value_objects.cursor import encode_cursor
from clinic_chat.domain.value_objects.enums import (
    ConversationKind,
    ConversationStatus,
    MessageKind,
)
from clinic_chat.services import conversation_service
from tests.conftest import (
    DOCTOR_ID,
    PATIENT_ID,
    STRANGER_ID,
    T0,
    FakeDirectory,
    FakeUoW,
    make_conversation,
    make_message,
)


@pytest.mark.asyncio
async def test_direct_creates_new(clock):
    uow = FakeUoW()

    conv = await conversation_service.resolve_or_create_direct(
        PATIENT_ID, DOCTOR_ID, uow, FakeDirectory(), clock=clock,
    )

    assert conv.kind == ConversationKind.DIRECT
    assert conv.status == ConversationStatus.ACTIVE
    assert conv.participants == (DOCTOR_ID, PATIENT_ID)
    assert conv.created_at == T0
    assert uow._committed is True
    assert uow.outbox.event_types() == ["chat.conversation_created"]


@pytest.mark.asyncio
async def test_direct_is_symmetric():
    uow = FakeUoW()
    directory = FakeDirectory()

    first = await conversation_service.resolve_or_create_direct(PATIENT_ID, DOCTOR_ID, uow, directory)
    second = await conversation_service.resolve_or_create_direct(DOCTOR_ID, PATIENT_ID, uow, directory)

    assert first.id == second.id
    assert uow.conversations_w.created == 1


@pytest.mark.asyncio
async def test_direct_lost_race_returns_winner():
    uow = FakeUoW()
    winner = make_conversation()
    uow.conversations.add(winner)

    # The lookup misses (as if the winner committed between our read and insert)
    async def _miss(_pair):
        return None

    uow.conversations.get_direct = _miss

    conv = await conversation_service.resolve_or_create_direct(
        PATIENT_ID, DOCTOR_ID, uow, FakeDirectory(),
    )

    assert conv.id == winner.id
    assert uow._rolled_back is True
    assert uow._committed is False
    assert uow.outbox._records == []


@pytest.mark.asyncio
async def test_direct_with_self_rejected():
    with pytest.raises(ValidationError):
        await conversation_service.resolve_or_create_direct(
            PATIENT_ID, PATIENT_ID, FakeUoW(), FakeDirectory(),
        )


@pytest.mark.asyncio
async def test_direct_unknown_participant():
    uow = FakeUoW()
    with pytest.raises(NotFoundError):
        await conversation_service.resolve_or_create_direct(
            PATIENT_ID, STRANGER_ID, uow, FakeDirectory(),
        )
    assert uow.conversations._store == {}


@pytest.mark.asyncio
async def test_appointment_creates_with_roles():
    uow = FakeUoW()
    directory = FakeDirectory()
    directory.add_appointment(500, patient_id=PATIENT_ID, doctor_id=DOCTOR_ID)

    conv = await conversation_service.resolve_or_create_for_appointment(500, uow, directory)

    assert conv.kind == ConversationKind.APPOINTMENT
    assert conv.appointment_id == 500
    assert conv.participant_a == PATIENT_ID
    assert conv.participant_b == DOCTOR_ID

    again = await conversation_service.resolve_or_create_for_appointment(500, uow, directory)
    assert again.id == conv.id


@pytest.mark.asyncio
async def test_appointment_without_parties():
    with pytest.raises(FailedPreconditionError):
        await conversation_service.resolve_or_create_for_appointment(
            501, FakeUoW(), FakeDirectory(),
        )


@pytest.mark.asyncio
async def test_open_appointment_rejects_outsider(stranger_principal):
    directory = FakeDirectory()
    directory.add_appointment(500, patient_id=PATIENT_ID, doctor_id=DOCTOR_ID)

    with pytest.raises(NotAParticipantError):
        await conversation_service.open_appointment_conversation(
            500, stranger_principal, FakeUoW(), directory,
        )


@pytest.mark.asyncio
async def test_list_orders_by_activity_with_unread(patient_principal):
    uow = FakeUoW()
    quiet = uow.conversations.add(make_conversation(participants=(PATIENT_ID, 8)))
    busy = uow.conversations.add(
        make_conversation(last_message_at=T0 + timedelta(minutes=5))
    )
    uow.conversations.add(make_conversation(participants=(DOCTOR_ID, STRANGER_ID)))
    uow.messages.add(make_message(
        conversation_id=busy.id, sender_id=DOCTOR_ID, created_at=T0 + timedelta(minutes=5),
    ))

    result = await conversation_service.list_conversations_for(
        patient_principal, ConversationFilterDTO(), uow,
    )

    assert [s.conversation.id for s in result] == [busy.id, quiet.id]
    assert [s.unread_count for s in result] == [1, 0]


@pytest.mark.asyncio
async def test_list_pages_with_cursor(patient_principal):
    uow = FakeUoW()
    convs = [
        uow.conversations.add(make_conversation(
            participants=(PATIENT_ID, 100 + i),
            last_message_at=T0 + timedelta(minutes=i),
        ))
        for i in range(3)
    ]

    first = await conversation_service.list_conversations_for(
        patient_principal, ConversationFilterDTO(limit=2), uow,
    )
    last = first[-1].conversation
    rest = await conversation_service.list_conversations_for(
        patient_principal,
        ConversationFilterDTO(limit=2, cursor=encode_cursor(last.activity_at, last.id)),
        uow,
    )

    assert [s.conversation.id for s in first] == [convs[2].id, convs[1].id]
    assert [s.conversation.id for s in rest] == [convs[0].id]


@pytest.mark.asyncio
async def test_list_rejects_bad_cursor(patient_principal):
    with pytest.raises(ValidationError):
        await conversation_service.list_conversations_for(
            patient_principal, ConversationFilterDTO(cursor="bm90LWEtY3Vyc29y"), FakeUoW(),
        )


@pytest.mark.asyncio
async def test_get_conversation_access(patient_principal, stranger_principal):
    uow = FakeUoW()
    conv = uow.conversations.add(make_conversation())

    assert (await conversation_service.get_conversation(conv.id, patient_principal, uow)).id == conv.id
    with pytest.raises(NotAParticipantError):
        await conversation_service.get_conversation(conv.id, stranger_principal, uow)
    with pytest.raises(NotFoundError):
        await conversation_service.get_conversation(uuid.uuid4(), patient_principal, uow)


@pytest.mark.asyncio
async def test_close_records_system_message(doctor_principal, clock):
    uow = FakeUoW()
    conv = uow.conversations.add(make_conversation())

    closed, system_msg = await conversation_service.close_conversation(
        conv.id, doctor_principal, uow, clock=clock,
    )

    assert closed.status == ConversationStatus.CLOSED
    assert uow.conversations._store[conv.id].is_closed
    assert system_msg is not None
    assert system_msg.kind == MessageKind.SYSTEM
    assert system_msg.sender_id == DOCTOR_ID
    assert uow.outbox.event_types() == ["chat.message_appended"]
    assert uow._committed is True


@pytest.mark.asyncio
async def test_close_twice_is_noop(doctor_principal):
    uow = FakeUoW()
    conv = uow.conversations.add(make_conversation(status=ConversationStatus.CLOSED))

    closed, system_msg = await conversation_service.close_conversation(conv.id, doctor_principal, uow)

    assert closed.is_closed
    assert system_msg is None
    assert uow._committed is False
