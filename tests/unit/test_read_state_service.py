from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from clinic_chat.application.exceptions import ConflictAlreadyRead, NotFoundError
from clinic_chat.services import read_state_service
from tests.conftest import DOCTOR_ID, PATIENT_ID, T0, FakeUoW, make_conversation, make_message


def _seed(uow: FakeUoW, count: int = 3):
    conv = uow.conversations.add(make_conversation())
    msgs = [
        uow.messages.add(make_message(
            conversation_id=conv.id,
            sender_id=DOCTOR_ID,
            body=f"m{i}",
            created_at=T0 + timedelta(seconds=i),
        ))
        for i in range(count)
    ]
    return conv, msgs


@pytest.mark.asyncio
async def test_mark_read_defaults_to_latest(patient_principal):
    uow = FakeUoW()
    conv, msgs = _seed(uow)

    marker, event = await read_state_service.mark_read(conv.id, patient_principal, uow)

    assert marker.last_read_message_id == msgs[-1].id
    assert event.notify_participant_ids == (DOCTOR_ID, PATIENT_ID)
    assert uow.outbox.event_types() == ["chat.read_advanced"]
    assert uow._committed is True
    assert await read_state_service.unread_count(conv.id, patient_principal, uow) == 0


@pytest.mark.asyncio
async def test_mark_read_is_forward_only(patient_principal):
    uow = FakeUoW()
    conv, msgs = _seed(uow)
    await read_state_service.mark_read(conv.id, patient_principal, uow, last_message_id=msgs[2].id)

    with pytest.raises(ConflictAlreadyRead):
        await read_state_service.mark_read(conv.id, patient_principal, uow, last_message_id=msgs[0].id)

    marker = await uow.read_state.get(conv.id, PATIENT_ID)
    assert marker.last_read_message_id == msgs[2].id


@pytest.mark.asyncio
async def test_mark_read_partial(patient_principal):
    uow = FakeUoW()
    conv, msgs = _seed(uow)

    await read_state_service.mark_read(conv.id, patient_principal, uow, last_message_id=msgs[0].id)

    assert await read_state_service.unread_count(conv.id, patient_principal, uow) == 2


@pytest.mark.asyncio
async def test_mark_read_empty_conversation(patient_principal):
    uow = FakeUoW()
    conv = uow.conversations.add(make_conversation())

    with pytest.raises(ConflictAlreadyRead):
        await read_state_service.mark_read(conv.id, patient_principal, uow)


@pytest.mark.asyncio
async def test_mark_read_foreign_message(patient_principal):
    uow = FakeUoW()
    conv, _ = _seed(uow)
    other = uow.messages.add(make_message())

    with pytest.raises(NotFoundError):
        await read_state_service.mark_read(conv.id, patient_principal, uow, last_message_id=other.id)
    with pytest.raises(NotFoundError):
        await read_state_service.mark_read(conv.id, patient_principal, uow, last_message_id=uuid.uuid4())


@pytest.mark.asyncio
async def test_own_messages_never_unread(doctor_principal):
    uow = FakeUoW()
    conv, _ = _seed(uow)

    assert await read_state_service.unread_count(conv.id, doctor_principal, uow) == 0


@pytest.mark.asyncio
async def test_unread_summary(patient_principal):
    uow = FakeUoW()
    conv, _ = _seed(uow, count=2)
    quiet = uow.conversations.add(make_conversation(participants=(PATIENT_ID, 8)))

    summary = await read_state_service.unread_summary(patient_principal, uow)

    assert summary.per_conversation == {conv.id: 2, quiet.id: 0}
    assert summary.total == 2
