from __future__ import annotations

import pytest

from clinic_chat.config import settings
from clinic_chat.domain.value_objects.enums import MessageKind
from clinic_chat.workers import appointment_events_consumer
from clinic_chat.workers.outbox_worker import process_batch
from tests.conftest import DOCTOR_ID, PATIENT_ID, FakeDirectory, FakeUoW


class FakePublisher:
    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.published: list[tuple[str, dict]] = []
        self.fail_on = fail_on or set()

    async def publish(self, channel: str, payload: dict) -> None:
        if payload["event_type"] in self.fail_on:
            raise ConnectionError("redis down")
        self.published.append((channel, payload))


@pytest.mark.asyncio
async def test_outbox_publishes_in_order():
    uow = FakeUoW()
    await uow.outbox.add("chat.message_appended", {"n": 1})
    await uow.outbox.add("chat.read_advanced", {"n": 2})
    publisher = FakePublisher()

    sent = await process_batch(uow, publisher)

    assert sent == 2
    assert [p["n"] for _, p in publisher.published] == [1, 2]
    assert publisher.published[0][0] == settings.REDIS_PUBSUB_CHANNEL
    assert await uow.outbox.fetch_pending(10) == []
    assert uow._committed is True


@pytest.mark.asyncio
async def test_outbox_failure_is_retried_then_dead():
    uow = FakeUoW()
    await uow.outbox.add("chat.read_advanced", {"n": 1})
    publisher = FakePublisher(fail_on={"chat.read_advanced"})

    for _ in range(settings.OUTBOX_MAX_ATTEMPTS - 1):
        assert await process_batch(uow, publisher) == 0
        assert uow.outbox._status[1] == "failed"

    await process_batch(uow, publisher)
    assert uow.outbox._status[1] == "dead"
    assert await uow.outbox.fetch_pending(10) == []


@pytest.mark.asyncio
async def test_appointment_confirmed_opens_conversation():
    uow = FakeUoW()
    directory = FakeDirectory()
    directory.add_appointment(77, patient_id=PATIENT_ID, doctor_id=DOCTOR_ID)

    await appointment_events_consumer.handle_event(
        "appointment.confirmed", {"appointment_id": "77"}, uow, directory,
    )

    conv = await uow.conversations.get_by_appointment(77)
    assert conv is not None
    assert conv.participants == (PATIENT_ID, DOCTOR_ID)


@pytest.mark.asyncio
async def test_appointment_cancelled_closes_conversation():
    uow = FakeUoW()
    directory = FakeDirectory()
    directory.add_appointment(77, patient_id=PATIENT_ID, doctor_id=DOCTOR_ID)
    await appointment_events_consumer.handle_event(
        "appointment.confirmed", {"appointment_id": "77"}, uow, directory,
    )

    await appointment_events_consumer.handle_event(
        "appointment.cancelled", {"appointment_id": "77"}, uow, directory,
    )

    conv = await uow.conversations.get_by_appointment(77)
    assert conv.is_closed
    system = uow.messages._messages[-1]
    assert system.kind == MessageKind.SYSTEM
    assert system.sender_id == DOCTOR_ID


@pytest.mark.asyncio
async def test_unknown_event_is_ignored():
    uow = FakeUoW()

    await appointment_events_consumer.handle_event("appointment.moved", {}, uow, FakeDirectory())

    assert uow.conversations._store == {}
