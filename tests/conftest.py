"""Shared test fixtures."""
from __future__ import annotations

import dataclasses
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator
from uuid import UUID

import pytest

from clinic_chat.application.dto.conversation import ConversationFilterDTO
from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import StoreUnavailableError
from clinic_chat.application.ports.directory import AppointmentParties
from clinic_chat.application.repositories.outbox import OutboxRecord
from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.entities.message import Message
from clinic_chat.domain.entities.read_state import ReadMarker
from clinic_chat.domain.value_objects.cursor import decode_cursor
from clinic_chat.domain.value_objects.enums import (
    ConversationKind,
    ConversationStatus,
    MessageKind,
    Role,
)
from clinic_chat.domain.value_objects.pair import ParticipantPair

PATIENT_ID = 42
DOCTOR_ID = 7
STRANGER_ID = 999

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def patient_principal() -> Principal:
    return Principal(participant_id=PATIENT_ID, role=Role.PATIENT)


@pytest.fixture
def doctor_principal() -> Principal:
    return Principal(participant_id=DOCTOR_ID, role=Role.DOCTOR)


@pytest.fixture
def stranger_principal() -> Principal:
    return Principal(participant_id=STRANGER_ID, role=Role.PATIENT)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)

    def set(self, when: datetime) -> None:
        self._now = when


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


def make_conversation(
    *,
    conversation_id: UUID | None = None,
    kind: str = ConversationKind.DIRECT,
    participants: tuple[int, int] = (DOCTOR_ID, PATIENT_ID),
    appointment_id: int | None = None,
    status: str = ConversationStatus.ACTIVE,
    last_message_at: datetime | None = None,
    created_at: datetime = T0,
) -> Conversation:
    a, b = participants
    if kind == ConversationKind.DIRECT:
        pair = ParticipantPair.of(a, b)
        a, b = pair.low, pair.high
    return Conversation(
        id=conversation_id or uuid.uuid4(),
        kind=kind,
        participant_a=a,
        participant_b=b,
        appointment_id=appointment_id,
        status=status,
        last_message_at=last_message_at,
        created_at=created_at,
        updated_at=created_at,
    )


def make_message(
    *,
    conversation_id: UUID | None = None,
    sender_id: int = PATIENT_ID,
    sender_role: str = Role.PATIENT,
    body: str = "hello",
    created_at: datetime = T0,
    client_temp_id: UUID | None = None,
) -> Message:
    return Message(
        id=uuid.uuid4(),
        conversation_id=conversation_id or uuid.uuid4(),
        sender_id=sender_id,
        sender_role=sender_role,
        kind=MessageKind.TEXT,
        body=body,
        attachment=None,
        client_temp_id=client_temp_id or uuid.uuid4(),
        created_at=created_at,
    )


@dataclass
class FakeConversationReader:
    _store: dict[UUID, Conversation] = field(default_factory=dict)

    def add(self, conversation: Conversation) -> Conversation:
        self._store[conversation.id] = conversation
        return conversation

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return self._store.get(conversation_id)

    async def get_direct(self, pair: ParticipantPair) -> Conversation | None:
        for c in self._store.values():
            if c.is_direct and (c.participant_a, c.participant_b) == (pair.low, pair.high):
                return c
        return None

    async def get_by_appointment(self, appointment_id: int) -> Conversation | None:
        for c in self._store.values():
            if c.appointment_id == appointment_id:
                return c
        return None

    async def list_ids_for_participant(self, participant_id: int) -> list[UUID]:
        return [
            c.id for c in self._store.values()
            if c.has_participant(participant_id) and not c.is_closed
        ]

    async def list_for_participant(
        self, participant_id: int, filters: ConversationFilterDTO
    ) -> list[Conversation]:
        convs = [c for c in self._store.values() if c.has_participant(participant_id)]
        if filters.status:
            convs = [c for c in convs if c.status == filters.status]
        convs.sort(key=lambda c: (-c.activity_at.timestamp(), str(c.id)))
        if filters.cursor:
            ts, cid = decode_cursor(filters.cursor)
            convs = [
                c for c in convs
                if c.activity_at < ts or (c.activity_at == ts and str(c.id) > str(cid))
            ]
        return convs[: filters.limit]


@dataclass
class FakeConversationWriter:
    _reader: FakeConversationReader
    created: int = 0

    async def create_if_absent(self, conversation: Conversation) -> tuple[Conversation, bool]:
        existing = next(
            (
                c for c in self._reader._store.values()
                if c.kind == conversation.kind
                and (
                    c.participants == conversation.participants
                    if conversation.is_direct
                    else c.appointment_id == conversation.appointment_id
                )
            ),
            None,
        )
        if existing is not None:
            return existing, False
        self._reader._store[conversation.id] = conversation
        self.created += 1
        return conversation, True

    async def lock(self, conversation_id: UUID) -> Conversation | None:
        return self._reader._store.get(conversation_id)

    async def close(self, conversation_id: UUID) -> None:
        conv = self._reader._store[conversation_id]
        self._reader._store[conversation_id] = dataclasses.replace(
            conv, status=ConversationStatus.CLOSED,
        )

    async def touch_last_message_at(self, conversation_id: UUID, ts: datetime) -> None:
        conv = self._reader._store[conversation_id]
        self._reader._store[conversation_id] = dataclasses.replace(conv, last_message_at=ts)


def _timeline_key(m: Message) -> tuple[datetime, str]:
    return (m.created_at, str(m.id))


@dataclass
class FakeMessageReader:
    _messages: list[Message] = field(default_factory=list)

    def add(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def _timeline(self, conversation_id: UUID) -> list[Message]:
        return sorted(
            (m for m in self._messages if m.conversation_id == conversation_id),
            key=_timeline_key,
        )

    async def list_since(
        self,
        conversation_id: UUID,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[Message]:
        timeline = self._timeline(conversation_id)
        if cursor is None:
            return timeline[-limit:]
        ts, mid = decode_cursor(cursor)
        return [m for m in timeline if _timeline_key(m) > (ts, str(mid))][:limit]

    async def get_by_id(self, message_id: UUID) -> Message | None:
        return next((m for m in self._messages if m.id == message_id), None)

    async def get_latest(self, conversation_id: UUID) -> Message | None:
        timeline = self._timeline(conversation_id)
        return timeline[-1] if timeline else None

    async def count_unread(
        self,
        participant_id: int,
        markers: dict[UUID, datetime | None],
    ) -> dict[UUID, int]:
        return {
            cid: sum(
                1 for m in self._messages
                if m.conversation_id == cid
                and m.sender_id != participant_id
                and (ts is None or m.created_at > ts)
            )
            for cid, ts in markers.items()
        }


@dataclass
class FakeMessageWriter:
    _reader: FakeMessageReader
    fail_with: Exception | None = None

    async def append(self, message: Message) -> tuple[Message, bool]:
        if self.fail_with is not None:
            raise self.fail_with
        existing = await self.get_by_client_temp_id(
            message.conversation_id, message.sender_id, message.client_temp_id,
        )
        if existing is not None:
            return existing, False
        self._reader._messages.append(message)
        return message, True

    async def get_by_client_temp_id(
        self,
        conversation_id: UUID,
        sender_id: int,
        client_temp_id: UUID,
    ) -> Message | None:
        for m in self._reader._messages:
            if (
                m.conversation_id == conversation_id
                and m.sender_id == sender_id
                and m.client_temp_id == client_temp_id
            ):
                return m
        return None


@dataclass
class FakeReadStateReader:
    _markers: dict[tuple[UUID, int], ReadMarker] = field(default_factory=dict)

    async def get(self, conversation_id: UUID, participant_id: int) -> ReadMarker | None:
        return self._markers.get((conversation_id, participant_id))

    async def positions_for(
        self, participant_id: int, conversation_ids: list[UUID]
    ) -> dict[UUID, datetime | None]:
        positions: dict[UUID, datetime | None] = {}
        for cid in conversation_ids:
            marker = self._markers.get((cid, participant_id))
            positions[cid] = marker.last_read_at if marker else None
        return positions


@dataclass
class FakeReadStateWriter:
    _reader: FakeReadStateReader

    async def advance(
        self,
        conversation_id: UUID,
        participant_id: int,
        last_message_id: UUID,
        last_read_at: datetime,
    ) -> ReadMarker | None:
        current = self._reader._markers.get((conversation_id, participant_id))
        if current is not None and not current.is_behind(last_read_at):
            return None
        marker = ReadMarker(
            conversation_id=conversation_id,
            participant_id=participant_id,
            last_read_message_id=last_message_id,
            last_read_at=last_read_at,
            updated_at=last_read_at,
        )
        self._reader._markers[(conversation_id, participant_id)] = marker
        return marker


@dataclass
class FakeOutboxWriter:
    _records: list[dict[str, Any]] = field(default_factory=list)
    _status: dict[int, str] = field(default_factory=dict)
    _attempts: dict[int, int] = field(default_factory=dict)
    _errors: dict[int, str | None] = field(default_factory=dict)

    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        self._records.append({"event_type": event_type, "payload": payload})

    def event_types(self) -> list[str]:
        return [r["event_type"] for r in self._records]

    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]:
        pending = [
            OutboxRecord(
                id=i,
                event_type=r["event_type"],
                payload=r["payload"],
                attempts=self._attempts.get(i, 0),
            )
            for i, r in enumerate(self._records, start=1)
            if self._status.get(i, "pending") in ("pending", "failed")
        ]
        return pending[:batch_size]

    async def mark_sent(self, ids: list[int]) -> None:
        for i in ids:
            self._status[i] = "sent"

    async def mark_failed(self, record_id: int, next_retry_at: datetime, error: str | None = None) -> None:
        self._status[record_id] = "failed"
        self._errors[record_id] = error
        self._attempts[record_id] = self._attempts.get(record_id, 0) + 1

    async def mark_dead(self, record_id: int, error: str | None = None) -> None:
        self._status[record_id] = "dead"
        self._errors[record_id] = error


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    conversations: FakeConversationReader = field(default_factory=FakeConversationReader)
    conversations_w: FakeConversationWriter | None = None
    messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    messages_w: FakeMessageWriter | None = None
    read_state: FakeReadStateReader = field(default_factory=FakeReadStateReader)
    read_state_w: FakeReadStateWriter | None = None
    outbox: FakeOutboxWriter = field(default_factory=FakeOutboxWriter)
    fail_commit: bool = False
    _committed: bool = False
    _rolled_back: bool = False

    def __post_init__(self) -> None:
        if self.conversations_w is None:
            self.conversations_w = FakeConversationWriter(self.conversations)
        if self.messages_w is None:
            self.messages_w = FakeMessageWriter(self.messages)
        if self.read_state_w is None:
            self.read_state_w = FakeReadStateWriter(self.read_state)

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        if self.fail_commit:
            raise StoreUnavailableError("commit failed")
        self._committed = True

    async def rollback(self) -> None:
        self._rolled_back = True


def uow_factory_for(uow: FakeUoW):
    """A UoW factory that always hands out the same in-memory UoW."""

    @asynccontextmanager
    async def _scope() -> AsyncIterator[FakeUoW]:
        try:
            yield uow
        except BaseException:
            await uow.rollback()
            raise

    return _scope


@dataclass
class FakeDirectory:
    """ParticipantDirectory + AppointmentDirectory backed by dicts."""

    participants: set[int] = field(default_factory=lambda: {PATIENT_ID, DOCTOR_ID})
    appointments: dict[int, AppointmentParties] = field(default_factory=dict)

    def add_appointment(self, appointment_id: int, patient_id: int, doctor_id: int) -> None:
        self.appointments[appointment_id] = AppointmentParties(
            appointment_id=appointment_id, patient_id=patient_id, doctor_id=doctor_id,
        )

    async def exists(self, participant_id: int) -> bool:
        return participant_id in self.participants

    async def get_parties(self, appointment_id: int) -> AppointmentParties | None:
        return self.appointments.get(appointment_id)
