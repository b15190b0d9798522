from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import pytest

from clinic_chat.client.engine import ApiError, SyncEngine
from clinic_chat.client.models import Identity
from clinic_chat.domain.value_objects.cursor import decode_cursor
from clinic_chat.domain.value_objects.enums import DeliveryStatus
from tests.conftest import DOCTOR_ID, PATIENT_ID, T0

CID = uuid.uuid4()


def wire(
    body: str,
    *,
    sender_id: int = DOCTOR_ID,
    at_second: float = 0,
    client_temp_id: UUID | str | None = None,
    message_id: UUID | None = None,
    conversation_id: UUID = CID,
) -> dict[str, Any]:
    return {
        "id": str(message_id or uuid.uuid4()),
        "conversation_id": str(conversation_id),
        "sender_id": sender_id,
        "sender_role": "doctor" if sender_id == DOCTOR_ID else "patient",
        "kind": "text",
        "body": body,
        "attachment": None,
        "client_temp_id": str(client_temp_id or uuid.uuid4()),
        "created_at": (T0 + timedelta(seconds=at_second)).isoformat(),
    }


class FakeRealtime:
    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def send(self, event_type: str, data: dict[str, Any]) -> None:
        if not self.connected:
            raise ConnectionError("socket closed")
        self.sent.append((event_type, data))

    def types(self) -> list[str]:
        return [t for t, _ in self.sent]


class FakeApi:
    def __init__(self) -> None:
        self.history: dict[UUID, list[dict[str, Any]]] = {}
        self.history_calls: list[str | None] = []
        self.sent: list[dict[str, Any]] = []
        self.read: list[UUID | None] = []
        self.unread: dict[UUID, int] = {}
        self.send_error: ApiError | None = None
        self.gate: asyncio.Event | None = None

    async def list_messages(self, conversation_id, *, cursor, limit):
        self.history_calls.append(cursor)
        if self.gate is not None:
            await self.gate.wait()
        page = self.history.get(conversation_id, [])
        return page[-limit:] if cursor is None else []

    async def send_message(self, conversation_id, payload):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)
        return wire(
            payload["body"],
            sender_id=PATIENT_ID,
            at_second=10,
            client_temp_id=payload["client_temp_id"],
            conversation_id=conversation_id,
        )

    async def mark_read(self, conversation_id, last_message_id):
        self.read.append(last_message_id)

    async def unread_summary(self):
        return dict(self.unread)


@pytest.fixture
def realtime() -> FakeRealtime:
    return FakeRealtime()


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def engine(realtime, api, clock) -> SyncEngine:
    return SyncEngine(Identity(PATIENT_ID, "patient"), realtime, api, clock=clock)


@pytest.mark.asyncio
async def test_open_joins_and_loads_history(engine, realtime, api):
    api.history[CID] = [wire("hello", at_second=1)]

    state = await engine.open(CID)

    assert realtime.sent[0] == ("join", {"conversation_id": str(CID)})
    assert [m.body for m in state.messages] == ["hello"]
    assert state.history_loaded is True


@pytest.mark.asyncio
async def test_send_over_realtime_then_echo(engine, realtime):
    await engine.open(CID)

    local = await engine.send_text(CID, "Good morning")
    assert local.status == DeliveryStatus.PENDING
    event_type, payload = realtime.sent[-1]
    assert event_type == "send"

    echo = wire("Good morning", sender_id=PATIENT_ID, at_second=3, client_temp_id=payload["client_temp_id"])
    await engine.handle_event("message.appended", echo)
    await engine.handle_event("message.appended", echo)

    messages = engine.state(CID).messages
    assert len(messages) == 1
    assert str(messages[0].id) == echo["id"]
    assert engine.unread.count(CID) == 0


@pytest.mark.asyncio
async def test_offline_send_falls_back_to_http(engine, realtime, api):
    realtime.connected = False

    local = await engine.send_text(CID, "Are you there?")

    assert api.sent[0]["client_temp_id"] == str(local.client_temp_id)
    assert local.is_confirmed
    assert local.status == DeliveryStatus.SENT
    assert engine.state(CID).pending() == []


@pytest.mark.asyncio
async def test_http_response_then_late_echo_does_not_duplicate(engine, realtime, api):
    realtime.connected = False
    local = await engine.send_text(CID, "ping")
    confirmed = engine.state(CID).messages[0]

    realtime.connected = True
    await engine.handle_event(
        "message.appended",
        wire("ping", sender_id=PATIENT_ID, at_second=10,
             client_temp_id=local.client_temp_id, message_id=confirmed.id),
    )

    assert len(engine.state(CID).messages) == 1


@pytest.mark.asyncio
async def test_failed_send_is_marked_and_retryable(engine, realtime, api):
    realtime.connected = False
    api.send_error = ApiError("transient", status=503, retryable=True)

    local = await engine.send_text(CID, "lost")
    assert local.status == DeliveryStatus.FAILED
    assert local.error == "transient"

    api.send_error = None
    retried = await engine.retry(CID, local.client_temp_id)

    assert retried.is_confirmed
    assert api.sent[0]["client_temp_id"] == str(local.client_temp_id)


@pytest.mark.asyncio
async def test_send_failed_event_marks_entry(engine, realtime):
    await engine.open(CID)
    local = await engine.send_text(CID, "nope")
    assert realtime.types()[-1] == "send"

    await engine.handle_event(
        "send.failed",
        {"client_temp_id": str(local.client_temp_id), "code": "conversation_closed", "retryable": False},
    )

    entry = engine.state(CID).find(local.client_temp_id)
    assert entry.status == DeliveryStatus.FAILED
    assert entry.error == "conversation_closed"


@pytest.mark.asyncio
async def test_out_of_order_events_are_displayed_in_order(engine):
    m1 = wire("first", at_second=1)
    m2 = wire("second", at_second=2)

    await engine.handle_event("message.appended", m2)
    await engine.handle_event("message.appended", m1)

    assert [m.body for m in engine.state(CID).messages] == ["first", "second"]
    assert engine.unread.count(CID) == 2


@pytest.mark.asyncio
async def test_reconnect_fills_gap_and_redelivers(engine, realtime, api):
    known = wire("before drop", at_second=1)
    api.history[CID] = [known]
    await engine.open(CID)

    realtime.connected = False
    api.send_error = ApiError("transient", status=503, retryable=True)
    pending = await engine.send_text(CID, "typed offline")
    engine.state(CID).mark_pending(pending.client_temp_id)
    api.send_error = None

    missed = wire("sent while offline", at_second=2)

    async def _after_cursor(conversation_id, *, cursor, limit):
        api.history_calls.append(cursor)
        return [missed] if cursor is not None else [known]

    api.list_messages = _after_cursor
    api.unread = {CID: 1}
    realtime.connected = True
    realtime.sent.clear()

    await engine.on_reconnect()

    assert realtime.types()[0] == "join"
    assert "send" in realtime.types()
    assert api.history_calls[-1] is not None
    bodies = [m.body for m in engine.state(CID).messages]
    assert bodies[:2] == ["before drop", "sent while offline"]
    assert engine.unread.count(CID) == 1


@pytest.mark.asyncio
async def test_reconnect_fill_covers_peer_messages_before_an_http_send(engine, realtime, api):
    before = wire("before drop", at_second=1)
    server_log = [before]

    async def _since(conversation_id, *, cursor, limit):
        api.history_calls.append(cursor)
        if cursor is None:
            return server_log[-limit:]
        after, _ = decode_cursor(cursor)
        return [m for m in server_log if datetime.fromisoformat(m["created_at"]) > after][:limit]

    api.list_messages = _since
    await engine.open(CID)

    realtime.connected = False
    server_log.append(wire("peer while offline", at_second=5))
    local = await engine.send_text(CID, "sent over http")
    assert local.is_confirmed
    server_log.append(
        wire("sent over http", sender_id=PATIENT_ID, at_second=10,
             client_temp_id=local.client_temp_id, message_id=local.id),
    )

    realtime.connected = True
    await engine.on_reconnect()

    assert decode_cursor(api.history_calls[-1])[0] == T0 + timedelta(seconds=1)
    assert [m.body for m in engine.state(CID).messages] == [
        "before drop", "peer while offline", "sent over http",
    ]


@pytest.mark.asyncio
async def test_pending_send_in_closed_conversation_redelivers_over_http(engine, realtime, api):
    await engine.open(CID)
    realtime.connected = False
    api.send_error = ApiError("transient", status=503, retryable=True)
    local = await engine.send_text(CID, "left behind")
    engine.state(CID).mark_pending(local.client_temp_id)
    api.send_error = None
    await engine.close(CID)

    realtime.connected = True
    realtime.sent.clear()
    await engine.on_reconnect()

    assert "send" not in realtime.types()
    assert api.sent[-1]["client_temp_id"] == str(local.client_temp_id)
    entry = engine.state(CID).messages[0]
    assert entry.is_confirmed
    assert entry.status == DeliveryStatus.SENT


@pytest.mark.asyncio
async def test_send_to_unopened_conversation_uses_http(engine, realtime, api):
    other = uuid.uuid4()

    local = await engine.send_text(other, "quick note")

    assert realtime.types() == []
    assert api.sent[0]["client_temp_id"] == str(local.client_temp_id)
    assert local.is_confirmed


@pytest.mark.asyncio
async def test_stale_history_is_discarded(engine, api):
    api.history[CID] = [wire("old", at_second=1)]
    api.gate = asyncio.Event()

    opening = asyncio.create_task(engine.open(CID))
    await asyncio.sleep(0)
    await engine.close(CID)
    api.gate.set()
    await opening

    assert engine.state(CID).messages == ()
    assert engine.state(CID).history_loaded is False


@pytest.mark.asyncio
async def test_mark_read_clears_unread(engine, realtime):
    msg = wire("read me", at_second=1)
    await engine.handle_event("message.appended", msg)
    assert engine.unread.total == 1

    assert await engine.mark_read(CID) is True

    assert engine.unread.total == 0
    assert realtime.sent[-1] == (
        "mark_read", {"conversation_id": str(CID), "last_message_id": msg["id"]},
    )
    assert await engine.mark_read(CID) is False


@pytest.mark.asyncio
async def test_typing_indicator_expires(engine, clock):
    await engine.handle_event(
        "typing.changed",
        {"conversation_id": str(CID), "participant_id": DOCTOR_ID, "is_typing": True},
    )
    assert engine.typing.typing_in(CID) == [DOCTOR_ID]

    clock.advance(1.2)

    assert engine.typing.typing_in(CID) == []


@pytest.mark.asyncio
async def test_peer_message_clears_their_typing(engine):
    await engine.handle_event(
        "typing.changed",
        {"conversation_id": str(CID), "participant_id": DOCTOR_ID, "is_typing": True},
    )
    await engine.handle_event("message.appended", wire("done typing"))

    assert engine.typing.typing_in(CID) == []


@pytest.mark.asyncio
async def test_joined_and_presence_events(engine):
    await engine.handle_event(
        "joined",
        {
            "conversation": {"id": str(CID), "participant_a": DOCTOR_ID, "participant_b": PATIENT_ID},
            "unread_count": 3,
            "peer_online": True,
            "typing": [DOCTOR_ID],
        },
    )
    assert engine.unread.count(CID) == 3
    assert engine.online[DOCTOR_ID] is True
    assert engine.typing.typing_in(CID) == [DOCTOR_ID]

    await engine.handle_event("presence.changed", {"participant_id": DOCTOR_ID, "online": False})
    assert engine.online[DOCTOR_ID] is False


@pytest.mark.asyncio
async def test_read_advanced_from_other_tab(engine):
    await engine.handle_event("message.appended", wire("x", at_second=1))
    msg_id = engine.state(CID).messages[0].id

    await engine.handle_event(
        "read.advanced",
        {
            "conversation_id": str(CID),
            "participant_id": PATIENT_ID,
            "last_read_message_id": str(msg_id),
            "last_read_at": (T0 + timedelta(seconds=1)).isoformat(),
        },
    )

    assert engine.unread.count(CID) == 0
    assert engine.state(CID).own_read_message_id == msg_id
