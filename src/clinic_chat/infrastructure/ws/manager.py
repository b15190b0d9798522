"""In-process WebSocket connection manager."""
from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from clinic_chat.domain.value_objects.enums import SessionState
from clinic_chat.infrastructure.ws.protocol import WsOutbound
from clinic_chat.infrastructure.ws.session import ConnectionSession

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks sessions per participant and conversation subscriptions."""

    def __init__(self) -> None:
        self._sessions: dict[str, ConnectionSession] = {}
        self._by_participant: dict[int, set[str]] = {}
        self._subscriptions: dict[UUID, set[str]] = {}
        self._members: dict[UUID, tuple[int, int]] = {}
        # entries vanish once no coroutine holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def register(self, session: ConnectionSession) -> bool:
        """Add an authenticated session. Returns True if it is the participant's first."""
        session.state = SessionState.AUTHENTICATED
        self._sessions[session.session_id] = session
        ids = self._by_participant.setdefault(session.participant_id, set())
        first = not ids
        ids.add(session.session_id)
        logger.debug(
            "WS connected: %s session=%s (sessions=%d)",
            session.principal.principal_key, session.session_id, len(self._sessions),
        )
        return first

    def unregister(self, session: ConnectionSession) -> bool:
        """Drop a session. Returns True if it was the participant's last."""
        if self._sessions.pop(session.session_id, None) is None:
            return False
        for cid in session.subscriptions:
            self._drop_subscriber(cid, session.session_id)
        session.state = SessionState.DISCONNECTED
        ids = self._by_participant.get(session.participant_id)
        if ids:
            ids.discard(session.session_id)
            if not ids:
                del self._by_participant[session.participant_id]
                logger.debug("WS disconnected: %s (last session)", session.principal.principal_key)
                return True
        return False

    def subscribe(
        self,
        session: ConnectionSession,
        conversation_id: UUID,
        participants: tuple[int, int],
    ) -> None:
        session.subscribe(conversation_id)
        self._subscriptions.setdefault(conversation_id, set()).add(session.session_id)
        self._members[conversation_id] = participants

    def unsubscribe(self, session: ConnectionSession, conversation_id: UUID) -> None:
        session.unsubscribe(conversation_id)
        self._drop_subscriber(conversation_id, session.session_id)

    def _drop_subscriber(self, conversation_id: UUID, session_id: str) -> None:
        subs = self._subscriptions.get(conversation_id)
        if subs is None:
            return
        subs.discard(session_id)
        if not subs:
            del self._subscriptions[conversation_id]
            self._members.pop(conversation_id, None)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def is_online(self, participant_id: int) -> bool:
        return participant_id in self._by_participant

    def sessions_of(self, participant_id: int) -> list[ConnectionSession]:
        return [self._sessions[sid] for sid in self._by_participant.get(participant_id, ())]

    def lock_for(self, conversation_id: UUID) -> asyncio.Lock:
        """Held across append + local broadcast so one conversation broadcasts in append order."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    async def broadcast_to_conversation(
        self,
        conversation_id: UUID,
        event_type: str,
        data: dict[str, Any],
        *,
        participant_ids: Iterable[int] = (),
        exclude_participant: int | None = None,
    ) -> None:
        """Send to every session subscribed to the conversation.

        Sessions of ``participant_ids`` that have not joined are included too
        (their conversation list and unread badges need the event).
        """
        targets = set(self._subscriptions.get(conversation_id, ()))
        for pid in participant_ids:
            targets.update(self._by_participant.get(pid, ()))
        if exclude_participant is not None:
            targets.difference_update(self._by_participant.get(exclude_participant, ()))
        await self._send_many(targets, event_type, data)

    async def send_to_participants(
        self,
        participant_ids: Iterable[int],
        event_type: str,
        data: dict[str, Any],
        *,
        exclude_session: str | None = None,
    ) -> None:
        targets: set[str] = set()
        for pid in participant_ids:
            targets.update(self._by_participant.get(pid, ()))
        targets.discard(exclude_session)
        await self._send_many(targets, event_type, data)

    async def broadcast_presence(self, participant_id: int, online: bool) -> None:
        """Tell sessions that joined a conversation with ``participant_id`` about its presence."""
        targets: set[str] = set()
        for cid, members in self._members.items():
            if participant_id in members:
                targets.update(self._subscriptions.get(cid, ()))
        targets.difference_update(self._by_participant.get(participant_id, ()))
        await self._send_many(
            targets,
            "presence.changed",
            {"participant_id": participant_id, "online": online},
        )

    async def send(self, session: ConnectionSession, event_type: str, data: dict[str, Any]) -> None:
        await session.websocket.send_text(WsOutbound(type=event_type, data=data).model_dump_json())

    async def _send_many(self, session_ids: Iterable[str], event_type: str, data: dict[str, Any]) -> None:
        """Deliver to each live session; a failing socket is marked disconnected.

        Marked sessions stay registered until their handler tears them down.
        """
        raw = WsOutbound(type=event_type, data=data).model_dump_json()
        for sid in list(session_ids):
            session = self._sessions.get(sid)
            if session is None or session.state == SessionState.DISCONNECTED:
                continue
            try:
                await session.websocket.send_text(raw)
            except Exception:
                logger.debug("Marking dead session %s", sid, exc_info=True)
                session.state = SessionState.DISCONNECTED
