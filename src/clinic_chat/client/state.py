"""Per-conversation message list with optimistic entries and reconciliation.

Pure data structure: no I/O, no clock. Every mutation leaves the list in
display order: confirmed entries by (created_at, id), then unconfirmed
entries by local creation time.
"""
from __future__ import annotations

import dataclasses
from datetime import datetime
from enum import StrEnum
from typing import Any, Iterable
from uuid import UUID

from clinic_chat.client.models import LocalMessage
from clinic_chat.domain.value_objects.cursor import encode_cursor
from clinic_chat.domain.value_objects.enums import DeliveryStatus


class ReconcileOutcome(StrEnum):
    DUPLICATE = "duplicate"
    REPLACED = "replaced"
    APPENDED = "appended"


class ConversationState:
    def __init__(self, conversation_id: UUID, metadata: dict[str, Any] | None = None) -> None:
        self.conversation_id = conversation_id
        self.metadata: dict[str, Any] = metadata or {}
        self.history_loaded = False
        self.own_read_message_id: UUID | None = None
        self.own_read_at: datetime | None = None
        self.peer_read_message_id: UUID | None = None
        self.peer_read_at: datetime | None = None
        self._messages: list[LocalMessage] = []
        # highest message known to have everything before it loaded
        self._synced: LocalMessage | None = None

    @property
    def messages(self) -> tuple[LocalMessage, ...]:
        return tuple(self._messages)

    def find(self, client_temp_id: UUID) -> LocalMessage | None:
        for msg in self._messages:
            if msg.client_temp_id == client_temp_id:
                return msg
        return None

    def pending(self) -> list[LocalMessage]:
        """Unconfirmed entries still awaiting an echo (failed ones excluded)."""
        return [
            m for m in self._messages
            if not m.is_confirmed and m.status == DeliveryStatus.PENDING
        ]

    def latest_confirmed(self) -> LocalMessage | None:
        confirmed = [m for m in self._messages if m.is_confirmed]
        return confirmed[-1] if confirmed else None

    def add_optimistic(self, msg: LocalMessage) -> None:
        if msg.is_confirmed:
            raise ValueError("optimistic entries must not carry a server id")
        self._messages.append(msg)
        self._resort()

    def apply_confirmed(self, incoming: LocalMessage) -> ReconcileOutcome:
        """Merge a server-confirmed message (realtime echo, HTTP response or history)."""
        if any(m.id == incoming.id for m in self._messages):
            return ReconcileOutcome.DUPLICATE

        index = None
        if incoming.client_temp_id is not None:
            index = self._index_of_unconfirmed(
                lambda m: m.client_temp_id == incoming.client_temp_id
                and m.sender_id == incoming.sender_id
            )
        else:
            # Legacy heuristic, only for echoes that lost their correlation id
            index = self._index_of_unconfirmed(incoming.same_content)

        if index is not None:
            self._messages[index] = self._messages[index].confirm(incoming)
            self._resort()
            return ReconcileOutcome.REPLACED

        self._messages.append(incoming)
        self._resort()
        return ReconcileOutcome.APPENDED

    def mark_failed(self, client_temp_id: UUID, error: str | None = None) -> bool:
        return self._set_status(client_temp_id, DeliveryStatus.FAILED, error)

    def mark_pending(self, client_temp_id: UUID) -> LocalMessage | None:
        """Flip a failed entry back to pending for a user-triggered retry."""
        if not self._set_status(client_temp_id, DeliveryStatus.PENDING, None):
            return None
        return self.find(client_temp_id)

    def merge_history(self, page: Iterable[LocalMessage]) -> list[LocalMessage]:
        """Merge a history page; returns the entries that were new to this state."""
        added = []
        for msg in page:
            if self.apply_confirmed(msg) == ReconcileOutcome.APPENDED:
                added.append(msg)
            self.advance_sync(msg)
        return added

    def advance_sync(self, msg: LocalMessage) -> bool:
        """Move the gap-fill position forward to ``msg``.

        Only history pages and realtime events received while joined count:
        a message confirmed by an HTTP send can sit after messages this
        state has never seen.
        """
        if not msg.is_confirmed:
            return False
        if self._synced is not None and msg.confirmed_key <= self._synced.confirmed_key:
            return False
        self._synced = msg
        return True

    def history_cursor(self) -> str | None:
        """Cursor just past the synced position; None when nothing is synced yet."""
        if self._synced is None:
            return None
        return encode_cursor(self._synced.created_at, self._synced.id)

    def advance_own_read(self, message_id: UUID, read_at: datetime) -> bool:
        if self.own_read_at is not None and read_at <= self.own_read_at:
            return False
        self.own_read_message_id, self.own_read_at = message_id, read_at
        return True

    def advance_peer_read(self, message_id: UUID, read_at: datetime) -> bool:
        if self.peer_read_at is not None and read_at <= self.peer_read_at:
            return False
        self.peer_read_message_id, self.peer_read_at = message_id, read_at
        return True

    def _index_of_unconfirmed(self, predicate) -> int | None:
        for i, msg in enumerate(self._messages):
            if not msg.is_confirmed and predicate(msg):
                return i
        return None

    def _set_status(self, client_temp_id: UUID, status: DeliveryStatus, error: str | None) -> bool:
        for i, msg in enumerate(self._messages):
            if msg.client_temp_id == client_temp_id and not msg.is_confirmed:
                self._messages[i] = dataclasses.replace(msg, status=status, error=error)
                return True
        return False

    def _resort(self) -> None:
        confirmed = sorted(
            (m for m in self._messages if m.is_confirmed),
            key=lambda m: m.confirmed_key,
        )
        unconfirmed = sorted(
            (m for m in self._messages if not m.is_confirmed),
            key=lambda m: m.local_created_at,
        )
        self._messages = confirmed + unconfirmed
