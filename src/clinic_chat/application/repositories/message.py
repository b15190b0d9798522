from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from clinic_chat.domain.entities.message import Message


class MessageReader(Protocol):
    async def list_since(
        self,
        conversation_id: UUID,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Ascending (created_at, id). Without a cursor: the latest ``limit`` messages."""
        ...

    async def get_by_id(self, message_id: UUID) -> Message | None: ...

    async def get_latest(self, conversation_id: UUID) -> Message | None: ...

    async def count_unread(
        self,
        participant_id: int,
        markers: dict[UUID, datetime | None],
    ) -> dict[UUID, int]:
        """Messages after each marker not sent by ``participant_id``, per conversation."""
        ...


class MessageWriter(Protocol):
    async def append(self, message: Message) -> tuple[Message, bool]:
        """Insert message. Return (message, created). If conflict on client_temp_id → return existing."""
        ...

    async def get_by_client_temp_id(
        self,
        conversation_id: UUID,
        sender_id: int,
        client_temp_id: UUID,
    ) -> Message | None: ...
