from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from clinic_chat.domain.entities.read_state import ReadMarker


class ReadStateReader(Protocol):
    async def get(self, conversation_id: UUID, participant_id: int) -> ReadMarker | None: ...

    async def positions_for(
        self, participant_id: int, conversation_ids: list[UUID]
    ) -> dict[UUID, datetime | None]:
        """last_read_at per conversation; None where no marker exists yet."""
        ...


class ReadStateWriter(Protocol):
    async def advance(
        self,
        conversation_id: UUID,
        participant_id: int,
        last_message_id: UUID,
        last_read_at: datetime,
    ) -> ReadMarker | None:
        """Move the marker forward. Return None if it already sits at or past ``last_read_at``."""
        ...
