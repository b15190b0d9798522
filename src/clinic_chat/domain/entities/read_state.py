from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ReadMarker:
    conversation_id: UUID
    participant_id: int
    last_read_message_id: UUID | None
    last_read_at: datetime | None
    updated_at: datetime

    def is_behind(self, position: datetime) -> bool:
        """True if a marker at ``position`` would move this one forward."""
        return self.last_read_at is None or position > self.last_read_at
