from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ReadAdvanced:
    conversation_id: UUID
    participant_id: int
    last_read_message_id: UUID
    last_read_at: datetime
    notify_participant_ids: tuple[int, ...]
