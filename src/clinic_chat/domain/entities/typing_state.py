from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID


@dataclass(frozen=True, slots=True)
class TypingState:
    conversation_id: UUID
    participant_id: int
    is_typing: bool
    last_signal_at: datetime

    def is_expired(self, now: datetime, window: timedelta) -> bool:
        return now - self.last_signal_at > window
