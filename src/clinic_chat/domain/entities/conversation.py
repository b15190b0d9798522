from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from clinic_chat.domain.value_objects.enums import ConversationKind, ConversationStatus


@dataclass(frozen=True, slots=True)
class Conversation:
    id: UUID
    kind: str
    participant_a: int
    participant_b: int
    appointment_id: int | None
    status: str
    last_message_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def participants(self) -> tuple[int, int]:
        return (self.participant_a, self.participant_b)

    @property
    def is_direct(self) -> bool:
        return self.kind == ConversationKind.DIRECT

    @property
    def is_closed(self) -> bool:
        return self.status == ConversationStatus.CLOSED

    @property
    def activity_at(self) -> datetime:
        """Ordering key for conversation lists: last message, else creation."""
        return self.last_message_at or self.created_at

    def has_participant(self, participant_id: int) -> bool:
        return participant_id in self.participants

    def other_participant(self, participant_id: int) -> int:
        if participant_id == self.participant_a:
            return self.participant_b
        if participant_id == self.participant_b:
            return self.participant_a
        raise ValueError(f"{participant_id} is not a participant of {self.id}")
