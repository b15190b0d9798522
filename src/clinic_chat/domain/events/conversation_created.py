from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ConversationCreated:
    conversation_id: UUID
    kind: str
    participant_a: int
    participant_b: int
    appointment_id: int | None = None
