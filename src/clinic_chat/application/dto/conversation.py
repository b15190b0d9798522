from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.value_objects.enums import ConversationStatus


@dataclass(frozen=True, slots=True)
class ConversationFilterDTO:
    status: ConversationStatus | None = None
    cursor: str | None = None
    limit: int = 20


@dataclass(frozen=True, slots=True)
class ConversationSummaryDTO:
    """A conversation as seen by one participant."""

    conversation: Conversation
    unread_count: int


@dataclass(frozen=True, slots=True)
class UnreadSummaryDTO:
    per_conversation: dict[UUID, int]

    @property
    def total(self) -> int:
        return sum(self.per_conversation.values())
