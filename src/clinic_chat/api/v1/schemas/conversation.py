from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from clinic_chat.application.dto.conversation import ConversationSummaryDTO, UnreadSummaryDTO
from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.value_objects.enums import ConversationKind, ConversationStatus


class OpenDirectRequest(BaseModel):
    peer_id: int


class ConversationResponse(BaseModel):
    id: UUID
    kind: ConversationKind
    participant_a: int
    participant_b: int
    appointment_id: int | None
    status: ConversationStatus
    last_message_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_entity(cls, conversation: Conversation) -> ConversationResponse:
        return cls.model_validate(conversation, from_attributes=True)


class ConversationSummaryResponse(ConversationResponse):
    unread_count: int = 0

    @classmethod
    def from_summary(cls, summary: ConversationSummaryDTO) -> ConversationSummaryResponse:
        base = ConversationResponse.from_entity(summary.conversation)
        return cls(**base.model_dump(), unread_count=summary.unread_count)


class UnreadSummaryResponse(BaseModel):
    total: int
    per_conversation: dict[UUID, int]

    @classmethod
    def from_dto(cls, dto: UnreadSummaryDTO) -> UnreadSummaryResponse:
        return cls(total=dto.total, per_conversation=dto.per_conversation)
