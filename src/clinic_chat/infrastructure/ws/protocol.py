"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from clinic_chat.application.dto.message import MessageContentDTO
from clinic_chat.domain.entities.message import Attachment
from clinic_chat.domain.value_objects.enums import MessageKind


class WsInbound(BaseModel):
    """Client → Server."""

    type: str  # join | leave | send | typing.start | typing.stop | mark_read | ping
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str  # joined | message.appended | typing.changed | read.advanced | send.failed | presence.changed | error | pong
    data: dict[str, Any] = {}


class ConversationRef(BaseModel):
    conversation_id: UUID


class AttachmentData(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1)
    size: int = Field(ge=0)
    mime_type: str = Field(min_length=1, max_length=100)


class SendData(BaseModel):
    conversation_id: UUID
    client_temp_id: UUID
    kind: MessageKind = MessageKind.TEXT
    body: str | None = None
    attachment: AttachmentData | None = None

    def to_content(self) -> MessageContentDTO:
        return MessageContentDTO(
            client_temp_id=self.client_temp_id,
            kind=self.kind,
            body=self.body,
            attachment=Attachment(**self.attachment.model_dump()) if self.attachment else None,
        )


class MarkReadData(BaseModel):
    conversation_id: UUID
    last_message_id: UUID | None = None
