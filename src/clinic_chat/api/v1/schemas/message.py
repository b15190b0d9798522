from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from clinic_chat.application.dto.message import MessageContentDTO
from clinic_chat.domain.entities.message import Attachment
from clinic_chat.domain.value_objects.enums import MessageKind


class AttachmentSchema(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1)
    size: int = Field(ge=0)
    mime_type: str = Field(min_length=1, max_length=100)

    model_config = {"from_attributes": True}


class SendMessageRequest(BaseModel):
    client_temp_id: UUID
    kind: MessageKind = MessageKind.TEXT
    body: str | None = None
    attachment: AttachmentSchema | None = None

    def to_content(self) -> MessageContentDTO:
        return MessageContentDTO(
            client_temp_id=self.client_temp_id,
            kind=self.kind,
            body=self.body,
            attachment=Attachment(**self.attachment.model_dump()) if self.attachment else None,
        )


class MessageResponse(BaseModel):
    """Same shape as the ``message.appended`` realtime payload."""

    id: UUID
    conversation_id: UUID
    sender_id: int
    sender_role: str
    kind: str
    body: str | None
    attachment: AttachmentSchema | None
    client_temp_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkReadRequest(BaseModel):
    last_message_id: UUID | None = None


class ReadMarkerResponse(BaseModel):
    conversation_id: UUID
    participant_id: int
    last_read_message_id: UUID | None
    last_read_at: datetime | None

    model_config = {"from_attributes": True}


class MarkReadResponse(BaseModel):
    advanced: bool
    marker: ReadMarkerResponse | None = None
