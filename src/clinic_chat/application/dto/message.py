from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from clinic_chat.application.exceptions import ValidationError
from clinic_chat.domain.entities.message import Attachment
from clinic_chat.domain.value_objects.enums import MessageKind


@dataclass(frozen=True, slots=True)
class MessageContentDTO:
    client_temp_id: UUID
    kind: MessageKind = MessageKind.TEXT
    body: str | None = None
    attachment: Attachment | None = None

    def validate(self, max_length: int) -> None:
        if self.kind == MessageKind.FILE_ATTACHMENT:
            if self.attachment is None:
                raise ValidationError("Attachment descriptor is required")
            if self.attachment.size < 0:
                raise ValidationError("Attachment size must not be negative")
            return
        if self.attachment is not None:
            raise ValidationError(f"{self.kind} messages cannot carry an attachment")
        if not self.body or not self.body.strip():
            raise ValidationError("Message body must not be empty")
        if len(self.body) > max_length:
            raise ValidationError(f"Message too long (max {max_length} characters)")
