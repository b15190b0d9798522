from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from clinic_chat.domain.entities.message import Attachment
from clinic_chat.domain.value_objects.enums import DeliveryStatus

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class Identity:
    """The signed-in account the engine acts for."""

    participant_id: int
    role: str


@dataclass(frozen=True, slots=True)
class LocalMessage:
    """A message as held by the client: optimistic until it has a server id."""

    client_temp_id: UUID | None
    conversation_id: UUID
    sender_id: int
    sender_role: str
    kind: str
    body: str | None
    attachment: Attachment | None
    local_created_at: datetime
    id: UUID | None = None
    created_at: datetime | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    error: str | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.id is not None

    @property
    def confirmed_key(self) -> tuple[datetime, str]:
        return (self.created_at or _EPOCH, str(self.id))

    def same_content(self, other: LocalMessage) -> bool:
        return (
            self.sender_id == other.sender_id
            and self.kind == other.kind
            and self.body == other.body
            and self.attachment == other.attachment
        )

    def confirm(self, server: LocalMessage) -> LocalMessage:
        """This optimistic entry replaced in place by its server echo."""
        return dataclasses.replace(
            server,
            local_created_at=self.local_created_at,
            client_temp_id=server.client_temp_id or self.client_temp_id,
        )

    def to_send_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": str(self.conversation_id),
            "client_temp_id": str(self.client_temp_id),
            "kind": self.kind,
            "body": self.body,
            "attachment": self.attachment.to_dict() if self.attachment else None,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any], *, received_at: datetime) -> LocalMessage:
        """Build a confirmed entry from a ``message.appended`` / HTTP message payload."""
        temp_id = data.get("client_temp_id")
        attachment = data.get("attachment")
        return cls(
            client_temp_id=UUID(temp_id) if temp_id else None,
            conversation_id=UUID(data["conversation_id"]),
            sender_id=int(data["sender_id"]),
            sender_role=data.get("sender_role", ""),
            kind=data.get("kind", "text"),
            body=data.get("body"),
            attachment=Attachment.from_dict(attachment) if attachment else None,
            local_created_at=received_at,
            id=UUID(data["id"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            status=DeliveryStatus.SENT,
        )
