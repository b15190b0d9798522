from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Attachment:
    """Descriptor returned by the blob uploader. Storage lives elsewhere."""

    name: str
    url: str
    size: int
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "size": self.size,
            "mime_type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            name=str(data["name"]),
            url=str(data["url"]),
            size=int(data["size"]),
            mime_type=str(data["mime_type"]),
        )


@dataclass(frozen=True, slots=True)
class Message:
    id: UUID
    conversation_id: UUID
    sender_id: int
    sender_role: str
    kind: str
    body: str | None
    attachment: Attachment | None
    client_temp_id: UUID
    created_at: datetime
