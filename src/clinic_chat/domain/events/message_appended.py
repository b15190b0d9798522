from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class MessageAppended:
    conversation_id: UUID
    message: dict[str, Any]  # wire shape, identical to the HTTP response
