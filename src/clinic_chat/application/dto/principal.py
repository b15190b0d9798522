from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from clinic_chat.domain.value_objects.enums import Role


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity extracted from JWT."""

    participant_id: int
    role: Role
    expires_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def principal_key(self) -> str:
        """Unique key for WS connection registry."""
        return f"participant:{self.participant_id}"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at
