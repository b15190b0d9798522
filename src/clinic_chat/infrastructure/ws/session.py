from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from fastapi import WebSocket

from clinic_chat.application.dto.principal import Principal
from clinic_chat.domain.value_objects.enums import SessionState


@dataclass(eq=False, slots=True)
class ConnectionSession:
    """One open socket (one browser tab). Never persisted."""

    principal: Principal
    websocket: WebSocket
    connected_at: datetime
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    subscriptions: set[UUID] = field(default_factory=set)
    state: SessionState = SessionState.CONNECTING

    @property
    def participant_id(self) -> int:
        return self.principal.participant_id

    def subscribe(self, conversation_id: UUID) -> None:
        self.subscriptions.add(conversation_id)
        if self.state != SessionState.DISCONNECTED:
            self.state = SessionState.SUBSCRIBED

    def unsubscribe(self, conversation_id: UUID) -> None:
        self.subscriptions.discard(conversation_id)
        if not self.subscriptions and self.state == SessionState.SUBSCRIBED:
            self.state = SessionState.AUTHENTICATED
