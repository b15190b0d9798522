from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from clinic_chat.application.dto.conversation import ConversationFilterDTO
from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.value_objects.pair import ParticipantPair


class ConversationReader(Protocol):
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None: ...

    async def get_direct(self, pair: ParticipantPair) -> Conversation | None: ...

    async def get_by_appointment(self, appointment_id: int) -> Conversation | None: ...

    async def list_ids_for_participant(self, participant_id: int) -> list[UUID]:
        """Ids of every active conversation the participant belongs to."""
        ...

    async def list_for_participant(
        self, participant_id: int, filters: ConversationFilterDTO
    ) -> list[Conversation]:
        """Most recent activity first (last message, else creation time)."""
        ...


class ConversationWriter(Protocol):
    async def create_if_absent(self, conversation: Conversation) -> tuple[Conversation, bool]:
        """Insert unless the pair / appointment already has a conversation.

        Returns (conversation, created). On a uniqueness conflict the existing
        row is returned with created=False.
        """
        ...

    async def lock(self, conversation_id: UUID) -> Conversation | None:
        """Load and lock the row until the unit of work ends (serializes appends)."""
        ...

    async def close(self, conversation_id: UUID) -> None: ...

    async def touch_last_message_at(
        self, conversation_id: UUID, ts: datetime
    ) -> None: ...
