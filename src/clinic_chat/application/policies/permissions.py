from __future__ import annotations

from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import (
    ConversationClosedError,
    NotAParticipantError,
    NotFoundError,
)
from clinic_chat.domain.entities.conversation import Conversation


def assert_conversation_access(
    principal: Principal,
    conversation: Conversation | None,
) -> Conversation:
    """Raise if conversation doesn't exist or principal is not one of its two participants."""
    if conversation is None:
        raise NotFoundError("Conversation not found")

    if not conversation.has_participant(principal.participant_id):
        raise NotAParticipantError("Not a participant of this conversation")

    return conversation


def assert_open(conversation: Conversation) -> None:
    if conversation.is_closed:
        raise ConversationClosedError("Conversation is closed")
