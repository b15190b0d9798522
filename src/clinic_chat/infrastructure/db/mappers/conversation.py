from __future__ import annotations

from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.infrastructure.db.models.conversation import ConversationModel


def model_to_entity(model: ConversationModel) -> Conversation:
    return Conversation(
        id=model.id,
        kind=model.kind,
        participant_a=model.participant_a,
        participant_b=model.participant_b,
        appointment_id=model.appointment_id,
        status=model.status,
        last_message_at=model.last_message_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def entity_to_values(entity: Conversation) -> dict:
    return {
        "id": entity.id,
        "kind": str(entity.kind),
        "participant_a": entity.participant_a,
        "participant_b": entity.participant_b,
        "appointment_id": entity.appointment_id,
        "status": str(entity.status),
        "last_message_at": entity.last_message_at,
        "created_at": entity.created_at,
        "updated_at": entity.updated_at,
    }
