from __future__ import annotations

from clinic_chat.domain.entities.message import Attachment, Message
from clinic_chat.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        sender_id=model.sender_id,
        sender_role=model.sender_role,
        kind=model.kind,
        body=model.body,
        attachment=Attachment.from_dict(model.attachment) if model.attachment else None,
        client_temp_id=model.client_temp_id,
        created_at=model.created_at,
    )


def entity_to_values(entity: Message) -> dict:
    return {
        "id": entity.id,
        "conversation_id": entity.conversation_id,
        "sender_id": entity.sender_id,
        "sender_role": str(entity.sender_role),
        "kind": str(entity.kind),
        "body": entity.body,
        "attachment": entity.attachment.to_dict() if entity.attachment else None,
        "client_temp_id": entity.client_temp_id,
        "created_at": entity.created_at,
    }
