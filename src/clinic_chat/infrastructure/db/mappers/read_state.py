from __future__ import annotations

from clinic_chat.domain.entities.read_state import ReadMarker
from clinic_chat.infrastructure.db.models.read_state import ReadMarkerModel


def model_to_entity(model: ReadMarkerModel) -> ReadMarker:
    return ReadMarker(
        conversation_id=model.conversation_id,
        participant_id=model.participant_id,
        last_read_message_id=model.last_read_message_id,
        last_read_at=model.last_read_at,
        updated_at=model.updated_at,
    )
