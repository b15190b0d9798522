"""Import all models so Alembic can discover them via Base.metadata."""
from clinic_chat.infrastructure.db.models.conversation import ConversationModel
from clinic_chat.infrastructure.db.models.message import MessageModel
from clinic_chat.infrastructure.db.models.outbox import OutboxMessageModel
from clinic_chat.infrastructure.db.models.read_state import ReadMarkerModel

__all__ = [
    "ConversationModel",
    "MessageModel",
    "OutboxMessageModel",
    "ReadMarkerModel",
]
