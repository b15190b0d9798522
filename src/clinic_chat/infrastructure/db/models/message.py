from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_chat.infrastructure.db.base import Base


class MessageModel(Base):
    """Append-only. Rows are never updated once written."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sender_role: Mapped[str] = mapped_column(String(20), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    # {name, url, size, mime_type}; the blob itself lives in object storage
    attachment: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    client_temp_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    # Assigned by the service under the conversation row lock, never by the client
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    conversation = relationship("ConversationModel", back_populates="messages")

    __table_args__ = (
        CheckConstraint(
            "kind IN ('text', 'file_attachment', 'system')",
            name="ck_message_kind",
        ),
        CheckConstraint(
            "(kind = 'file_attachment') = (attachment IS NOT NULL)",
            name="ck_message_attachment_binding",
        ),
        CheckConstraint(
            "kind = 'file_attachment' OR body IS NOT NULL",
            name="ck_message_body_present",
        ),
        UniqueConstraint(
            "conversation_id",
            "sender_id",
            "client_temp_id",
            name="uq_message_idempotency",
        ),
        Index("ix_messages_conversation_timeline", "conversation_id", "created_at", "id"),
    )
