from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Index, String, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_chat.infrastructure.db.base import Base


class ConversationModel(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    # direct: stored ordered (a < b); appointment: a = patient, b = doctor
    participant_a: Mapped[int] = mapped_column(BigInteger, nullable=False)
    participant_b: Mapped[int] = mapped_column(BigInteger, nullable=False)
    appointment_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    last_message_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
        onupdate=text("now()"),
    )

    messages = relationship("MessageModel", back_populates="conversation", lazy="noload")

    __table_args__ = (
        CheckConstraint("participant_a <> participant_b", name="ck_conversation_distinct_parties"),
        CheckConstraint(
            "(kind = 'appointment') = (appointment_id IS NOT NULL)",
            name="ck_conversation_appointment_binding",
        ),
        Index(
            "uq_conversation_direct_pair",
            "participant_a",
            "participant_b",
            unique=True,
            postgresql_where=text("kind = 'direct'"),
        ),
        Index(
            "uq_conversation_appointment",
            "appointment_id",
            unique=True,
            postgresql_where=text("appointment_id IS NOT NULL"),
        ),
        Index("ix_conversations_participant_a", "participant_a", "status"),
        Index("ix_conversations_participant_b", "participant_b", "status"),
    )
