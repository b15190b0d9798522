from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_chat.domain.entities.message import Message
from clinic_chat.domain.value_objects.cursor import decode_cursor
from clinic_chat.infrastructure.db.errors import store_errors
from clinic_chat.infrastructure.db.mappers import message as mapper
from clinic_chat.infrastructure.db.models.message import MessageModel


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_since(
        self,
        conversation_id: UUID,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[Message]:
        stmt = select(MessageModel).where(MessageModel.conversation_id == conversation_id)
        if cursor:
            ts, mid = decode_cursor(cursor)
            stmt = (
                stmt.where(
                    (MessageModel.created_at > ts)
                    | ((MessageModel.created_at == ts) & (MessageModel.id > mid))
                )
                .order_by(MessageModel.created_at.asc(), MessageModel.id.asc())
                .limit(limit)
            )
            result = await self._session.execute(stmt)
            return [mapper.model_to_entity(m) for m in result.scalars().all()]

        # No cursor: newest page, returned oldest first
        stmt = stmt.order_by(MessageModel.created_at.desc(), MessageModel.id.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in reversed(result.scalars().all())]

    async def get_by_id(self, message_id: UUID) -> Message | None:
        model = await self._session.get(MessageModel, message_id)
        return mapper.model_to_entity(model) if model else None

    async def get_latest(self, conversation_id: UUID) -> Message | None:
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def count_unread(
        self,
        participant_id: int,
        markers: dict[UUID, datetime | None],
    ) -> dict[UUID, int]:
        if not markers:
            return {}
        counts: dict[UUID, int] = {}
        never_read = [cid for cid, ts in markers.items() if ts is None]
        if never_read:
            stmt = (
                select(MessageModel.conversation_id, func.count())
                .where(
                    MessageModel.conversation_id.in_(never_read),
                    MessageModel.sender_id != participant_id,
                )
                .group_by(MessageModel.conversation_id)
            )
            counts.update((cid, n) for cid, n in (await self._session.execute(stmt)).all())
        for cid, ts in markers.items():
            if ts is None:
                continue
            stmt = select(func.count()).where(
                MessageModel.conversation_id == cid,
                MessageModel.sender_id != participant_id,
                MessageModel.created_at > ts,
            )
            counts[cid] = (await self._session.execute(stmt)).scalar_one()
        return counts


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, message: Message) -> tuple[Message, bool]:
        """Insert message idempotently. Returns (message, created_flag)."""
        stmt = (
            pg_insert(MessageModel)
            .values(**mapper.entity_to_values(message))
            .on_conflict_do_nothing(constraint="uq_message_idempotency")
            .returning(MessageModel)
        )
        async with store_errors("append message"):
            result = await self._session.execute(stmt)
            row = result.scalar_one_or_none()

        if row is not None:
            return mapper.model_to_entity(row), True

        # duplicate client_temp_id: return the stored row
        existing = await self.get_by_client_temp_id(
            message.conversation_id,
            message.sender_id,
            message.client_temp_id,
        )
        assert existing is not None
        return existing, False

    async def get_by_client_temp_id(
        self,
        conversation_id: UUID,
        sender_id: int,
        client_temp_id: UUID,
    ) -> Message | None:
        stmt = select(MessageModel).where(
            MessageModel.conversation_id == conversation_id,
            MessageModel.sender_id == sender_id,
            MessageModel.client_temp_id == client_temp_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None
