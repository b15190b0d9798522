from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_chat.application.dto.conversation import ConversationFilterDTO
from clinic_chat.domain.entities.conversation import Conversation
from clinic_chat.domain.value_objects.cursor import decode_cursor
from clinic_chat.domain.value_objects.enums import ConversationKind, ConversationStatus
from clinic_chat.domain.value_objects.pair import ParticipantPair
from clinic_chat.infrastructure.db.errors import store_errors
from clinic_chat.infrastructure.db.mappers import conversation as mapper
from clinic_chat.infrastructure.db.models.conversation import ConversationModel

_activity = func.coalesce(ConversationModel.last_message_at, ConversationModel.created_at)


def _member_of(participant_id: int):
    return or_(
        ConversationModel.participant_a == participant_id,
        ConversationModel.participant_b == participant_id,
    )


class ConversationReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        result = await self._session.get(ConversationModel, conversation_id)
        return mapper.model_to_entity(result) if result else None

    async def get_direct(self, pair: ParticipantPair) -> Conversation | None:
        stmt = select(ConversationModel).where(
            ConversationModel.kind == ConversationKind.DIRECT,
            ConversationModel.participant_a == pair.low,
            ConversationModel.participant_b == pair.high,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def get_by_appointment(self, appointment_id: int) -> Conversation | None:
        stmt = select(ConversationModel).where(
            ConversationModel.appointment_id == appointment_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def list_ids_for_participant(self, participant_id: int) -> list[UUID]:
        stmt = select(ConversationModel.id).where(
            _member_of(participant_id),
            ConversationModel.status == ConversationStatus.ACTIVE,
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_participant(
        self,
        participant_id: int,
        filters: ConversationFilterDTO,
    ) -> list[Conversation]:
        stmt = select(ConversationModel).where(_member_of(participant_id))
        if filters.status:
            stmt = stmt.where(ConversationModel.status == filters.status.value)
        if filters.cursor:
            ts, cid = decode_cursor(filters.cursor)
            stmt = stmt.where(
                (_activity < ts)
                | ((_activity == ts) & (ConversationModel.id > cid))
            )
        stmt = stmt.order_by(_activity.desc(), ConversationModel.id).limit(filters.limit)
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class ConversationWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._reader = ConversationReaderRepo(session)

    async def create_if_absent(self, conversation: Conversation) -> tuple[Conversation, bool]:
        stmt = (
            pg_insert(ConversationModel)
            .values(**mapper.entity_to_values(conversation))
            .on_conflict_do_nothing()
            .returning(ConversationModel)
        )
        async with store_errors("create conversation"):
            result = await self._session.execute(stmt)
            row = result.scalar_one_or_none()
        if row is not None:
            return mapper.model_to_entity(row), True

        # Concurrent creator won; its row is committed under the unique index
        if conversation.kind == ConversationKind.DIRECT:
            existing = await self._reader.get_direct(
                ParticipantPair.of(conversation.participant_a, conversation.participant_b)
            )
        else:
            existing = await self._reader.get_by_appointment(conversation.appointment_id)
        assert existing is not None
        return existing, False

    async def lock(self, conversation_id: UUID) -> Conversation | None:
        stmt = (
            select(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        async with store_errors("lock conversation"):
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def close(self, conversation_id: UUID) -> None:
        stmt = (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(status=ConversationStatus.CLOSED)
        )
        await self._session.execute(stmt)

    async def touch_last_message_at(
        self,
        conversation_id: UUID,
        ts: datetime,
    ) -> None:
        stmt = (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(last_message_at=ts)
        )
        await self._session.execute(stmt)
