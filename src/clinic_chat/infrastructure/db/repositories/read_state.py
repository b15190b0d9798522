from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_chat.domain.entities.read_state import ReadMarker
from clinic_chat.infrastructure.db.mappers import read_state as mapper
from clinic_chat.infrastructure.db.models.read_state import ReadMarkerModel


class ReadStateReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, conversation_id: UUID, participant_id: int) -> ReadMarker | None:
        stmt = select(ReadMarkerModel).where(
            ReadMarkerModel.conversation_id == conversation_id,
            ReadMarkerModel.participant_id == participant_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def positions_for(
        self,
        participant_id: int,
        conversation_ids: list[UUID],
    ) -> dict[UUID, datetime | None]:
        positions: dict[UUID, datetime | None] = dict.fromkeys(conversation_ids)
        if not conversation_ids:
            return positions
        stmt = select(ReadMarkerModel.conversation_id, ReadMarkerModel.last_read_at).where(
            ReadMarkerModel.participant_id == participant_id,
            ReadMarkerModel.conversation_id.in_(conversation_ids),
        )
        for cid, ts in (await self._session.execute(stmt)).all():
            positions[cid] = ts
        return positions


class ReadStateWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def advance(
        self,
        conversation_id: UUID,
        participant_id: int,
        last_message_id: UUID,
        last_read_at: datetime,
    ) -> ReadMarker | None:
        stmt = pg_insert(ReadMarkerModel).values(
            conversation_id=conversation_id,
            participant_id=participant_id,
            last_read_message_id=last_message_id,
            last_read_at=last_read_at,
        )
        # Forward-only: the update branch fires only when the new position is later
        stmt = stmt.on_conflict_do_update(
            index_elements=[ReadMarkerModel.conversation_id, ReadMarkerModel.participant_id],
            set_={
                "last_read_message_id": stmt.excluded.last_read_message_id,
                "last_read_at": stmt.excluded.last_read_at,
            },
            where=(
                ReadMarkerModel.last_read_at.is_(None)
                | (ReadMarkerModel.last_read_at < stmt.excluded.last_read_at)
            ),
        ).returning(ReadMarkerModel)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None
