from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_chat.application.repositories.outbox import OutboxRecord
from clinic_chat.infrastructure.bus.serializer import to_jsonable
from clinic_chat.infrastructure.db.models.outbox import OutboxMessageModel

_MAX_ERROR_LENGTH = 1000


class OutboxWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        self._session.add(OutboxMessageModel(event_type=event_type, payload=to_jsonable(payload)))
        await self._session.flush()

    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]:
        """Claim due records for this worker.

        Rows stay locked (SKIP LOCKED) until the worker's transaction ends,
        so parallel workers never publish the same record twice.
        """
        now = datetime.now(timezone.utc)
        stmt = (
            select(OutboxMessageModel)
            .where(
                OutboxMessageModel.status.in_(("pending", "failed")),
                OutboxMessageModel.next_retry_at.is_(None)
                | (OutboxMessageModel.next_retry_at <= now),
            )
            .order_by(OutboxMessageModel.id)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        if not rows:
            return []

        await self._set([r.id for r in rows], status="processing")
        await self._session.flush()
        return [
            OutboxRecord(id=r.id, event_type=r.event_type, payload=r.payload, attempts=r.attempts)
            for r in rows
        ]

    async def mark_sent(self, ids: list[int]) -> None:
        if ids:
            await self._set(ids, status="sent", last_error=None)

    async def mark_failed(
        self,
        record_id: int,
        next_retry_at: datetime,
        error: str | None = None,
    ) -> None:
        await self._set(
            [record_id],
            status="failed",
            attempts=OutboxMessageModel.attempts + 1,
            next_retry_at=next_retry_at,
            last_error=_truncate(error),
        )

    async def mark_dead(self, record_id: int, error: str | None = None) -> None:
        await self._set(
            [record_id],
            status="dead",
            attempts=OutboxMessageModel.attempts + 1,
            last_error=_truncate(error),
        )

    async def _set(self, ids: list[int], **values: Any) -> None:
        await self._session.execute(
            update(OutboxMessageModel).where(OutboxMessageModel.id.in_(ids)).values(**values)
        )


def _truncate(error: str | None) -> str | None:
    return error[:_MAX_ERROR_LENGTH] if error else None
