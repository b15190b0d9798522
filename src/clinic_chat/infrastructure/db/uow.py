from __future__ import annotations

from types import TracebackType
from typing import Self

from sqlalchemy.ext.asyncio import AsyncSession

from clinic_chat.infrastructure.db.errors import store_errors
from clinic_chat.infrastructure.db.repositories.conversation import (
    ConversationReaderRepo,
    ConversationWriterRepo,
)
from clinic_chat.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)
from clinic_chat.infrastructure.db.repositories.outbox import OutboxWriterRepo
from clinic_chat.infrastructure.db.repositories.read_state import (
    ReadStateReaderRepo,
    ReadStateWriterRepo,
)


class SqlAlchemyUoW:
    """Unit of work over one AsyncSession.

    Whatever was not committed when the block exits is rolled back, which
    also releases conversation row locks taken for appends.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.conversations = ConversationReaderRepo(session)
        self.conversations_w = ConversationWriterRepo(session)
        self.messages = MessageReaderRepo(session)
        self.messages_w = MessageWriterRepo(session)
        self.read_state = ReadStateReaderRepo(session)
        self.read_state_w = ReadStateWriterRepo(session)
        self.outbox = OutboxWriterRepo(session)

    async def flush(self) -> None:
        async with store_errors("flush"):
            await self._session.flush()

    async def commit(self) -> None:
        async with store_errors("commit"):
            await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None or self._session.in_transaction():
            await self.rollback()
