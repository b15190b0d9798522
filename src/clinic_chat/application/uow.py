from __future__ import annotations

from typing import Protocol

from clinic_chat.application.repositories.conversation import (
    ConversationReader,
    ConversationWriter,
)
from clinic_chat.application.repositories.message import MessageReader, MessageWriter
from clinic_chat.application.repositories.outbox import OutboxWriter
from clinic_chat.application.repositories.read_state import (
    ReadStateReader,
    ReadStateWriter,
)


class UnitOfWork(Protocol):
    conversations: ConversationReader
    conversations_w: ConversationWriter
    messages: MessageReader
    messages_w: MessageWriter
    read_state: ReadStateReader
    read_state_w: ReadStateWriter
    outbox: OutboxWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...
