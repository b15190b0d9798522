from __future__ import annotations

from uuid import UUID


class UnreadLedger:
    """Running unread total across conversations.

    Kept incrementally from realtime events; ``recompute`` replaces it with a
    server-side summary after reconnects.
    """

    def __init__(self) -> None:
        self._counts: dict[UUID, int] = {}

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def count(self, conversation_id: UUID) -> int:
        return self._counts.get(conversation_id, 0)

    def increment(self, conversation_id: UUID, by: int = 1) -> None:
        self._counts[conversation_id] = self._counts.get(conversation_id, 0) + by

    def set(self, conversation_id: UUID, count: int) -> None:
        self._counts[conversation_id] = max(count, 0)

    def clear(self, conversation_id: UUID) -> int:
        """Drop exactly this conversation's contribution; returns what was removed."""
        return self._counts.pop(conversation_id, 0)

    def recompute(self, counts: dict[UUID, int]) -> None:
        self._counts = {cid: n for cid, n in counts.items() if n > 0}
