from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from clinic_chat.application.ports.clock import Clock


class TypingIndicators:
    """Who is typing where, as last signalled. Entries hide themselves after the expiry window."""

    def __init__(self, clock: Clock, expiry_seconds: float = 1.0) -> None:
        self._clock = clock
        self._window = timedelta(seconds=expiry_seconds)
        self._signals: dict[UUID, dict[int, datetime]] = {}

    def apply(self, conversation_id: UUID, participant_id: int, is_typing: bool) -> None:
        typists = self._signals.setdefault(conversation_id, {})
        if is_typing:
            typists[participant_id] = self._clock.now()
        else:
            typists.pop(participant_id, None)

    def typing_in(self, conversation_id: UUID) -> list[int]:
        now = self._clock.now()
        typists = self._signals.get(conversation_id, {})
        for pid in [p for p, at in typists.items() if now - at > self._window]:
            del typists[pid]
        return sorted(typists)

    def clear(self, conversation_id: UUID) -> None:
        self._signals.pop(conversation_id, None)
