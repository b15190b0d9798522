"""Ephemeral typing state. Nothing here is persisted or acknowledged."""
from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from clinic_chat.application.ports.clock import Clock
from clinic_chat.domain.entities.typing_state import TypingState

logger = logging.getLogger(__name__)


class TypingTracker:
    def __init__(self, clock: Clock, expiry_seconds: float) -> None:
        self._clock = clock
        self._window = timedelta(seconds=expiry_seconds)
        self._states: dict[tuple[UUID, int], TypingState] = {}

    def start(self, conversation_id: UUID, participant_id: int) -> TypingState:
        """Begin or renew typing."""
        state = TypingState(
            conversation_id=conversation_id,
            participant_id=participant_id,
            is_typing=True,
            last_signal_at=self._clock.now(),
        )
        self._states[(conversation_id, participant_id)] = state
        return state

    def stop(self, conversation_id: UUID, participant_id: int) -> TypingState:
        self._states.pop((conversation_id, participant_id), None)
        return TypingState(
            conversation_id=conversation_id,
            participant_id=participant_id,
            is_typing=False,
            last_signal_at=self._clock.now(),
        )

    def active(self, conversation_id: UUID) -> list[int]:
        """Participants currently typing in the conversation (expired entries excluded)."""
        now = self._clock.now()
        return [
            pid
            for (cid, pid), state in self._states.items()
            if cid == conversation_id and not state.is_expired(now, self._window)
        ]

    def sweep(self) -> list[TypingState]:
        """Drop expired entries and return them as stopped states."""
        now = self._clock.now()
        expired = [
            key for key, state in self._states.items()
            if state.is_expired(now, self._window)
        ]
        return [self.stop(cid, pid) for cid, pid in expired]

    def clear_participant(
        self,
        participant_id: int,
        conversation_ids: set[UUID] | None = None,
    ) -> list[TypingState]:
        """Stop typing for the participant, optionally only in the given conversations."""
        keys = [
            (cid, pid) for cid, pid in self._states
            if pid == participant_id
            and (conversation_ids is None or cid in conversation_ids)
        ]
        return [self.stop(cid, pid) for cid, pid in keys]
