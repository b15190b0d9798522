from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ParticipantPair:
    """Canonical (unordered) pair of participants of a direct conversation."""

    low: int
    high: int

    @classmethod
    def of(cls, one: int, other: int) -> ParticipantPair:
        low, high = sorted((one, other))
        return cls(low=low, high=high)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in (self.low, self.high)
