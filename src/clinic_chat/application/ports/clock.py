from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

_TICK = timedelta(microseconds=1)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Default wall-clock implementation."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def next_timestamp(clock: Clock, after: datetime | None) -> datetime:
    """Current time, bumped one tick past ``after`` if the clock has not moved beyond it."""
    now = clock.now()
    if after is not None and now <= after:
        return after + _TICK
    return now
