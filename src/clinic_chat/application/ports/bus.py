from __future__ import annotations

from typing import Any, Protocol


class EventPublisher(Protocol):
    """Cross-process fan-out of realtime events (lossy, best effort)."""

    async def publish(self, channel: str, payload: dict[str, Any]) -> None: ...
