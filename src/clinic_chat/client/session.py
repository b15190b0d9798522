from __future__ import annotations

from types import TracebackType
from typing import Self

from clinic_chat.application.ports.clock import Clock
from clinic_chat.client.engine import BlobUploader, SyncEngine
from clinic_chat.client.models import Identity
from clinic_chat.client.settings import ClientSettings
from clinic_chat.client.transports import HttpChatApi, WebSocketChannel


class ChatClient:
    """Wires the sync engine to its HTTP and socket transports.

    The HTTP API is usable right away; the socket connects in the background
    and the engine falls back to HTTP until it does.
    """

    def __init__(
        self,
        identity: Identity,
        settings: ClientSettings | None = None,
        *,
        uploader: BlobUploader | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.api = HttpChatApi(
            self.settings.BASE_URL, self.settings.TOKEN, timeout=self.settings.HTTP_TIMEOUT,
        )
        self.channel = WebSocketChannel(
            self.settings.ws_url,
            self.settings.TOKEN,
            self._dispatch,
            on_connect=self._on_connect,
            handshake_timeout=self.settings.HANDSHAKE_TIMEOUT,
            base_delay=self.settings.RECONNECT_BASE_DELAY,
            max_delay=self.settings.RECONNECT_MAX_DELAY,
        )
        self.engine = SyncEngine(
            identity,
            self.channel,
            self.api,
            clock=clock,
            uploader=uploader,
            page_limit=self.settings.HISTORY_PAGE_LIMIT,
            typing_expiry_seconds=self.settings.TYPING_EXPIRY_SECONDS,
        )

    async def _dispatch(self, event_type: str, data: dict) -> None:
        await self.engine.handle_event(event_type, data)

    async def _on_connect(self) -> None:
        await self.engine.on_reconnect()

    async def start(self) -> None:
        await self.channel.start()

    async def aclose(self) -> None:
        await self.channel.stop()
        await self.api.aclose()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
