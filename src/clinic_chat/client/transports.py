"""Network adapters for the sync engine: httpx for HTTP, aiohttp for the socket."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable
from uuid import UUID

import aiohttp
import httpx

from clinic_chat.client.engine import ApiError

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4001


class HttpChatApi:
    """HTTP fallback surface (``/api/v1/chat``)."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api/v1/chat",
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def open_direct(self, peer_id: int) -> dict[str, Any]:
        return await self._request("POST", "/conversations/direct", json={"peer_id": peer_id})

    async def open_appointment(self, appointment_id: int) -> dict[str, Any]:
        return await self._request("POST", f"/conversations/appointments/{appointment_id}")

    async def list_conversations(
        self, *, status: str | None = None, cursor: str | None = None, limit: int = 20
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": limit}
        if status:
            params["status"] = status
        if cursor:
            params["cursor"] = cursor
        return await self._request("GET", "/conversations", params=params)

    async def get_conversation(self, conversation_id: UUID) -> dict[str, Any]:
        return await self._request("GET", f"/conversations/{conversation_id}")

    async def close_conversation(self, conversation_id: UUID) -> dict[str, Any]:
        return await self._request("POST", f"/conversations/{conversation_id}/close")

    async def list_messages(
        self, conversation_id: UUID, *, cursor: str | None, limit: int
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        return await self._request("GET", f"/conversations/{conversation_id}/messages", params=params)

    async def send_message(self, conversation_id: UUID, payload: dict[str, Any]) -> dict[str, Any]:
        body = {k: v for k, v in payload.items() if k != "conversation_id"}
        return await self._request("POST", f"/conversations/{conversation_id}/messages", json=body)

    async def mark_read(self, conversation_id: UUID, last_message_id: UUID | None) -> None:
        body = {"last_message_id": str(last_message_id)} if last_message_id else {}
        await self._request("POST", f"/conversations/{conversation_id}/read", json=body)

    async def unread_summary(self) -> dict[UUID, int]:
        data = await self._request("GET", "/conversations/unread")
        return {UUID(cid): int(n) for cid, n in data["per_conversation"].items()}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise ApiError("transient", str(exc), retryable=True) from exc
        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        temp_id = body.get("client_temp_id")
        raise ApiError(
            body.get("code", "http_error"),
            str(body.get("detail", response.reason_phrase)),
            status=response.status_code,
            retryable=response.status_code >= 500,
            client_temp_id=UUID(temp_id) if temp_id else None,
        )


EventHandler = Callable[[str, dict[str, Any]], Awaitable[None]]
ConnectHandler = Callable[[], Awaitable[None]]


class WebSocketChannel:
    """Realtime channel with bounded handshake and exponential-backoff reconnect.

    A 4001 close (bad or expired credential) stops the channel for good.
    """

    def __init__(
        self,
        url: str,
        token: str,
        on_event: EventHandler,
        *,
        on_connect: ConnectHandler | None = None,
        handshake_timeout: float = 5.0,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ) -> None:
        self._url = url
        self._token = token
        self._on_event = on_event
        self._on_connect = on_connect
        self._handshake_timeout = handshake_timeout
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task[None] | None = None
        self.auth_failed = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def send(self, event_type: str, data: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise ConnectionError("realtime channel is not connected")
        try:
            await ws.send_str(json.dumps({"type": event_type, "data": data}))
        except (aiohttp.ClientError, RuntimeError) as exc:
            raise ConnectionError(str(exc)) from exc

    async def start(self) -> None:
        self._session = aiohttp.ClientSession()
        self._task = asyncio.create_task(self._run(), name="chat-ws-channel")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._ws is not None:
            await self._ws.close()
        if self._session is not None:
            await self._session.close()

    async def _run(self) -> None:
        attempt = 0
        while not self.auth_failed:
            try:
                self._ws = await asyncio.wait_for(
                    self._session.ws_connect(self._url, params={"token": self._token}),
                    timeout=self._handshake_timeout,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                delay = min(self._base_delay * (2 ** attempt), self._max_delay)
                attempt += 1
                logger.info("Socket connect failed (%s), retrying in %.1fs", exc, delay)
                await asyncio.sleep(delay)
                continue

            attempt = 0
            logger.info("Socket connected to %s", self._url)
            if self._on_connect is not None:
                await self._on_connect()
            await self._receive(self._ws)
            self._ws = None

    async def _receive(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    envelope = json.loads(msg.data)
                    await self._on_event(envelope["type"], envelope.get("data", {}))
                except (ValueError, KeyError):
                    logger.warning("Dropping malformed event: %r", msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("Socket error: %s", ws.exception())
                break
        if ws.close_code == AUTH_FAILED_CLOSE_CODE:
            logger.error("Socket closed: authentication failed, not reconnecting")
            self.auth_failed = True
        else:
            logger.info("Socket closed (code=%s), reconnecting", ws.close_code)
