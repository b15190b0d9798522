from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from clinic_chat.api.deps import (
    ClockDep,
    ManagerDep,
    TypingDep,
    UoWFactory,
    UoWFactoryDep,
    get_verifier,
)
from clinic_chat.api.v1.delivery import deliver_message, deliver_read
from clinic_chat.api.v1.schemas.conversation import ConversationResponse
from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import (
    AppError,
    ConversationClosedError,
    NotFoundError,
    StoreUnavailableError,
    TransientDeliveryError,
    UnauthenticatedError,
    ValidationError,
)
from clinic_chat.application.ports.auth import TokenVerifier
from clinic_chat.application.ports.clock import Clock
from clinic_chat.config import settings
from clinic_chat.infrastructure.presence.typing_tracker import TypingTracker
from clinic_chat.infrastructure.ws.manager import ConnectionManager
from clinic_chat.infrastructure.ws.protocol import (
    ConversationRef,
    MarkReadData,
    SendData,
    WsInbound,
    WsOutbound,
)
from clinic_chat.infrastructure.ws.session import ConnectionSession
from clinic_chat.services import conversation_service, message_service, read_state_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

AUTH_FAILED_CLOSE_CODE = 4001


class _SessionExpired(Exception):
    pass


async def _authenticate(
    verifier: TokenVerifier,
    token: str | None,
    clock: Clock,
) -> Principal | None:
    if not token:
        return None
    try:
        principal = await verifier.verify(token)
    except UnauthenticatedError:
        logger.debug("WS auth failed", exc_info=True)
        return None
    if principal.is_expired(clock.now()):
        return None
    return principal


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    manager: ManagerDep,
    typing: TypingDep,
    uow_factory: UoWFactoryDep,
    clock: ClockDep,
    verifier: Annotated[TokenVerifier, Depends(get_verifier)],
    token: str | None = Query(None),
) -> None:
    await websocket.accept()
    principal = await _authenticate(verifier, token, clock)
    if principal is None:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Authentication failed")
        return

    session = ConnectionSession(
        principal=principal,
        websocket=websocket,
        connected_at=clock.now(),
    )
    handler = ChatSocket(session, manager, typing, uow_factory, clock)
    if manager.register(session):
        await manager.broadcast_presence(principal.participant_id, online=True)

    heartbeat_task = asyncio.create_task(
        _heartbeat(websocket), name=f"ws-heartbeat-{session.session_id}",
    )
    try:
        await handler.read_loop()
    except WebSocketDisconnect:
        pass
    except _SessionExpired:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Credential expired")
    except Exception:
        logger.exception("WS error for %s", principal.principal_key)
    finally:
        heartbeat_task.cancel()
        await handler.teardown()


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await ws.send_text(WsOutbound(type="pong", data={}).model_dump_json())
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Heartbeat stopped", exc_info=True)


async def sweep_typing(manager: ConnectionManager, typing: TypingTracker) -> int:
    """Broadcast ``typing.changed`` off for every expired entry. Returns how many expired."""
    expired = typing.sweep()
    for state in expired:
        await manager.broadcast_to_conversation(
            state.conversation_id,
            "typing.changed",
            _typing_payload(state.conversation_id, state.participant_id, False),
            exclude_participant=state.participant_id,
        )
    return len(expired)


def _typing_payload(conversation_id: Any, participant_id: int, is_typing: bool) -> dict[str, Any]:
    return {
        "conversation_id": str(conversation_id),
        "participant_id": participant_id,
        "is_typing": is_typing,
    }


class ChatSocket:
    """Event router for one connection session."""

    def __init__(
        self,
        session: ConnectionSession,
        manager: ConnectionManager,
        typing: TypingTracker,
        uow_factory: UoWFactory,
        clock: Clock,
    ) -> None:
        self._session = session
        self._manager = manager
        self._typing = typing
        self._uow_factory = uow_factory
        self._clock = clock
        self._handlers = {
            "join": self._on_join,
            "leave": self._on_leave,
            "send": self._on_send,
            "typing.start": self._on_typing_start,
            "typing.stop": self._on_typing_stop,
            "mark_read": self._on_mark_read,
            "ping": self._on_ping,
        }

    @property
    def _principal(self) -> Principal:
        return self._session.principal

    async def read_loop(self) -> None:
        ws = self._session.websocket
        while True:
            raw = await ws.receive_text()
            if self._principal.is_expired(self._clock.now()):
                raise _SessionExpired()
            try:
                msg = WsInbound.model_validate_json(raw)
            except PydanticValidationError:
                await self._error("invalid_payload", "Malformed envelope")
                continue

            handler = self._handlers.get(msg.type)
            if handler is None:
                await self._error("unknown_type", f"Unknown event type {msg.type!r}")
                continue
            await handler(msg.data)

    async def teardown(self) -> None:
        session = self._session
        pid = session.participant_id
        joined = set(session.subscriptions)
        last = self._manager.unregister(session)
        if last:
            for state in self._typing.clear_participant(pid, joined):
                await self._broadcast_typing(state.conversation_id, False)
            await self._manager.broadcast_presence(pid, online=False)

    async def _send(self, event_type: str, data: dict[str, Any]) -> None:
        await self._manager.send(self._session, event_type, data)

    async def _error(self, code: str, detail: str, **extra: Any) -> None:
        await self._send("error", {"code": code, "detail": detail, **extra})

    async def _on_ping(self, _data: dict[str, Any]) -> None:
        await self._send("pong", {})

    async def _on_join(self, data: dict[str, Any]) -> None:
        try:
            ref = ConversationRef.model_validate(data)
        except PydanticValidationError:
            await self._error("invalid_data", "conversation_id is required")
            return

        try:
            async with self._uow_factory() as uow:
                conv = await conversation_service.get_conversation(
                    ref.conversation_id, self._principal, uow,
                )
                unread = await read_state_service.unread_count(conv.id, self._principal, uow)
        except AppError as exc:
            await self._error(exc.code, exc.detail, conversation_id=str(ref.conversation_id))
            return

        self._manager.subscribe(self._session, conv.id, conv.participants)
        peer_id = conv.other_participant(self._principal.participant_id)
        await self._send(
            "joined",
            {
                "conversation": ConversationResponse.from_entity(conv).model_dump(mode="json"),
                "unread_count": unread,
                "peer_online": self._manager.is_online(peer_id),
                "typing": [
                    pid for pid in self._typing.active(conv.id)
                    if pid != self._principal.participant_id
                ],
            },
        )

    async def _on_leave(self, data: dict[str, Any]) -> None:
        try:
            ref = ConversationRef.model_validate(data)
        except PydanticValidationError:
            await self._error("invalid_data", "conversation_id is required")
            return
        self._manager.unsubscribe(self._session, ref.conversation_id)

    async def _on_send(self, data: dict[str, Any]) -> None:
        try:
            payload = SendData.model_validate(data)
        except PydanticValidationError as exc:
            temp_id = data.get("client_temp_id")
            if isinstance(temp_id, str) and temp_id:
                await self._send_failed(temp_id, "invalid_data", str(exc), retryable=False)
            else:
                await self._error("invalid_data", "client_temp_id is required")
            return

        temp_id = str(payload.client_temp_id)
        cid = payload.conversation_id
        if cid not in self._session.subscriptions:
            await self._send_failed(temp_id, "not_subscribed", "Join the conversation first", retryable=False)
            return

        try:
            msg, created = await deliver_message(
                self._manager,
                self._uow_factory,
                cid,
                self._principal,
                payload.to_content(),
                self._clock,
            )
        except (TransientDeliveryError, StoreUnavailableError) as exc:
            await self._send_failed(temp_id, "transient", exc.detail, retryable=True)
            return
        except ConversationClosedError as exc:
            await self._send_failed(temp_id, "conversation_closed", exc.detail, retryable=False)
            return
        except ValidationError as exc:
            await self._send_failed(temp_id, "invalid_data", exc.detail, retryable=False)
            return
        except NotFoundError as exc:
            await self._send_failed(temp_id, "not_a_participant", exc.detail, retryable=False)
            return
        except AppError as exc:
            await self._send_failed(temp_id, exc.code, exc.detail, retryable=False)
            return
        except Exception:
            logger.exception("Send %s failed for %s", temp_id, self._principal.principal_key)
            await self._send_failed(temp_id, "internal", "Internal error", retryable=False)
            return

        if not created:
            # Re-delivery of an already stored message: echo to the sender only
            await self._send("message.appended", message_service.message_payload(msg))

        pid = self._principal.participant_id
        if pid in self._typing.active(cid):
            self._typing.stop(cid, pid)
            await self._broadcast_typing(cid, False)

    async def _send_failed(self, client_temp_id: str, code: str, detail: str, *, retryable: bool) -> None:
        await self._send(
            "send.failed",
            {
                "client_temp_id": client_temp_id,
                "code": code,
                "detail": detail,
                "retryable": retryable,
            },
        )

    async def _on_typing_start(self, data: dict[str, Any]) -> None:
        await self._on_typing(data, is_typing=True)

    async def _on_typing_stop(self, data: dict[str, Any]) -> None:
        await self._on_typing(data, is_typing=False)

    async def _on_typing(self, data: dict[str, Any], *, is_typing: bool) -> None:
        try:
            ref = ConversationRef.model_validate(data)
        except PydanticValidationError:
            return
        if ref.conversation_id not in self._session.subscriptions:
            await self._error("not_subscribed", "Join the conversation first")
            return
        pid = self._principal.participant_id
        if is_typing:
            self._typing.start(ref.conversation_id, pid)
        else:
            self._typing.stop(ref.conversation_id, pid)
        await self._broadcast_typing(ref.conversation_id, is_typing)

    async def _broadcast_typing(self, conversation_id: Any, is_typing: bool) -> None:
        pid = self._principal.participant_id
        await self._manager.broadcast_to_conversation(
            conversation_id,
            "typing.changed",
            _typing_payload(conversation_id, pid, is_typing),
            exclude_participant=pid,
        )

    async def _on_mark_read(self, data: dict[str, Any]) -> None:
        try:
            payload = MarkReadData.model_validate(data)
        except PydanticValidationError:
            await self._error("invalid_data", "conversation_id is required")
            return
        if payload.conversation_id not in self._session.subscriptions:
            await self._error("not_subscribed", "Join the conversation first")
            return
        try:
            await deliver_read(
                self._manager,
                self._uow_factory,
                payload.conversation_id,
                self._principal,
                payload.last_message_id,
                origin_session=self._session.session_id,
            )
        except AppError as exc:
            await self._error(exc.code, exc.detail, conversation_id=str(payload.conversation_id))
