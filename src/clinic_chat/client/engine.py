"""Client synchronization engine.

Turns the realtime channel and the HTTP fallback into one ordered,
duplicate-free message list per conversation. Runs on a single asyncio
loop; nothing here is thread safe.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from clinic_chat.application.ports.clock import Clock, SystemClock
from clinic_chat.client.models import Identity, LocalMessage
from clinic_chat.client.presence import TypingIndicators
from clinic_chat.client.state import ConversationState, ReconcileOutcome
from clinic_chat.client.unread import UnreadLedger
from clinic_chat.domain.entities.message import Attachment
from clinic_chat.domain.value_objects.cursor import encode_cursor
from clinic_chat.domain.value_objects.enums import MessageKind

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """An HTTP call that the server (or the network) refused."""

    def __init__(
        self,
        code: str,
        detail: str = "",
        *,
        status: int | None = None,
        retryable: bool = False,
        client_temp_id: UUID | None = None,
    ) -> None:
        super().__init__(f"{code}: {detail}" if detail else code)
        self.code = code
        self.detail = detail
        self.status = status
        self.retryable = retryable
        self.client_temp_id = client_temp_id


class RealtimeChannel(Protocol):
    @property
    def connected(self) -> bool: ...

    async def send(self, event_type: str, data: dict[str, Any]) -> None:
        """Raise ConnectionError if the socket is not usable."""
        ...


class ChatApi(Protocol):
    async def list_messages(
        self, conversation_id: UUID, *, cursor: str | None, limit: int
    ) -> list[dict[str, Any]]: ...

    async def send_message(self, conversation_id: UUID, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def mark_read(self, conversation_id: UUID, last_message_id: UUID | None) -> None: ...

    async def unread_summary(self) -> dict[UUID, int]: ...


class BlobUploader(Protocol):
    async def upload(self, name: str, data: bytes, mime_type: str) -> Attachment: ...


class SyncEngine:
    def __init__(
        self,
        identity: Identity,
        realtime: RealtimeChannel,
        api: ChatApi,
        *,
        clock: Clock | None = None,
        uploader: BlobUploader | None = None,
        page_limit: int = 50,
        typing_expiry_seconds: float = 1.0,
    ) -> None:
        self.identity = identity
        self._realtime = realtime
        self._api = api
        self._clock = clock or SystemClock()
        self._uploader = uploader
        self._page_limit = page_limit
        self.conversations: dict[UUID, ConversationState] = {}
        self.unread = UnreadLedger()
        self.typing = TypingIndicators(self._clock, typing_expiry_seconds)
        self.online: dict[int, bool] = {}
        self._open: set[UUID] = set()
        self._epochs: dict[UUID, int] = {}

    # -- conversations -------------------------------------------------

    def is_open(self, conversation_id: UUID) -> bool:
        return conversation_id in self._open

    def state(self, conversation_id: UUID) -> ConversationState:
        state = self.conversations.get(conversation_id)
        if state is None:
            state = self.conversations[conversation_id] = ConversationState(conversation_id)
        return state

    async def open(self, conversation_id: UUID) -> ConversationState:
        """Show a conversation: join it and load its history (or fill the gap since last time)."""
        epoch = self._bump_epoch(conversation_id)
        self._open.add(conversation_id)
        state = self.state(conversation_id)
        await self._join(conversation_id)
        await self._fill(conversation_id, epoch)
        return state

    async def close(self, conversation_id: UUID) -> None:
        """Navigate away. In-flight sends still reconcile into the state."""
        self._open.discard(conversation_id)
        self._bump_epoch(conversation_id)
        self.typing.clear(conversation_id)
        if self._realtime.connected:
            try:
                await self._realtime.send("leave", {"conversation_id": str(conversation_id)})
            except ConnectionError:
                logger.debug("leave for %s not sent, socket down", conversation_id)

    # -- sending -------------------------------------------------------

    async def send_text(self, conversation_id: UUID, body: str) -> LocalMessage:
        return await self._send_new(conversation_id, MessageKind.TEXT, body=body, attachment=None)

    async def send_attachment(
        self,
        conversation_id: UUID,
        name: str,
        data: bytes,
        mime_type: str,
    ) -> LocalMessage:
        if self._uploader is None:
            raise RuntimeError("No blob uploader configured")
        attachment = await self._uploader.upload(name, data, mime_type)
        return await self._send_new(
            conversation_id, MessageKind.FILE_ATTACHMENT, body=None, attachment=attachment,
        )

    async def retry(self, conversation_id: UUID, client_temp_id: UUID) -> LocalMessage | None:
        """User-triggered resend of a failed entry, same client_temp_id."""
        msg = self.state(conversation_id).mark_pending(client_temp_id)
        if msg is None:
            return None
        await self._deliver(msg)
        return self.state(conversation_id).find(client_temp_id)

    async def _send_new(
        self,
        conversation_id: UUID,
        kind: MessageKind,
        *,
        body: str | None,
        attachment: Attachment | None,
    ) -> LocalMessage:
        msg = LocalMessage(
            client_temp_id=uuid.uuid4(),
            conversation_id=conversation_id,
            sender_id=self.identity.participant_id,
            sender_role=self.identity.role,
            kind=kind,
            body=body,
            attachment=attachment,
            local_created_at=self._clock.now(),
        )
        self.state(conversation_id).add_optimistic(msg)
        await self._deliver(msg)
        return self.state(conversation_id).find(msg.client_temp_id) or msg

    async def _deliver(self, msg: LocalMessage) -> None:
        payload = msg.to_send_payload()
        # the server only accepts realtime sends into joined conversations
        if self._realtime.connected and msg.conversation_id in self._open:
            try:
                await self._realtime.send("send", payload)
                return  # echo reconciles it
            except ConnectionError:
                logger.info("Socket dropped while sending %s, using HTTP", msg.client_temp_id)

        state = self.state(msg.conversation_id)
        try:
            data = await self._api.send_message(msg.conversation_id, payload)
        except ApiError as exc:
            logger.warning("Send %s failed: %s", msg.client_temp_id, exc)
            state.mark_failed(msg.client_temp_id, exc.code)
            return
        state.apply_confirmed(LocalMessage.from_wire(data, received_at=self._clock.now()))

    # -- read state / typing -------------------------------------------

    async def mark_read(self, conversation_id: UUID) -> bool:
        """Mark everything up to the latest confirmed message as read."""
        state = self.state(conversation_id)
        latest = state.latest_confirmed()
        self.unread.clear(conversation_id)
        if latest is None or not state.advance_own_read(latest.id, latest.created_at):
            return False
        if self._realtime.connected:
            try:
                await self._realtime.send(
                    "mark_read",
                    {"conversation_id": str(conversation_id), "last_message_id": str(latest.id)},
                )
                return True
            except ConnectionError:
                pass
        try:
            await self._api.mark_read(conversation_id, latest.id)
        except ApiError as exc:
            # read receipts are best effort; the next mark_read carries the position
            logger.warning("mark_read for %s failed: %s", conversation_id, exc)
        return True

    async def notify_typing(self, conversation_id: UUID, is_typing: bool) -> None:
        """Lossy: dropped when the socket is down."""
        if not self._realtime.connected:
            return
        try:
            await self._realtime.send(
                "typing.start" if is_typing else "typing.stop",
                {"conversation_id": str(conversation_id)},
            )
        except ConnectionError:
            pass

    # -- inbound -------------------------------------------------------

    async def handle_event(self, event_type: str, data: dict[str, Any]) -> None:
        if event_type == "message.appended":
            self._on_message(data)
        elif event_type == "send.failed":
            self._on_send_failed(data)
        elif event_type == "read.advanced":
            self._on_read_advanced(data)
        elif event_type == "typing.changed":
            self.typing.apply(
                UUID(data["conversation_id"]), int(data["participant_id"]), bool(data["is_typing"]),
            )
        elif event_type == "presence.changed":
            self.online[int(data["participant_id"])] = bool(data["online"])
        elif event_type == "joined":
            self._on_joined(data)
        elif event_type == "error":
            logger.warning("Server error event: %s", data)
        elif event_type != "pong":
            logger.debug("Unhandled event %s", event_type)

    def _on_message(self, data: dict[str, Any]) -> None:
        msg = LocalMessage.from_wire(data, received_at=self._clock.now())
        state = self.state(msg.conversation_id)
        outcome = state.apply_confirmed(msg)
        if msg.conversation_id in self._open and state.history_loaded:
            state.advance_sync(msg)
        if msg.sender_id != self.identity.participant_id:
            self.typing.apply(msg.conversation_id, msg.sender_id, False)
            if outcome == ReconcileOutcome.APPENDED:
                self.unread.increment(msg.conversation_id)

    def _on_send_failed(self, data: dict[str, Any]) -> None:
        temp_id = UUID(data["client_temp_id"])
        for state in self.conversations.values():
            if state.mark_failed(temp_id, data.get("code")):
                return
        logger.debug("send.failed for unknown client_temp_id %s", temp_id)

    def _on_read_advanced(self, data: dict[str, Any]) -> None:
        cid = UUID(data["conversation_id"])
        message_id = UUID(data["last_read_message_id"])
        read_at = datetime.fromisoformat(data["last_read_at"])
        state = self.state(cid)
        if int(data["participant_id"]) == self.identity.participant_id:
            # Another tab of this account read it
            state.advance_own_read(message_id, read_at)
            self.unread.clear(cid)
        else:
            state.advance_peer_read(message_id, read_at)

    def _on_joined(self, data: dict[str, Any]) -> None:
        conversation = data.get("conversation") or {}
        cid = UUID(conversation["id"])
        state = self.state(cid)
        state.metadata = conversation
        self.unread.set(cid, int(data.get("unread_count", 0)))
        peer = next(
            (int(p) for p in (conversation.get("participant_a"), conversation.get("participant_b"))
             if p is not None and int(p) != self.identity.participant_id),
            None,
        )
        if peer is not None:
            self.online[peer] = bool(data.get("peer_online"))
        for pid in data.get("typing", []):
            self.typing.apply(cid, int(pid), True)

    # -- connection lifecycle ------------------------------------------

    async def on_reconnect(self) -> None:
        """Socket (re)established: re-join, gap-fill, re-deliver pending, recompute unread."""
        for cid in self._open:
            # events seen before the gap is filled must not move the sync position
            self.state(cid).history_loaded = False
        for cid in list(self._open):
            epoch = self._bump_epoch(cid)
            await self._join(cid)
            await self._fill(cid, epoch)

        for state in list(self.conversations.values()):
            for msg in state.pending():
                await self._deliver(msg)

        try:
            self.unread.recompute(await self._api.unread_summary())
        except ApiError as exc:
            logger.warning("Unread recompute failed: %s", exc)

    async def _join(self, conversation_id: UUID) -> None:
        if not self._realtime.connected:
            return
        try:
            await self._realtime.send("join", {"conversation_id": str(conversation_id)})
        except ConnectionError:
            logger.debug("join for %s not sent, socket down", conversation_id)

    async def _fill(self, conversation_id: UUID, epoch: int) -> None:
        state = self.state(conversation_id)
        state.history_loaded = False
        cursor = state.history_cursor()
        while True:
            try:
                page = await self._api.list_messages(
                    conversation_id, cursor=cursor, limit=self._page_limit,
                )
            except ApiError as exc:
                logger.warning("History load for %s failed: %s", conversation_id, exc)
                return
            if self._epochs.get(conversation_id) != epoch or conversation_id not in self._open:
                logger.debug("Discarding stale history for %s", conversation_id)
                return
            now = self._clock.now()
            entries = [LocalMessage.from_wire(m, received_at=now) for m in page]
            state.merge_history(entries)
            # Without a cursor the server returns only the latest page
            if cursor is None or len(entries) < self._page_limit:
                break
            cursor = encode_cursor(entries[-1].created_at, entries[-1].id)
        state.history_loaded = True

    def _bump_epoch(self, conversation_id: UUID) -> int:
        epoch = self._epochs.get(conversation_id, 0) + 1
        self._epochs[conversation_id] = epoch
        return epoch