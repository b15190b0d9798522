from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from clinic_chat.api.deps import (
    ClockDep,
    CurrentPrincipal,
    ManagerDep,
    UoWDep,
    UoWFactoryDep,
)
from clinic_chat.api.v1.delivery import deliver_message, deliver_read
from clinic_chat.api.v1.schemas.message import (
    MarkReadRequest,
    MarkReadResponse,
    MessageResponse,
    ReadMarkerResponse,
    SendMessageRequest,
)
from clinic_chat.config import settings
from clinic_chat.services import message_service

router = APIRouter(prefix="/api/v1/chat/conversations", tags=["messages"])


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
    cursor: str | None = Query(None),
    limit: int = Query(settings.HISTORY_PAGE_LIMIT, ge=1, le=200),
) -> list[MessageResponse]:
    messages = await message_service.list_since(
        conversation_id, principal, cursor, limit, uow,
    )
    return [MessageResponse.model_validate(m, from_attributes=True) for m in messages]


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    principal: CurrentPrincipal,
    uow_factory: UoWFactoryDep,
    manager: ManagerDep,
    clock: ClockDep,
    response: Response,
) -> MessageResponse:
    msg, created = await deliver_message(
        manager, uow_factory, conversation_id, principal, body.to_content(), clock,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return MessageResponse.model_validate(msg, from_attributes=True)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow_factory: UoWFactoryDep,
    manager: ManagerDep,
    body: MarkReadRequest | None = None,
) -> MarkReadResponse:
    marker = await deliver_read(
        manager,
        uow_factory,
        conversation_id,
        principal,
        body.last_message_id if body else None,
    )
    if marker is None:
        return MarkReadResponse(advanced=False)
    return MarkReadResponse(
        advanced=True,
        marker=ReadMarkerResponse.model_validate(marker, from_attributes=True),
    )
