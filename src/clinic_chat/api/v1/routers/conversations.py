from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query

from clinic_chat.api.deps import (
    ClockDep,
    CurrentPrincipal,
    DirectoryDep,
    ManagerDep,
    UoWDep,
    UoWFactoryDep,
)
from clinic_chat.api.v1.delivery import deliver_close
from clinic_chat.api.v1.schemas.common import PaginatedResponse
from clinic_chat.api.v1.schemas.conversation import (
    ConversationResponse,
    ConversationSummaryResponse,
    OpenDirectRequest,
    UnreadSummaryResponse,
)
from clinic_chat.application.dto.conversation import ConversationFilterDTO
from clinic_chat.domain.value_objects.cursor import encode_cursor
from clinic_chat.domain.value_objects.enums import ConversationStatus
from clinic_chat.services import conversation_service, read_state_service

router = APIRouter(prefix="/api/v1/chat/conversations", tags=["conversations"])


@router.post("/direct", response_model=ConversationResponse)
async def open_direct_conversation(
    body: OpenDirectRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
    directory: DirectoryDep,
) -> ConversationResponse:
    conv = await conversation_service.resolve_or_create_direct(
        principal.participant_id, body.peer_id, uow, directory,
    )
    return ConversationResponse.from_entity(conv)


@router.post("/appointments/{appointment_id}", response_model=ConversationResponse)
async def open_appointment_conversation(
    appointment_id: int,
    principal: CurrentPrincipal,
    uow: UoWDep,
    directory: DirectoryDep,
) -> ConversationResponse:
    conv = await conversation_service.open_appointment_conversation(
        appointment_id, principal, uow, directory,
    )
    return ConversationResponse.from_entity(conv)


@router.get("", response_model=PaginatedResponse[ConversationSummaryResponse])
async def list_conversations(
    principal: CurrentPrincipal,
    uow: UoWDep,
    status: ConversationStatus | None = Query(None),
    cursor: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
) -> PaginatedResponse[ConversationSummaryResponse]:
    summaries = await conversation_service.list_conversations_for(
        principal, ConversationFilterDTO(status=status, cursor=cursor, limit=limit), uow,
    )
    next_cursor = None
    if len(summaries) == limit:
        last = summaries[-1].conversation
        next_cursor = encode_cursor(last.activity_at, last.id)
    return PaginatedResponse[ConversationSummaryResponse](
        items=[ConversationSummaryResponse.from_summary(s) for s in summaries],
        next_cursor=next_cursor,
    )


@router.get("/unread", response_model=UnreadSummaryResponse)
async def unread_summary(
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> UnreadSummaryResponse:
    dto = await read_state_service.unread_summary(principal, uow)
    return UnreadSummaryResponse.from_dto(dto)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> ConversationResponse:
    conv = await conversation_service.get_conversation(conversation_id, principal, uow)
    return ConversationResponse.from_entity(conv)


@router.post("/{conversation_id}/close", response_model=ConversationResponse)
async def close_conversation(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow_factory: UoWFactoryDep,
    manager: ManagerDep,
    clock: ClockDep,
) -> ConversationResponse:
    conv = await deliver_close(manager, uow_factory, conversation_id, principal, clock)
    return ConversationResponse.from_entity(conv)
