from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_chat.api.middleware.correlation_id import CorrelationIdMiddleware
from clinic_chat.api.middleware.metrics import RequestTimingMiddleware
from clinic_chat.api.v1.routers import (
    conversations,
    health,
    messages,
    ws,
)
from clinic_chat.application.exceptions import (
    AppError,
    ConflictError,
    FailedPreconditionError,
    ForbiddenError,
    NotFoundError,
    StoreUnavailableError,
    TransientDeliveryError,
    UnauthenticatedError,
    ValidationError,
)
from clinic_chat.application.ports.clock import SystemClock
from clinic_chat.config import settings
from clinic_chat.infrastructure.bus.redis_pubsub import RedisPubSubSubscriber
from clinic_chat.infrastructure.directory.portal_directory import PortalDirectory
from clinic_chat.infrastructure.presence.typing_tracker import TypingTracker
from clinic_chat.infrastructure.ws.manager import ConnectionManager

logger = logging.getLogger(__name__)


def make_fanout_handler(manager: ConnectionManager):
    """Dispatch Pub/Sub events from other instances to local WS sessions."""

    async def _on_pubsub_event(event_type: str, data: dict[str, Any]) -> None:
        if data.get("origin") == settings.INSTANCE_ID:
            return  # already delivered locally

        try:
            conversation_id = UUID(data["conversation_id"])
        except (KeyError, TypeError, ValueError):
            return
        participant_ids = [int(p) for p in data.get("participant_ids", [])]

        if event_type == "chat.message_appended":
            await manager.broadcast_to_conversation(
                conversation_id,
                "message.appended",
                data["message"],
                participant_ids=participant_ids,
            )
        elif event_type == "chat.read_advanced":
            await manager.send_to_participants(
                participant_ids,
                "read.advanced",
                {
                    "conversation_id": data["conversation_id"],
                    "participant_id": data["participant_id"],
                    "last_read_message_id": data["last_read_message_id"],
                    "last_read_at": data["last_read_at"],
                },
            )
        else:
            logger.debug("Ignoring fan-out event %s", event_type)

    return _on_pubsub_event


async def _typing_sweeper(app: FastAPI) -> None:
    while True:
        await asyncio.sleep(settings.TYPING_SWEEP_INTERVAL)
        try:
            await ws.sweep_typing(app.state.manager, app.state.typing)
        except Exception:
            logger.exception("Typing sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.directory = PortalDirectory.from_settings(
        settings.PORTAL_API_URL, settings.PORTAL_API_TOKEN, settings.PORTAL_API_TIMEOUT,
    )
    sweeper = asyncio.create_task(_typing_sweeper(app), name="typing-sweeper")

    app.state.redis = None
    subscriber = None
    if settings.FANOUT_ENABLED:
        app.state.redis = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        logger.info("Redis connection pool created")
        subscriber = RedisPubSubSubscriber(
            app.state.redis,
            settings.REDIS_PUBSUB_CHANNEL,
            make_fanout_handler(app.state.manager),
        )
        await subscriber.start()

    yield

    if subscriber is not None:
        await subscriber.stop()
        await app.state.redis.aclose()
        logger.info("Redis connection pool closed")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await app.state.directory.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Clinic Chat Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.manager = ConnectionManager()
    app.state.typing = TypingTracker(SystemClock(), settings.TYPING_EXPIRY_SECONDS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(conversations.router)
    app.include_router(messages.router)
    app.include_router(ws.router)

    return app


_STATUS_BY_ERROR: list[tuple[type[AppError], int]] = [
    (UnauthenticatedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (FailedPreconditionError, 412),
    (ValidationError, 422),
    (TransientDeliveryError, 503),
    (StoreUnavailableError, 503),
]


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TransientDeliveryError)
    async def _transient(_req: Request, exc: TransientDeliveryError) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={
                "code": exc.code,
                "detail": exc.detail,
                "client_temp_id": str(exc.client_temp_id) if exc.client_temp_id else None,
                "retryable": True,
            },
        )

    @app.exception_handler(AppError)
    async def _app_error(_req: Request, exc: AppError) -> JSONResponse:
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)),
            500,
        )
        if status_code == 500:
            logger.error("Unmapped application error: %r", exc)
        return JSONResponse(
            status_code=status_code,
            content={"code": exc.code, "detail": exc.detail},
        )
