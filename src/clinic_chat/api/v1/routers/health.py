from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from clinic_chat.config import settings
from clinic_chat.infrastructure.db.session import AsyncSessionLocal

router = APIRouter(tags=["health"])

READINESS_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz(request: Request) -> dict[str, Any]:
    """Liveness plus this instance's open socket count."""
    return {
        "status": "ok",
        "instance": settings.INSTANCE_ID,
        "sessions": request.app.state.manager.session_count,
    }


async def _ping_store() -> None:
    async with AsyncSessionLocal() as session:
        await session.execute(text("SELECT 1"))


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks: dict[str, Any] = {"postgres": _ping_store()}
    if request.app.state.redis is not None:
        checks["redis"] = request.app.state.redis.ping()

    errors: dict[str, str] = {}
    for name, check in checks.items():
        try:
            await asyncio.wait_for(check, READINESS_TIMEOUT_SECONDS)
        except Exception as exc:  # noqa: BLE001
            errors[name] = repr(exc)

    if errors:
        return JSONResponse(status_code=503, content={"status": "unavailable", "errors": errors})
    return JSONResponse(content={"status": "ready", "fanout": settings.FANOUT_ENABLED})
