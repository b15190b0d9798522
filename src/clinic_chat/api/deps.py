"""FastAPI dependency injection helpers."""
from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Annotated, AsyncIterator, Callable

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import UnauthenticatedError
from clinic_chat.application.ports.auth import TokenVerifier
from clinic_chat.application.ports.clock import Clock, SystemClock
from clinic_chat.application.uow import UnitOfWork
from clinic_chat.config import settings
from clinic_chat.infrastructure.auth.hs256_verifier import HS256Verifier
from clinic_chat.infrastructure.auth.jwks_verifier import JWKSVerifier
from clinic_chat.infrastructure.db.session import uow_scope
from clinic_chat.infrastructure.directory.portal_directory import PortalDirectory
from clinic_chat.infrastructure.presence.typing_tracker import TypingTracker
from clinic_chat.infrastructure.ws.manager import ConnectionManager

_bearer_scheme = HTTPBearer(auto_error=False)

UoWFactory = Callable[[], AbstractAsyncContextManager[UnitOfWork]]


def get_uow_factory() -> UoWFactory:
    return uow_scope


async def get_uow(
    factory: Annotated[UoWFactory, Depends(get_uow_factory)],
) -> AsyncIterator[UnitOfWork]:
    async with factory() as uow:
        yield uow


UoWDep = Annotated[UnitOfWork, Depends(get_uow)]
UoWFactoryDep = Annotated[UoWFactory, Depends(get_uow_factory)]


def _get_verifier() -> TokenVerifier:
    if settings.JWT_VERIFY_MODE == "jwks":
        assert settings.JWKS_URL, "JWKS_URL must be set when JWT_VERIFY_MODE=jwks"
        return JWKSVerifier(settings.JWKS_URL)
    return HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)


_verifier: TokenVerifier | None = None


def get_verifier() -> TokenVerifier:
    global _verifier  # noqa: PLW0603
    if _verifier is None:
        _verifier = _get_verifier()
    return _verifier


_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


ClockDep = Annotated[Clock, Depends(get_clock)]


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    verifier: Annotated[TokenVerifier, Depends(get_verifier)],
    clock: ClockDep,
) -> Principal:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    try:
        principal = await verifier.verify(credentials.credentials)
    except UnauthenticatedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.detail,
        ) from exc
    if principal.is_expired(clock.now()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def get_manager(conn: HTTPConnection) -> ConnectionManager:
    return conn.app.state.manager


def get_typing_tracker(conn: HTTPConnection) -> TypingTracker:
    return conn.app.state.typing


def get_directory(conn: HTTPConnection) -> PortalDirectory:
    return conn.app.state.directory


ManagerDep = Annotated[ConnectionManager, Depends(get_manager)]
TypingDep = Annotated[TypingTracker, Depends(get_typing_tracker)]
DirectoryDep = Annotated[PortalDirectory, Depends(get_directory)]
