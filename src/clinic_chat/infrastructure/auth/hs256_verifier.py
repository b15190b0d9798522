from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import jwt

from clinic_chat.application.dto.principal import Principal
from clinic_chat.application.exceptions import UnauthenticatedError
from clinic_chat.domain.value_objects.enums import Role


def principal_from_claims(payload: dict[str, Any]) -> Principal:
    """Map verified claims (``sub``, ``role``, ``exp``) to a Principal."""
    try:
        participant_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise UnauthenticatedError("Token has no usable subject") from exc
    try:
        role = Role(payload.get("role", Role.PATIENT))
    except ValueError as exc:
        raise UnauthenticatedError(f"Unknown role {payload.get('role')!r}") from exc
    exp = payload.get("exp")
    return Principal(
        participant_id=participant_id,
        role=role,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


class HS256Verifier:
    """Verify JWTs signed with a shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> Principal:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError as exc:
            raise UnauthenticatedError(str(exc)) from exc
        return principal_from_claims(payload)
