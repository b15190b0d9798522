from __future__ import annotations

from uuid import UUID


class AppError(Exception):
    """Base application error."""

    code = "error"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class UnauthenticatedError(AppError):
    code = "unauthenticated"


class NotFoundError(AppError):
    code = "not_found"


class ForbiddenError(AppError):
    code = "forbidden"


class NotAParticipantError(ForbiddenError):
    code = "not_a_participant"


class ConflictError(AppError):
    code = "conflict"


class ValidationError(AppError):
    code = "invalid_data"


class FailedPreconditionError(AppError):
    code = "failed_precondition"


class ConversationClosedError(FailedPreconditionError):
    code = "conversation_closed"


class StoreUnavailableError(AppError):
    """The backing store could not be reached or refused the write."""

    code = "store_unavailable"


class TransientDeliveryError(AppError):
    """An append failed for a reason worth retrying by hand.

    Always carries the client's correlation id so the caller can flag the
    exact optimistic message that was not delivered.
    """

    code = "transient"

    def __init__(self, detail: str = "", *, client_temp_id: UUID | None = None) -> None:
        super().__init__(detail)
        self.client_temp_id = client_temp_id


class ConflictAlreadyRead(AppError):
    """A markRead for a position at or behind the current marker."""

    code = "already_read"
