from __future__ import annotations

from enum import StrEnum


class ConversationKind(StrEnum):
    APPOINTMENT = "appointment"
    DIRECT = "direct"


class ConversationStatus(StrEnum):
    ACTIVE = "active"
    CLOSED = "closed"


class Role(StrEnum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class MessageKind(StrEnum):
    TEXT = "text"
    FILE_ATTACHMENT = "file_attachment"
    SYSTEM = "system"


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class SessionState(StrEnum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"
