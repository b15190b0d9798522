from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client-side configuration, read from ``CLINIC_CHAT_*`` env vars."""

    BASE_URL: str = "http://localhost:8000"
    TOKEN: str = ""

    HTTP_TIMEOUT: float = 10.0
    HANDSHAKE_TIMEOUT: float = 5.0
    RECONNECT_BASE_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 30.0

    HISTORY_PAGE_LIMIT: int = 50
    TYPING_EXPIRY_SECONDS: float = 1.0

    @property
    def ws_url(self) -> str:
        scheme, _, rest = self.BASE_URL.partition("://")
        return f"{'wss' if scheme == 'https' else 'ws'}://{rest.rstrip('/')}/ws/chat"

    model_config = SettingsConfigDict(
        env_prefix="CLINIC_CHAT_",
        extra="ignore",
    )
