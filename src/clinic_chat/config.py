from __future__ import annotations

import uuid
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Postgres (message store)
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    # Redis (fan-out channel and portal event stream)
    REDIS_URL: str = "redis://localhost:6379/0"
    FANOUT_ENABLED: bool = True
    REDIS_PUBSUB_CHANNEL: str = "clinic_chat.fanout"
    INSTANCE_ID: str = Field(default_factory=lambda: uuid.uuid4().hex)
    APPOINTMENT_EVENTS_STREAM: str = "portal.appointments"
    APPOINTMENT_EVENTS_GROUP: str = "clinic-chat"

    # Portal credentials
    JWT_SECRET: str = ""
    JWT_VERIFY_MODE: Literal["hs256", "jwks"] = "hs256"
    JWT_ALGORITHM: str = "HS256"
    JWKS_URL: str | None = None

    # Portal REST API (participant / appointment lookups)
    PORTAL_API_URL: str = "http://localhost:5015"
    PORTAL_API_TOKEN: str | None = None
    PORTAL_API_TIMEOUT: float = 5.0

    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    OUTBOX_POLL_INTERVAL: float = 1.0
    OUTBOX_BATCH_SIZE: int = 50
    OUTBOX_MAX_ATTEMPTS: int = 5

    WS_HEARTBEAT_SECONDS: int = 30
    TYPING_EXPIRY_SECONDS: float = Field(default=1.0, gt=0)
    TYPING_SWEEP_INTERVAL: float = Field(default=0.5, gt=0)

    MESSAGE_MAX_LENGTH: int = Field(default=2000, gt=0)
    HISTORY_PAGE_LIMIT: int = Field(default=50, ge=1, le=200)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def _check_consistency(self) -> Settings:
        if self.JWT_VERIFY_MODE == "jwks" and not self.JWKS_URL:
            raise ValueError("JWKS_URL must be set when JWT_VERIFY_MODE=jwks")
        if self.TYPING_SWEEP_INTERVAL > self.TYPING_EXPIRY_SECONDS:
            raise ValueError("TYPING_SWEEP_INTERVAL must not exceed TYPING_EXPIRY_SECONDS")
        return self

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()  # type: ignore[call-arg]
