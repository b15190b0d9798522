"""Entrypoint: python -m clinic_chat"""
from __future__ import annotations

import logging

import uvicorn

from clinic_chat.api.middleware.correlation_id import CorrelationIdFilter
from clinic_chat.config import settings


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s [%(correlation_id)s]: %(message)s",
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(CorrelationIdFilter())
    uvicorn.run(
        "clinic_chat.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
