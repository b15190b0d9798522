"""Translate driver-level failures into application errors."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

from clinic_chat.application.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise connectivity / timeout failures as StoreUnavailableError.

    IntegrityError is left alone: repositories handle uniqueness conflicts themselves.
    """
    try:
        yield
    except IntegrityError:
        raise
    except (OperationalError, PoolTimeoutError, DBAPIError, OSError, TimeoutError) as exc:
        logger.warning("Store unavailable during %s: %s", operation, exc)
        raise StoreUnavailableError(f"{operation} failed") from exc
