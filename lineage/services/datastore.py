from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from lineage.core.errors import TransientError


logger = logging.getLogger(__name__)

T = TypeVar("T")

TransientException = (asyncio.TimeoutError, TimeoutError, OSError, SQLAlchemyError)


async def bounded_call(func: Callable[[], Awaitable[T]], *, timeout_ms: int, operation: str) -> T:
    # Run one datastore unit of work under a deadline; failures surface as TransientError, never retried here.
    try:
        return await asyncio.wait_for(func(), timeout=max(timeout_ms, 1) / 1000.0)
    except TransientException as exc:
        logger.warning("datastore_call_failed operation=%s error=%s", operation, type(exc).__name__, exc_info=exc)
        raise TransientError("Datastore unavailable") from exc
