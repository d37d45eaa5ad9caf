import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_read(
    operation: Callable[[], Awaitable[T]],
    retries: int = 2,
    delay_seconds: float = 0.05,
) -> T:
    """Re-run a read-only storage operation on transient database errors."""
    attempt = 0
    while True:
        try:
            return await operation()
        except OperationalError as exc:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning("Transient storage error on read (attempt %d): %s", attempt, exc)
            await asyncio.sleep(delay_seconds * attempt)
