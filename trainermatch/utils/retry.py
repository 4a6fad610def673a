"""Bounded retry with exponential backoff"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    """Only errors that explicitly flag themselves retryable are retried"""
    return bool(getattr(exc, "retryable", False))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    description: str = "operation",
) -> T:
    """
    Run ``operation`` up to ``max_attempts`` times.

    The delay before attempt n+1 is ``base_delay * 2**n`` seconds. Errors that
    are not retryable, and the error of the last attempt, propagate unchanged.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            if attempt >= max_attempts or not is_retryable(e):
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s: {e}"
            )
            await asyncio.sleep(delay)
