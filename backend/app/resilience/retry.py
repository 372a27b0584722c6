from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from backend.app.config import RetrySettings
from backend.app.resilience.errors import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, settings: RetrySettings) -> float:
    """Delay before retrying after the given 1-based failed attempt."""
    return min(settings.initial_delay * (settings.exponential_base ** (attempt - 1)), settings.max_delay)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    settings: Optional[RetrySettings] = None,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    settings = settings or RetrySettings()
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= settings.max_attempts or not should_retry(exc):
                raise
            delay = backoff_delay(attempt, settings)
            logger.warning(
                "%s attempt %d failed, retrying in %.2fs: %s",
                label,
                attempt,
                delay,
                exc,
            )
            await sleep(delay)
            attempt += 1
