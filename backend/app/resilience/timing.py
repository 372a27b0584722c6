from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SLOW_OPERATION_SECONDS = 5.0


async def measure_async(
    name: str,
    fn: Callable[[], Awaitable[T]],
    *,
    slow_after: float = SLOW_OPERATION_SECONDS,
) -> T:
    start = time.perf_counter()
    try:
        return await fn()
    finally:
        duration = time.perf_counter() - start
        if duration > slow_after:
            logger.warning("Slow operation: %s took %.0fms", name, duration * 1000)
        else:
            logger.debug("%s took %.0fms", name, duration * 1000)
