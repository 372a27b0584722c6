from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, Set, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProcessBatch = Callable[[List[T]], Awaitable[Sequence[R]]]


class BatchProcessor(Generic[T, R]):
    """
    Collect items and hand them to `process_batch` as a group.

    A flush happens when the queue reaches `max_batch_size` or `max_wait_time` seconds after
    the first unflushed item arrived, whichever comes first. `process_batch` must return one
    result per input item, in input order; each caller of `add` receives its own result, or
    the batch-wide error when processing fails.
    """

    def __init__(
        self,
        process_batch: ProcessBatch,
        *,
        max_batch_size: int = 100,
        max_wait_time: float = 0.05,
        name: str = "batch",
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self.process_batch = process_batch
        self.max_batch_size = max_batch_size
        self.max_wait_time = max_wait_time
        self.name = name
        self._queue: List[Tuple[T, asyncio.Future]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._queue)

    def _take(self) -> List[Tuple[T, asyncio.Future]]:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        batch, self._queue = self._queue, []
        return batch

    def _schedule_flush(self) -> None:
        # the batch is taken now, so items enqueued meanwhile start a new batch
        batch = self._take()
        if not batch:
            return
        task = asyncio.ensure_future(self._process(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def add(self, item: T) -> R:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append((item, future))

        if len(self._queue) >= self.max_batch_size:
            self._schedule_flush()
        elif self._timer is None:
            self._timer = loop.call_later(self.max_wait_time, self._schedule_flush)

        return await future

    async def add_many(self, items: Sequence[T]) -> List[R]:
        return list(await asyncio.gather(*(self.add(item) for item in items)))

    async def flush(self) -> None:
        batch = self._take()
        if batch:
            await self._process(batch)

    async def _process(self, batch: List[Tuple[T, asyncio.Future]]) -> None:
        items = [item for item, _ in batch]

        try:
            results = await self.process_batch(items)
            if len(results) != len(items):
                raise ValueError(
                    f"{self.name} returned {len(results)} results for {len(items)} items"
                )
        except Exception as exc:
            logger.warning("%s flush of %d items failed: %s", self.name, len(items), exc)
            for _, future in batch:
                if not future.done():
                    future.set_exception(exc)
            return

        for (_, future), result in zip(batch, results):
            if not future.done():
                future.set_result(result)
