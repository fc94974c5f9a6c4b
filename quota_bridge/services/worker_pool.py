"""
Bounded Worker Pool - At most K coroutines in flight, with a join barrier.

Items are fed through an asyncio.Queue to K worker tasks. Results land in a
lock-guarded accumulator indexed by input position, and `run` returns only
once every item has a result. Cancelling the caller cancels every worker.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

from structlog import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ResultAccumulator(Generic[R]):
    """Slot-per-item result store; each slot may be written exactly once."""

    def __init__(self, size: int) -> None:
        self._results: list[R | None] = [None] * size
        self._filled: list[bool] = [False] * size
        self._lock = asyncio.Lock()

    async def record(self, index: int, result: R) -> None:
        async with self._lock:
            if self._filled[index]:
                raise RuntimeError(f"Result for item {index} recorded twice")
            self._results[index] = result
            self._filled[index] = True

    @property
    def complete(self) -> bool:
        return all(self._filled)

    def results(self) -> list[R]:
        if not self.complete:
            raise RuntimeError("Accumulator read before every item was recorded")
        return list(self._results)  # type: ignore[arg-type]


class BoundedWorkerPool:
    """
    Runs an async function over a batch with bounded concurrency.

    Usage:
        pool = BoundedWorkerPool(concurrency=10)
        verdicts = await pool.run(keys, probe.is_live)
    """

    def __init__(self, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency

    async def run(self, items: Sequence[T], fn: Callable[[T], Awaitable[R]]) -> list[R]:
        """Apply fn to every item, returning results in input order."""
        if not items:
            return []

        queue: asyncio.Queue[tuple[int, T]] = asyncio.Queue()
        for index, item in enumerate(items):
            queue.put_nowait((index, item))

        accumulator: ResultAccumulator[R] = ResultAccumulator(len(items))

        async def worker() -> None:
            while True:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                result = await fn(item)
                await accumulator.record(index, result)

        workers = [
            asyncio.create_task(worker()) for _ in range(min(self.concurrency, len(items)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        logger.debug("worker_pool_batch_complete", items=len(items), workers=len(workers))
        return accumulator.results()
