"""
Tests for BoundedWorkerPool.

Covers the concurrency bound, the join barrier, and cancellation.
"""

import asyncio

import pytest

from quota_bridge.services.worker_pool import BoundedWorkerPool, ResultAccumulator


class TestBoundedWorkerPool:
    async def test_two_workers_over_five_items(self):
        """K=2 over 5 keys: never more than 2 in flight, every result recorded once."""
        in_flight = 0
        peak = 0
        calls: list[str] = []

        async def probe(key: str) -> bool:
            nonlocal in_flight, peak
            calls.append(key)
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return key.endswith("live")

        keys = ["a-live", "b-dead", "c-live", "d-dead", "e-live"]
        results = await BoundedWorkerPool(concurrency=2).run(keys, probe)

        assert results == [True, False, True, False, True]
        assert peak == 2
        assert sorted(calls) == sorted(keys)
        assert in_flight == 0

    async def test_results_follow_input_order_despite_completion_order(self):
        async def slow_for_first(n: int) -> int:
            await asyncio.sleep(0.02 if n == 0 else 0)
            return n * 10

        results = await BoundedWorkerPool(concurrency=3).run([0, 1, 2], slow_for_first)
        assert results == [0, 10, 20]

    async def test_empty_batch(self):
        async def never(_: str) -> bool:
            raise AssertionError("should not be called")

        assert await BoundedWorkerPool(concurrency=4).run([], never) == []

    async def test_worker_error_propagates_and_stops_others(self):
        started: list[int] = []

        async def work(n: int) -> int:
            started.append(n)
            if n == 0:
                raise ValueError("bad item")
            await asyncio.sleep(1)
            return n

        with pytest.raises(ValueError, match="bad item"):
            await BoundedWorkerPool(concurrency=2).run([0, 1, 2, 3], work)

        # Items after the failure were never picked up
        assert 3 not in started

    async def test_cancellation_reaches_workers(self):
        cancelled = 0

        async def work(n: int) -> int:
            nonlocal cancelled
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled += 1
                raise
            return n

        task = asyncio.create_task(BoundedWorkerPool(concurrency=3).run(list(range(6)), work))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cancelled == 3

    def test_rejects_non_positive_concurrency(self):
        with pytest.raises(ValueError):
            BoundedWorkerPool(concurrency=0)


class TestResultAccumulator:
    async def test_double_record_is_an_error(self):
        acc: ResultAccumulator[int] = ResultAccumulator(2)
        await acc.record(0, 1)
        with pytest.raises(RuntimeError, match="twice"):
            await acc.record(0, 2)

    async def test_read_before_complete_is_an_error(self):
        acc: ResultAccumulator[int] = ResultAccumulator(2)
        await acc.record(1, 5)
        assert not acc.complete
        with pytest.raises(RuntimeError):
            acc.results()
