"""Tests for the serial task queue."""

from __future__ import annotations

import asyncio

import pytest

from bridge.services.task_queue import SerialTaskQueue


class TestSerialTaskQueue:
    async def test_runs_tasks_in_enqueue_order(self) -> None:
        queue = SerialTaskQueue()
        order: list[int] = []

        def make(i: int):
            async def task() -> int:
                await asyncio.sleep(0.001 * (5 - i))
                order.append(i)
                return i

            return task

        futures = [queue.add(make(i)) for i in range(5)]
        results = await asyncio.gather(*futures)
        assert order == [0, 1, 2, 3, 4]
        assert results == [0, 1, 2, 3, 4]

    async def test_only_one_task_in_flight(self) -> None:
        queue = SerialTaskQueue()
        in_flight = 0
        peak = 0

        async def task() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1

        async def producer() -> None:
            await asyncio.gather(*(queue.add(task) for _ in range(5)))

        await asyncio.gather(producer(), producer(), producer())
        assert peak == 1

    async def test_failure_does_not_abort_successors(self) -> None:
        queue = SerialTaskQueue()

        async def fail() -> None:
            raise ValueError("boom")

        async def succeed() -> str:
            return "ok"

        failing = queue.add(fail)
        following = queue.add(succeed)

        with pytest.raises(ValueError, match="boom"):
            await failing
        assert await following == "ok"

    async def test_join_waits_for_drain(self) -> None:
        queue = SerialTaskQueue()
        done: list[int] = []

        async def task() -> None:
            await asyncio.sleep(0)
            done.append(1)

        for _ in range(3):
            queue.add(task)
        assert queue.pending >= 2
        await queue.join()
        assert done == [1, 1, 1]
        assert queue.pending == 0

    async def test_close_cancels_pending_tasks(self) -> None:
        queue = SerialTaskQueue()
        started = asyncio.Event()

        async def slow() -> None:
            started.set()
            await asyncio.sleep(10)

        async def never() -> None:
            raise AssertionError("should not run")

        first = queue.add(slow)
        second = queue.add(never)
        await started.wait()
        queue.close()

        with pytest.raises(asyncio.CancelledError):
            await first
        assert second.cancelled()

    async def test_queue_restarts_after_draining(self) -> None:
        queue = SerialTaskQueue()

        async def value() -> int:
            return 7

        assert await queue.add(value) == 7
        await queue.join()
        assert await queue.add(value) == 7
