"""Serial execution of asynchronous units of work."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialTaskQueue:
    """Run queued tasks one at a time in submission order.

    ``add`` may be called from any number of producers; a single worker drains
    the queue. Each task reports its own outcome through the future returned by
    ``add``, so a failing task never stops the tasks queued behind it.
    """

    def __init__(self) -> None:
        self._pending: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = deque()
        self._worker: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def pending(self) -> int:
        """Number of tasks waiting to start."""
        return len(self._pending)

    def add(self, task: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Enqueue ``task`` and return a future for its result."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._pending.append((task, future))
        self._idle.clear()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return future

    async def join(self) -> None:
        """Wait until every queued task has finished."""
        await self._idle.wait()

    def close(self) -> None:
        """Cancel the worker and every task that has not started yet."""
        while self._pending:
            _, future = self._pending.popleft()
            future.cancel()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._idle.set()

    async def _drain(self) -> None:
        try:
            while self._pending:
                task, future = self._pending.popleft()
                if future.cancelled():
                    continue
                try:
                    result = await task()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as exc:
                    logger.debug("Queued task failed: %s", exc)
                    if not future.cancelled():
                        future.set_exception(exc)
                else:
                    if not future.cancelled():
                        future.set_result(result)
        finally:
            if not self._pending:
                self._idle.set()
