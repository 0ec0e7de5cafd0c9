"""Process-wide upload status with best-effort broadcast to listeners."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_RESET_DELAY = 5.0
SUBSCRIBER_QUEUE_SIZE = 100


class ProcessingStatus(StrEnum):
    """Phase of the long-running operation currently being reported."""

    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class UploadStatus:
    """Snapshot of the current status. Progress is clamped to [0, 100]."""

    status: ProcessingStatus = ProcessingStatus.IDLE
    message: str = ""
    progress: float = field(default=0.0)

    def __post_init__(self) -> None:
        object.__setattr__(self, "progress", min(max(float(self.progress), 0.0), 100.0))

    @property
    def is_terminal(self) -> bool:
        return self.status in (ProcessingStatus.SUCCESS, ProcessingStatus.ERROR)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        return data


IDLE_STATUS = UploadStatus()


class StatusBroadcaster:
    """Holds the current ``UploadStatus`` and fans changes out to subscribers.

    Delivery is best-effort: each subscriber has a bounded queue and events
    are dropped for a subscriber whose queue is full. Late subscribers only
    see changes published after they subscribed.

    After a terminal status the broadcaster returns to idle on its own once
    ``reset_delay`` seconds pass without another status change.
    """

    def __init__(
        self,
        reset_delay: float = DEFAULT_RESET_DELAY,
        queue_size: int = SUBSCRIBER_QUEUE_SIZE,
    ) -> None:
        self.reset_delay = reset_delay
        self._queue_size = queue_size
        self._current = IDLE_STATUS
        self._subscribers: set[asyncio.Queue[UploadStatus]] = set()
        self._reset_handle: asyncio.TimerHandle | None = None

    @property
    def current(self) -> UploadStatus:
        return self._current

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[UploadStatus]:
        queue: asyncio.Queue[UploadStatus] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[UploadStatus]) -> None:
        self._subscribers.discard(queue)

    def publish(self, status: UploadStatus) -> None:
        """Replace the current status and notify every subscriber."""
        self._cancel_reset()
        self._current = status
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(status)
            except asyncio.QueueFull:
                logger.debug("Dropping status event for slow subscriber")

        if status.is_terminal:
            loop = asyncio.get_running_loop()
            self._reset_handle = loop.call_later(self.reset_delay, self._reset_to_idle)

    def close(self) -> None:
        """Cancel any pending reset to idle."""
        self._cancel_reset()

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _reset_to_idle(self) -> None:
        self._reset_handle = None
        self.publish(IDLE_STATUS)


class StatusReporter:
    """Reports the status of one attempt.

    Progress starts at 0 and never decreases for the lifetime of the reporter;
    an error keeps the last progress reached.
    """

    def __init__(self, broadcaster: StatusBroadcaster) -> None:
        self._broadcaster = broadcaster
        self._progress = 0.0

    def start(self, message: str) -> None:
        self._progress = 0.0
        self._broadcaster.publish(UploadStatus(ProcessingStatus.UPLOADING, message, 0.0))

    def progress(self, progress: float, message: str) -> None:
        self._progress = max(self._progress, min(progress, 100.0))
        self._broadcaster.publish(
            UploadStatus(ProcessingStatus.UPLOADING, message, self._progress)
        )

    def success(self, message: str) -> None:
        self._progress = 100.0
        self._broadcaster.publish(UploadStatus(ProcessingStatus.SUCCESS, message, 100.0))

    def error(self, message: str) -> None:
        self._broadcaster.publish(UploadStatus(ProcessingStatus.ERROR, message, self._progress))
