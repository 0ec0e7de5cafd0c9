"""Request pacing and throttling recovery for GitLab API calls. State is lost on restart."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from bridge.exceptions import RetryExhaustedError

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

DEFAULT_BURST_LIMIT = 10
DEFAULT_MIN_INTERVAL = 1.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_MAX_BACKOFF = 60.0

_REMAINING_HEADERS = ("ratelimit-remaining", "x-ratelimit-remaining")
_RESET_HEADERS = ("ratelimit-reset", "x-ratelimit-reset")


def _header(headers: Mapping[str, str], *names: str) -> str | None:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in names:
        value = lowered.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _to_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class BackoffController:
    """Pace outgoing requests and compute waits after throttling responses.

    Pacing (``before_request``) keeps bursts under the remote limit; recovery
    (``handle_rate_limit``) reacts when the remote throttles anyway.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    Concurrent ``before_request`` callers are serialized by a lock so each one
    observes the timestamp left by its predecessor.
    """

    def __init__(
        self,
        burst_limit: int = DEFAULT_BURST_LIMIT,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ) -> None:
        self.burst_limit = burst_limit
        self.min_interval = min_interval
        self.max_retries = max_retries
        self.max_backoff = max_backoff
        self.request_count = 0
        self.last_request_time = 0.0
        self.retry_count = 0
        self._lock = asyncio.Lock()

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def before_request(self) -> None:
        """Wait out the minimum interval once the burst allowance is spent."""
        async with self._lock:
            self.request_count += 1
            if self.request_count > self.burst_limit:
                elapsed = time.monotonic() - self.last_request_time
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self.last_request_time = time.monotonic()

    def reset_request_count(self) -> None:
        """Zero the burst counter at a batch boundary."""
        self.request_count = 0

    def reset_retry_count(self) -> None:
        """Zero the retry counter after a successful request."""
        self.retry_count = 0

    def compute_wait(self, headers: Mapping[str, str]) -> float:
        """Seconds to wait before retrying a throttled request.

        Priority: explicit ``Retry-After``, then the quota reset time when the
        remaining quota is zero, then capped exponential backoff.
        """
        retry_after = _to_float(_header(headers, "retry-after"))
        if retry_after is not None:
            return max(retry_after, 0.0)

        remaining = _to_float(_header(headers, *_REMAINING_HEADERS))
        reset_at = _to_float(_header(headers, *_RESET_HEADERS))
        if remaining == 0 and reset_at is not None:
            return max(reset_at - time.time(), 0.0)

        return float(min(2**self.retry_count, self.max_backoff))

    async def handle_rate_limit(self, headers: Mapping[str, str]) -> float:
        """Sleep for the computed wait and count one retry.

        Returns the number of seconds waited. Raises RetryExhaustedError once
        the retry count passes ``max_retries``.
        """
        wait = self.compute_wait(headers)
        self.retry_count += 1
        if self.retry_count > self.max_retries:
            msg = f"Maximum retry attempts exceeded ({self.max_retries})"
            raise RetryExhaustedError(msg, http_status=429)
        logger.warning(
            "GitLab throttled request; waiting %.1fs (retry %d/%d)",
            wait,
            self.retry_count,
            self.max_retries,
        )
        await self._sleep(wait)
        return wait
