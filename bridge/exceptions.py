"""Application-level exception types.

Convention:
- Every failure the bridge raises on purpose is a ``BridgeError`` tagged with an
  ``ErrorKind``. Callers branch on ``kind`` (and ``http_status`` for remote
  errors) instead of matching message text.
- ``original_message`` carries the upstream GitLab message when there is one.
  It is the most specific text available and is what gets reported to users.
- The global handler in ``bridge/main.py`` maps each kind to an HTTP status and
  returns ``{"detail": message, "kind": kind}``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


class ErrorKind(StrEnum):
    """Failure categories shared by all components."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    TRANSPORT = "transport"
    RATE_LIMITED = "rate_limited"
    REMOTE_INCONSISTENCY = "remote_inconsistency"
    TIMEOUT = "timeout"


class BridgeError(Exception):
    """Base class for tagged bridge errors."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        original_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.original_message = original_message

    @property
    def user_message(self) -> str:
        """Most specific message available for status reports."""
        return self.original_message or self.message


class NotConfiguredError(BridgeError):
    """GitLab credentials or the current project id are missing."""

    kind = ErrorKind.CONFIGURATION


class SettingsMissingError(BridgeError):
    """No repository mapping is stored for the project."""

    kind = ErrorKind.CONFIGURATION


class PayloadTooLargeError(BridgeError):
    """The uploaded archive exceeds the configured ceiling."""

    kind = ErrorKind.VALIDATION


class ArchiveDecodeError(BridgeError):
    """The archive could not be decompressed."""

    kind = ErrorKind.VALIDATION


class SourceRepoNotFoundError(BridgeError):
    """No accessible project matches the requested source repository name."""

    kind = ErrorKind.VALIDATION


class GitlabApiError(BridgeError):
    """Non-success response from GitLab, or a failed transport round trip.

    ``http_status`` is None when the request never produced a response.
    """

    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        original_message: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, http_status=http_status, original_message=original_message)
        self.headers: dict[str, str] = {k.lower(): v for k, v in (headers or {}).items()}

    @property
    def is_not_found(self) -> bool:
        return self.http_status == 404


class RetryExhaustedError(BridgeError):
    """Throttling persisted past the maximum number of retries."""

    kind = ErrorKind.RATE_LIMITED


class RemoteInconsistencyError(BridgeError):
    """GitLab state contradicts what a previous response implied."""

    kind = ErrorKind.REMOTE_INCONSISTENCY


class SyncTimeoutError(BridgeError):
    """A long-running operation exceeded its wall-clock budget."""

    kind = ErrorKind.TIMEOUT
