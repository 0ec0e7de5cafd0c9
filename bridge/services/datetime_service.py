"""Timestamp helpers: lax input -> strict output."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Strict storage format: YYYY-MM-DD HH:MM:SS.ffffff±HHMM
STRICT_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a stored or user-supplied timestamp into a timezone-aware datetime.

    Accepts the strict storage format as well as ISO 8601 variants and plain
    dates. A missing timezone defaults to ``default_tz``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def format_datetime(dt: datetime) -> str:
    """Format a datetime in the strict storage format."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.strftime(STRICT_FORMAT)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def age_seconds(created_at: str | datetime, now: datetime | None = None) -> float:
    """Seconds elapsed since ``created_at``."""
    reference = now if now is not None else now_utc()
    return (reference - parse_datetime(created_at)).total_seconds()
