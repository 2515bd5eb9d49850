"""Datetime helpers: Moodle epoch seconds in, ISO / human-readable strings out."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

HUMAN_FORMAT = "YYYY-MM-DD HH:mm"


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def from_timestamp(timestamp: int | float) -> pendulum.DateTime:
    """Convert a Moodle ``time*`` field (seconds since epoch) to an aware datetime."""
    return pendulum.from_timestamp(timestamp, tz="UTC")


def format_timestamp(timestamp: int | float | None, tz: str = "local") -> str:
    """Render a Moodle timestamp for humans; ``-`` when unknown."""
    if not timestamp:
        return "-"
    return from_timestamp(timestamp).in_tz(tz).format(HUMAN_FORMAT)


def format_iso_for_humans(value: str | None, tz: str = "local") -> str:
    """Render a stored ISO 8601 string for humans; ``never`` when unset."""
    if not value:
        return "never"
    parsed = pendulum.parse(value)
    if not isinstance(parsed, pendulum.DateTime):
        return value
    return parsed.in_tz(tz).format(HUMAN_FORMAT)
