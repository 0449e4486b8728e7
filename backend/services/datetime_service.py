"""Datetime helpers: clock access, ISO formatting, lax timestamp parsing."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_timestamp(value: str | None, default_tz: str = "UTC") -> datetime | None:
    """Parse a persisted timestamp into an aware datetime.

    Accepts ISO 8601 variants and the looser forms older ledger files may
    carry (date-only, space separator, missing zone). Returns None for
    empty or unparseable input.
    """
    if not value or not value.strip():
        return None
    try:
        parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    except ValueError:
        return None
    if isinstance(parsed, pendulum.DateTime):
        return parsed
    if isinstance(parsed, pendulum.Date):
        return pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=default_tz)
    return None
