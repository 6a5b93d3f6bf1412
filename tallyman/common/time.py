"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def since_days(days: int, *, now: dt.datetime | None = None) -> dt.date:
    """Return the UTC calendar day ``days`` before ``now``."""
    reference = now or utcnow()
    return (reference.astimezone(dt.UTC) - dt.timedelta(days=days)).date()


def utc_day(value: dt.datetime) -> dt.date:
    """Return the UTC calendar day of a timezone-aware timestamp."""
    if value.tzinfo is None:
        msg = "timestamp must be timezone-aware"
        raise ValueError(msg)
    return value.astimezone(dt.UTC).date()
