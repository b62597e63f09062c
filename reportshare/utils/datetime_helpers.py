"""
DateTime helper utilities for UTC timestamps stored in naive DB columns.

Rows are written with naive UTC datetimes so that SQLite and PostgreSQL
``timestamp without time zone`` columns compare consistently.
"""
from datetime import date, datetime, timedelta, timezone


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching stored column values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    """Convert any datetime to naive UTC for comparisons against stored values."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def days_ago(days: int, *, now: datetime | None = None) -> datetime:
    return (now or utc_now()) - timedelta(days=days)


def day_range(start: datetime, end: datetime) -> list[date]:
    """Every calendar day from ``start`` through ``end`` inclusive."""
    first = start.date()
    last = end.date()
    span = (last - first).days
    return [first + timedelta(days=offset) for offset in range(max(span, 0) + 1)]
