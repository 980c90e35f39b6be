"""Utility helpers for MyEvent."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def ensure_aware(dt: datetime) -> datetime:
    """Return a timezone aware datetime (UTC) for arithmetic operations."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_naive_utc(dt: datetime | None) -> datetime | None:
    """Normalize any datetime to the naive UTC form stored in the database."""

    if dt is None:
        return None
    return ensure_aware(dt).replace(tzinfo=None)


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def format_local(dt: datetime, tz_name: str, fmt: str = "%A %d %B %Y, %H:%M") -> str:
    """Render a stored UTC datetime in the given IANA timezone."""

    local = ensure_aware(dt).astimezone(ZoneInfo(tz_name))
    return f"{local.strftime(fmt)} ({local.tzname()})"


def humanize_time(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as 'in 2 days' or '3 hours ago'."""
    if not value:
        return ""
    now = now or utcnow()
    delta_seconds = (to_naive_utc(value) - to_naive_utc(now)).total_seconds()
    past = delta_seconds < 0
    seconds = abs(delta_seconds)

    units = [
        ("week", 7 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ]

    amount = 0
    label = "minute"
    for name, step in units:
        value_count = int(seconds // step)
        if value_count >= 1:
            amount = value_count
            label = name
            break
    else:
        return "in moments" if not past else "moments ago"

    if amount != 1:
        label = f"{label}s"
    if past:
        return f"{amount} {label} ago"
    return f"in {amount} {label}"
