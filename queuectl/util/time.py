from __future__ import annotations
from datetime import datetime, timedelta, timezone

# Stored as UTC text so that SQLite text comparison is chronological
DB_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(DB_FORMAT)


def from_db(ts: str | None) -> datetime | None:
    if ts is None:
        return None
    return datetime.strptime(ts, DB_FORMAT).replace(tzinfo=timezone.utc)


def after_seconds(seconds: float, start: datetime | None = None) -> datetime:
    return (start or utcnow()) + timedelta(seconds=seconds)


def parse_user_ts(value: str) -> datetime:
    """Parse a user supplied ISO-8601 timestamp.

    Accepts a trailing ``Z``; naive values are taken as UTC.
    Raises ValueError on anything else.
    """
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def display(ts: str | None) -> str:
    """Storage timestamp -> short UTC string for tables."""
    if ts is None:
        return "—"
    return from_db(ts).strftime("%Y-%m-%d %H:%M:%S UTC")
