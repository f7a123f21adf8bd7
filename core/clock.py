"""
core/clock.py -- The single server-side clock.

Every expiry decision (access token exp, refresh record expires_at, purge
cutoffs) reads the time from utcnow() here. Callers import the module, not
the function (`from core import clock; clock.utcnow()`), so tests can
monkeypatch one attribute and move time for the whole process.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize an aware datetime as ISO 8601 (UTC).

    Fixed microsecond precision keeps stored strings the same width, so the
    stores can compare them lexicographically in SQL.
    """
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    """Parse an ISO 8601 string. Naive values are treated as UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
