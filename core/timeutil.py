"""UTC helpers shared by the scheduler, the runner and the repository.

Everything stored or compared is UTC. Local wall-clock time only exists
inside the cadence calculator.
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TZ_UTC = timezone.utc


def utcnow() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(TZ_UTC)


def as_utc(dt: datetime | None) -> datetime | None:
    """Return ``dt`` as aware UTC; naive values are assumed to already be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=TZ_UTC)
    return dt.astimezone(TZ_UTC)


def to_storage(dt: datetime | None) -> datetime | None:
    """Naive UTC for the database column (SQLite drops offsets anyway)."""
    if dt is None:
        return None
    return as_utc(dt).replace(tzinfo=None)


def resolve_zone(name: str | None) -> ZoneInfo | None:
    if not name or not isinstance(name, str):
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def iso_utc(dt: datetime | None) -> str:
    if dt is None:
        return "never"
    return as_utc(dt).strftime("%Y-%m-%d %H:%M:%S UTC")
