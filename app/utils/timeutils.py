"""Conversions between epoch seconds (cache clock) and aware datetimes (store)."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dt_from_epoch(epoch_s: float) -> datetime:
    """Epoch seconds -> UTC-aware datetime."""
    return datetime.fromtimestamp(epoch_s, tz=timezone.utc)


def epoch_from_dt(dt: datetime) -> float:
    """
    Datetime -> epoch seconds.

    Naive values are treated as UTC: SQLite hands back naive datetimes even
    for DateTime(timezone=True) columns.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
