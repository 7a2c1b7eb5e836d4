"""Time utilities (UTC now, naive-datetime normalisation, calendar-day bounds)."""
from __future__ import annotations
from datetime import date, datetime, time, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime | None) -> datetime | None:
    """sqlite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def end_of_day(day: date) -> datetime:
    """Last instant of ``day`` in UTC. A campaign ending on ``day`` is still open during it."""
    return datetime.combine(day, time.max, tzinfo=timezone.utc)

__all__ = ["utc_now", "ensure_utc", "end_of_day"]
