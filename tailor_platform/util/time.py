from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_iso(dt: datetime) -> str:
    """UTC datetime as ISO-8601 string with Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(utcnow())


def iso_after(*, days: int = 0, hours: int = 0, minutes: int = 0, seconds: int = 0) -> str:
    return to_iso(utcnow() + timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds))


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    """Parse our ISO strings (with Z) or plain YYYY-MM-DD dates. Returns None when blank/invalid."""
    raw = (s or "").strip()
    if not raw:
        return None
    try:
        if len(raw) == 10:
            d = date.fromisoformat(raw)
            return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def add_months(dt: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month (Jan 31 + 1 -> Feb 28/29)."""
    total = dt.month - 1 + int(months)
    year = dt.year + total // 12
    month = total % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def month_start(dt: datetime) -> datetime:
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def days_until(target: datetime, now: Optional[datetime] = None) -> int:
    """Whole days between now and target (floor), like a calendar 'in N days'."""
    ref = now or utcnow()
    return int((target - ref).total_seconds() // 86400)
