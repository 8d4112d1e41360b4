from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


# Preset windows accepted by the list/archive endpoints
DATE_RANGE_PRESETS = {
    "today": 0,
    "last_7_days": 7,
    "last_30_days": 30,
    "last_90_days": 90,
}


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a YYYY-MM-DD string (or the date part of an ISO datetime).

    - None / "" -> None
    - Raises ValueError on anything else that does not parse
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def preset_window_start(preset: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Start of a named date window, as a UTC-naive midnight.

    'today' starts at today's midnight; 'last_N_days' starts N days before it.
    Unknown presets return None so callers can ignore them.
    """
    if preset not in DATE_RANGE_PRESETS:
        return None
    now = now or utcnow()
    midnight = datetime.combine(now.date(), time.min)
    return midnight - timedelta(days=DATE_RANGE_PRESETS[preset])


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Inclusive [start, end] days as a half-open datetime interval."""
    return datetime.combine(start, time.min), datetime.combine(end + timedelta(days=1), time.min)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()
