from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional

from ..core.exceptions import ValidationError


def parse_iso_date(value: str) -> date:
    """Parse YYYY-MM-DD string into date."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def parse_date_field(value: Optional[str], field_name: str) -> date:
    try:
        return parse_iso_date(str(value or "").strip())
    except ValueError:
        raise ValidationError(f"{field_name} must be a valid date (YYYY-MM-DD).")


def parse_time_field(value: Optional[str], field_name: str) -> Optional[time]:
    v = (value or "").strip()
    if not v:
        return None
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(v, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"{field_name} must be a valid time (HH:MM).")


def now_local() -> datetime:
    """Current local time.

    Note: Wrapped so tests can patch/mocked easier.
    """
    return datetime.now()


def inclusive_day_count(start: date, end: date) -> int:
    if end < start:
        return 0
    return (end - start).days + 1


def date_range(start: date, end: date) -> Iterator[date]:
    cursor = start
    while cursor <= end:
        yield cursor
        cursor += timedelta(days=1)


def ensure_end_after_start(start: datetime, end: datetime) -> datetime:
    """Roll an end time on/before start to the next day (night shifts)."""
    if end <= start:
        return end + timedelta(days=1)
    return end


def month_diff_inclusive(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month) + 1


def days_in_year(year: int) -> int:
    return (date(year, 12, 31) - date(year, 1, 1)).days + 1
