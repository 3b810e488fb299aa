from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from ..core.constants import NIGHT_DIFF_END_HOUR, NIGHT_DIFF_START_HOUR


def calculate_night_diff_hours(time_in: datetime, time_out: datetime) -> Decimal:
    """Hours of ``[time_in, time_out)`` that fall inside the nightly 22:00-06:00 windows."""

    if time_out <= time_in:
        return Decimal("0")

    total_seconds = 0
    # The window that started the evening before covers early-morning time in.
    cursor = time_in.date() - timedelta(days=1)
    while cursor <= time_out.date():
        window_start = datetime.combine(cursor, datetime.min.time()).replace(hour=NIGHT_DIFF_START_HOUR)
        window_end = datetime.combine(cursor + timedelta(days=1), datetime.min.time()).replace(hour=NIGHT_DIFF_END_HOUR)
        overlap_start = max(time_in, window_start)
        overlap_end = min(time_out, window_end)
        if overlap_end > overlap_start:
            total_seconds += int((overlap_end - overlap_start).total_seconds())
        cursor += timedelta(days=1)

    return Decimal(total_seconds) / Decimal(3600)
