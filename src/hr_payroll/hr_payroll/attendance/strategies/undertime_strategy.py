from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP
from typing import Optional

from .base import DtrStrategy, TimeDecision, minutes_between


class UndertimeStrategy(DtrStrategy):
    """Departure before the scheduled end."""

    def decide_time_in(self, *, time_in: datetime, scheduled_in: Optional[datetime], grace_minutes: int) -> TimeDecision:
        return TimeDecision()

    def decide_time_out(self, *, time_out: datetime, scheduled_out: Optional[datetime]) -> TimeDecision:
        if scheduled_out is None:
            return TimeDecision()
        early_by = minutes_between(time_out, scheduled_out)
        return TimeDecision(undertime_mins=int(early_by.to_integral_value(rounding=ROUND_HALF_UP)))
