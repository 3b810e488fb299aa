from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP
from typing import Optional

from .base import DtrStrategy, TimeDecision, minutes_between


class LateStrategy(DtrStrategy):
    """Arrival beyond the grace period; tardiness counts only the minutes past grace."""

    def decide_time_in(self, *, time_in: datetime, scheduled_in: Optional[datetime], grace_minutes: int) -> TimeDecision:
        if scheduled_in is None:
            return TimeDecision()
        late_by = minutes_between(scheduled_in, time_in) - grace_minutes
        return TimeDecision(tardiness_mins=int(late_by.to_integral_value(rounding=ROUND_HALF_UP)))

    def decide_time_out(self, *, time_out: datetime, scheduled_out: Optional[datetime]) -> TimeDecision:
        return TimeDecision()
