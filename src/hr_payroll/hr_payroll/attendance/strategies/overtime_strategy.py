from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from .base import DtrStrategy, TimeDecision, minutes_between


class OvertimeStrategy(DtrStrategy):
    """Departure after the scheduled end; the excess is recorded as overtime hours."""

    def decide_time_in(self, *, time_in: datetime, scheduled_in: Optional[datetime], grace_minutes: int) -> TimeDecision:
        return TimeDecision()

    def decide_time_out(self, *, time_out: datetime, scheduled_out: Optional[datetime]) -> TimeDecision:
        if scheduled_out is None:
            return TimeDecision()
        return TimeDecision(overtime_hours=minutes_between(scheduled_out, time_out) / Decimal(60))
