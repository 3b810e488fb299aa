from __future__ import annotations

from datetime import datetime
from typing import Optional

from .base import DtrStrategy, TimeDecision


class NormalStrategy(DtrStrategy):
    """On-time arrival, departure at the scheduled end (or no schedule)."""

    def decide_time_in(self, *, time_in: datetime, scheduled_in: Optional[datetime], grace_minutes: int) -> TimeDecision:
        return TimeDecision()

    def decide_time_out(self, *, time_out: datetime, scheduled_out: Optional[datetime]) -> TimeDecision:
        return TimeDecision()
