from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .strategies.base import DtrStrategy
from .strategies.late_strategy import LateStrategy
from .strategies.normal_strategy import NormalStrategy
from .strategies.overtime_strategy import OvertimeStrategy
from .strategies.undertime_strategy import UndertimeStrategy


@dataclass
class DtrStrategyFactory:
    """Factory Pattern: choose appropriate strategy based on rules."""

    def for_time_in(self, *, time_in: datetime, scheduled_in: Optional[datetime], grace_minutes: int) -> DtrStrategy:
        if scheduled_in is None:
            return NormalStrategy()
        if time_in > scheduled_in + timedelta(minutes=grace_minutes):
            return LateStrategy()
        return NormalStrategy()

    def for_time_out(self, *, time_out: datetime, scheduled_out: Optional[datetime]) -> DtrStrategy:
        if scheduled_out is None:
            return NormalStrategy()
        if time_out < scheduled_out:
            return UndertimeStrategy()
        if time_out > scheduled_out:
            return OvertimeStrategy()
        return NormalStrategy()
