from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class TimeDecision:
    tardiness_mins: int = 0
    undertime_mins: int = 0
    overtime_hours: Decimal = Decimal("0")


class DtrStrategy(ABC):
    """Strategy Pattern: encapsulate how an actual time in/out is measured against the schedule."""

    @abstractmethod
    def decide_time_in(self, *, time_in: datetime, scheduled_in: Optional[datetime], grace_minutes: int) -> TimeDecision:
        raise NotImplementedError

    @abstractmethod
    def decide_time_out(self, *, time_out: datetime, scheduled_out: Optional[datetime]) -> TimeDecision:
        raise NotImplementedError


def minutes_between(start: datetime, end: datetime) -> Decimal:
    return Decimal(int((end - start).total_seconds())) / Decimal(60)
