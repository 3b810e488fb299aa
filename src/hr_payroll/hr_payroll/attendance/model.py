from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional, Tuple

from ..core.enums import AttendanceStatus

DEFAULT_REST_DAYS = ("SATURDAY", "SUNDAY")
DAY_NAMES = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


@dataclass(frozen=True)
class WorkSchedule:
    schedule_id: int
    company_id: int
    name: str
    work_start_time: time
    work_end_time: time
    break_minutes: int = 60
    grace_minutes: int = 0
    rest_days: Tuple[str, ...] = DEFAULT_REST_DAYS

    def is_rest_day(self, day: date) -> bool:
        return DAY_NAMES[day.weekday()] in self.rest_days


@dataclass(frozen=True)
class DailyTimeRecord:
    dtr_id: int
    employee_id: int
    attendance_date: date
    attendance_status: AttendanceStatus
    actual_time_in: Optional[datetime] = None
    actual_time_out: Optional[datetime] = None
    hours_worked: Decimal = Decimal("0")
    tardiness_mins: int = 0
    undertime_mins: int = 0
    overtime_hours: Decimal = Decimal("0")
    night_diff_hours: Decimal = Decimal("0")
    remarks: Optional[str] = None


def parse_rest_days(value: Optional[str]) -> Tuple[str, ...]:
    days = tuple(d.strip().upper() for d in (value or "").split(",") if d.strip())
    return days or DEFAULT_REST_DAYS
