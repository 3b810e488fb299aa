from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import AbstractSet, Dict, Mapping, Optional, Sequence, Tuple

from ..attendance.model import DailyTimeRecord, WorkSchedule
from ..common.datetime_utils import date_range
from ..core.enums import AttendanceStatus, HolidayType
from ..core.money import ZERO, round_days, round_hours
from ..employees.model import Employee
from ..leave.model import LeaveRequest
from .model import Holiday, PayPeriod

_HALF = Decimal("0.5")
_ONE = Decimal("1")
_PRESENT_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.HOLIDAY)


@dataclass(frozen=True)
class AttendanceSnapshot:
    """What one employee's DTR, leave and holidays add up to over a cutoff."""

    working_days: Decimal = ZERO
    payable_days: Decimal = ZERO
    unpaid_absence_days: Decimal = ZERO
    tardiness_mins: int = 0
    undertime_mins: int = 0
    night_diff_hours: Decimal = ZERO
    # Sum of (multiplier - 1) over holidays the employee actually worked.
    holiday_premium_factor: Decimal = ZERO


def covered_range(period: PayPeriod, employee: Employee) -> Optional[Tuple[date, date]]:
    start = max(period.cutoff_start, employee.hire_date)
    end = period.cutoff_end
    if employee.separation_date is not None:
        end = min(end, employee.separation_date)
    if end < start:
        return None
    return start, end


def is_rest_day(day: date, schedule: Optional[WorkSchedule]) -> bool:
    if schedule is None:
        return day.weekday() >= 5
    return schedule.is_rest_day(day)


def _leave_days(leaves: Sequence[LeaveRequest], start: date, end: date) -> Dict[date, LeaveRequest]:
    by_day: Dict[date, LeaveRequest] = {}
    for leave in leaves:
        for day in date_range(max(leave.start_date, start), min(leave.end_date, end)):
            by_day.setdefault(day, leave)
    return by_day


def build_snapshot(
    *,
    period: PayPeriod,
    employee: Employee,
    schedule: Optional[WorkSchedule],
    dtrs: Sequence[DailyTimeRecord],
    leaves: Sequence[LeaveRequest],
    paid_leave_type_ids: AbstractSet[int],
    holidays: Mapping[date, Holiday],
) -> AttendanceSnapshot:
    span = covered_range(period, employee)
    dtr_by_day: Dict[date, DailyTimeRecord] = {}
    leave_by_day: Dict[date, LeaveRequest] = {}
    if span is not None:
        start, end = span
        dtr_by_day = {d.attendance_date: d for d in dtrs if start <= d.attendance_date <= end}
        leave_by_day = _leave_days(leaves, start, end)

    working = payable = absent = premium = ZERO
    night = ZERO
    tardiness = undertime = 0

    for day in date_range(period.cutoff_start, period.cutoff_end):
        employed = span is not None and span[0] <= day <= span[1]
        dtr = dtr_by_day.get(day)
        if dtr is not None:
            tardiness += int(dtr.tardiness_mins or 0)
            undertime += int(dtr.undertime_mins or 0)
            night += dtr.night_diff_hours or ZERO

        if is_rest_day(day, schedule):
            continue
        working += _ONE
        # Cutoff days before hire or after separation are unpaid.
        if not employed:
            absent += _ONE
            continue
        worked = dtr is not None and dtr.attendance_status in _PRESENT_STATUSES

        holiday = holidays.get(day)
        if holiday is not None and holiday.holiday_type != HolidayType.SPECIAL_WORKING:
            payable += _ONE
            if dtr is not None and dtr.attendance_status == AttendanceStatus.PRESENT:
                premium += max(holiday.pay_multiplier - _ONE, ZERO)
            continue

        leave = leave_by_day.get(day)
        if leave is not None:
            portion = _HALF if leave.is_half_day else _ONE
            if leave.leave_type_id in paid_leave_type_ids:
                payable += portion
            else:
                absent += portion
            if leave.is_half_day:
                if worked:
                    payable += _HALF
                else:
                    absent += _HALF
            continue

        if worked:
            payable += _ONE
        else:
            absent += _ONE

    return AttendanceSnapshot(
        working_days=round_days(working),
        payable_days=round_days(payable),
        unpaid_absence_days=round_days(absent),
        tardiness_mins=tardiness,
        undertime_mins=undertime,
        night_diff_hours=round_hours(night),
        holiday_premium_factor=premium,
    )
