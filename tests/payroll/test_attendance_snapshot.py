from datetime import date
from decimal import Decimal

from src.hr_payroll.hr_payroll.attendance.model import DailyTimeRecord
from src.hr_payroll.hr_payroll.core.enums import AttendanceStatus, HolidayType, PayFrequency, RequestStatus
from src.hr_payroll.hr_payroll.employees.model import Employee
from src.hr_payroll.hr_payroll.leave.model import LeaveRequest
from src.hr_payroll.hr_payroll.payroll.attendance_snapshot import build_snapshot, covered_range
from src.hr_payroll.hr_payroll.payroll.model import Holiday, PayPeriod

PAID_TYPE = 1
UNPAID_TYPE = 9

# Monday 5 Oct 2026 .. Friday 9 Oct 2026
PERIOD = PayPeriod(
    period_id=1,
    company_id=1,
    year=2026,
    period_number=19,
    pay_frequency=PayFrequency.SEMI_MONTHLY,
    cutoff_start=date(2026, 10, 5),
    cutoff_end=date(2026, 10, 9),
    period_half="FIRST",
)


def _employee(hire=date(2020, 1, 1), separation=None):
    return Employee(
        employee_id=1,
        company_id=1,
        employee_number="E1",
        first_name="A",
        last_name="B",
        hire_date=hire,
        separation_date=separation,
    )


def _dtr(day, status=AttendanceStatus.PRESENT, **kw):
    return DailyTimeRecord(dtr_id=day.day, employee_id=1, attendance_date=day, attendance_status=status, **kw)


def _leave(day, leave_type_id, half=False):
    return LeaveRequest(
        request_id=day.day,
        company_id=1,
        request_number=f"LV-{day.day}",
        employee_id=1,
        leave_type_id=leave_type_id,
        start_date=day,
        end_date=day,
        number_of_days=Decimal("0.5") if half else Decimal("1"),
        status=RequestStatus.APPROVED,
        is_half_day=half,
        half_day_period="AM" if half else None,
    )


def test_snapshot_counts_holidays_leave_and_absences():
    holidays = {date(2026, 10, 6): Holiday(date(2026, 10, 6), "Holiday", HolidayType.REGULAR, Decimal("2.00"))}
    dtrs = [
        _dtr(date(2026, 10, 5), tardiness_mins=12, night_diff_hours=Decimal("1.5")),
        _dtr(date(2026, 10, 6), undertime_mins=20),
    ]
    leaves = [
        _leave(date(2026, 10, 7), PAID_TYPE),
        _leave(date(2026, 10, 8), UNPAID_TYPE),
        _leave(date(2026, 10, 9), PAID_TYPE, half=True),
    ]

    snap = build_snapshot(
        period=PERIOD,
        employee=_employee(),
        schedule=None,
        dtrs=dtrs,
        leaves=leaves,
        paid_leave_type_ids={PAID_TYPE},
        holidays=holidays,
    )

    assert snap.working_days == Decimal("5.00")
    assert snap.payable_days == Decimal("3.50")
    assert snap.unpaid_absence_days == Decimal("1.50")
    assert snap.holiday_premium_factor == Decimal("1")
    assert snap.tardiness_mins == 12
    assert snap.undertime_mins == 20
    assert snap.night_diff_hours == Decimal("1.50")


def test_holiday_not_worked_is_still_payable_without_premium():
    holidays = {date(2026, 10, 6): Holiday(date(2026, 10, 6), "Holiday", HolidayType.SPECIAL_NON_WORKING, Decimal("1.30"))}
    dtrs = [_dtr(date(2026, 10, d)) for d in (5, 7, 8, 9)]
    snap = build_snapshot(
        period=PERIOD, employee=_employee(), schedule=None, dtrs=dtrs, leaves=(), paid_leave_type_ids=set(), holidays=holidays
    )
    assert snap.payable_days == Decimal("5.00")
    assert snap.unpaid_absence_days == 0
    assert snap.holiday_premium_factor == 0


def test_days_outside_employment_are_unpaid_absences():
    assert covered_range(PERIOD, _employee(hire=date(2026, 10, 8))) == (date(2026, 10, 8), date(2026, 10, 9))
    assert covered_range(PERIOD, _employee(separation=date(2026, 10, 6))) == (date(2026, 10, 5), date(2026, 10, 6))
    assert covered_range(PERIOD, _employee(hire=date(2026, 11, 1))) is None

    snap = build_snapshot(
        period=PERIOD,
        employee=_employee(hire=date(2026, 10, 8)),
        schedule=None,
        dtrs=[_dtr(date(2026, 10, 8))],
        leaves=(),
        paid_leave_type_ids=set(),
        holidays={},
    )
    assert snap.working_days == Decimal("5.00")
    assert snap.payable_days == Decimal("1.00")
    assert snap.unpaid_absence_days == Decimal("4.00")

    separated = build_snapshot(
        period=PERIOD,
        employee=_employee(separation=date(2026, 10, 6)),
        schedule=None,
        dtrs=[_dtr(date(2026, 10, d)) for d in range(5, 10)],
        leaves=(),
        paid_leave_type_ids=set(),
        holidays={},
    )
    assert separated.payable_days == Decimal("2.00")
    assert separated.unpaid_absence_days == Decimal("3.00")

    not_employed = build_snapshot(
        period=PERIOD,
        employee=_employee(hire=date(2026, 11, 1)),
        schedule=None,
        dtrs=(),
        leaves=(),
        paid_leave_type_ids=set(),
        holidays={},
    )
    assert not_employed.unpaid_absence_days == Decimal("5.00")
