from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

import pytest

from src.hr_payroll.hr_payroll.attendance.model import DailyTimeRecord, WorkSchedule
from src.hr_payroll.hr_payroll.attendance.service import AttendanceService
from src.hr_payroll.hr_payroll.audit.service import AuditService
from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import AttendanceStatus, AuditAction, CompanyRole, LeaveTransactionType
from src.hr_payroll.hr_payroll.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from src.hr_payroll.hr_payroll.employees.model import Employee
from src.hr_payroll.hr_payroll.leave.ledger import LeaveLedger
from src.hr_payroll.hr_payroll.leave.model import LeaveBalance, LeaveType

D = Decimal

VL = LeaveType(leave_type_id=1, company_id=1, code="VL", name="Vacation Leave")
SL = LeaveType(leave_type_id=2, company_id=1, code="SL", name="Sick Leave")
LWOP = LeaveType(leave_type_id=3, company_id=None, code="LWOP", name="Leave Without Pay", is_paid=False)

SCHEDULE = WorkSchedule(
    schedule_id=1,
    company_id=1,
    name="Day shift",
    work_start_time=time(8, 0),
    work_end_time=time(17, 0),
    break_minutes=60,
    grace_minutes=5,
)
NIGHT = WorkSchedule(
    schedule_id=2,
    company_id=1,
    name="Night shift",
    work_start_time=time(22, 0),
    work_end_time=time(7, 0),
    break_minutes=60,
)


class InMemoryDtr:
    def __init__(self):
        self.rows: dict[tuple[int, date], DailyTimeRecord] = {}

    def get_for_employee_and_date(self, employee_id: int, attendance_date: date) -> Optional[DailyTimeRecord]:
        return self.rows.get((employee_id, attendance_date))

    def upsert(self, *, employee_id, attendance_date, fields, updated_by):
        existing = self.rows.get((employee_id, attendance_date))
        dtr_id = existing.dtr_id if existing else len(self.rows) + 1
        base = existing or DailyTimeRecord(dtr_id, employee_id, attendance_date, AttendanceStatus.ABSENT)
        self.rows[(employee_id, attendance_date)] = replace(base, **fields)
        return dtr_id

    def list_for_employees(self, *, employee_ids, start, end):
        return [r for (emp, day), r in sorted(self.rows.items()) if emp in employee_ids and start <= day <= end]

    def list_export_rows(self, *, company_id, start, end):
        return [
            {
                "attendance_date": r.attendance_date,
                "employee_number": "EMP-0010",
                "first_name": "Ana",
                "last_name": "Cruz",
                "department_name": None,
                "actual_time_in": r.actual_time_in,
                "actual_time_out": r.actual_time_out,
                "hours_worked": r.hours_worked,
                "tardiness_mins": r.tardiness_mins,
                "undertime_mins": r.undertime_mins,
                "overtime_hours": r.overtime_hours,
                "night_diff_hours": r.night_diff_hours,
                "attendance_status": r.attendance_status.value,
                "remarks": r.remarks,
            }
            for r in self.rows.values()
        ]


class InMemorySchedules:
    def __init__(self, *schedules):
        self.schedules = {s.schedule_id: s for s in schedules}

    def get_by_id(self, schedule_id):
        return self.schedules.get(schedule_id)

    def list_all(self, company_id):
        return list(self.schedules.values())


class InMemoryEmployees:
    def __init__(self, *employees):
        self.employees = {e.employee_id: e for e in employees}

    def get_by_id(self, *, company_id, employee_id):
        e = self.employees.get(employee_id)
        return e if e and e.company_id == company_id else None


class InMemoryLeaveTypes:
    def __init__(self, *types):
        self.types = {t.leave_type_id: t for t in types}

    def get_by_id(self, *, company_id, leave_type_id):
        return self.types.get(leave_type_id)


class InMemoryBalances:
    def __init__(self, *balances):
        self.balances = {b.balance_id: b for b in balances}
        self.transactions = []

    def get(self, *, employee_id, leave_type_id, year):
        for b in self.balances.values():
            if (b.employee_id, b.leave_type_id, b.year) == (employee_id, leave_type_id, year):
                return b
        return None

    def get_by_id(self, balance_id):
        return self.balances.get(balance_id)

    def save_amounts(self, balance):
        self.balances[balance.balance_id] = balance

    def add_transaction(self, tx):
        self.transactions.append(tx)
        return len(self.transactions)

    def latest_transaction_for(self, *, reference_type, reference_id):
        matches = [t for t in self.transactions if (t.reference_type, t.reference_id) == (reference_type, reference_id)]
        return matches[-1] if matches else None


class InMemoryAudit:
    def __init__(self):
        self.rows = []

    def insert_rows(self, rows):
        self.rows.extend(rows)


HR = Actor(user_id=2, company_id=1, company_role=CompanyRole.HR_ADMIN)
EMPLOYEE = Actor(user_id=4, company_id=1, company_role=CompanyRole.EMPLOYEE, employee_id=10)


def _employee(employee_id=10, schedule_id=1):
    return Employee(
        employee_id=employee_id,
        company_id=1,
        employee_number=f"EMP-{employee_id:04d}",
        first_name="Ana",
        last_name="Cruz",
        hire_date=date(2020, 1, 6),
        work_schedule_id=schedule_id,
    )


@pytest.fixture
def svc():
    dtr = InMemoryDtr()
    audit = InMemoryAudit()
    balances = InMemoryBalances(
        LeaveBalance(balance_id=1, employee_id=10, leave_type_id=1, year=2026, current_balance=D("5"), available_balance=D("5")),
        LeaveBalance(
            balance_id=2,
            employee_id=10,
            leave_type_id=2,
            year=2026,
            current_balance=D("3"),
            pending_requests=D("2"),
            available_balance=D("1"),
        ),
    )
    service = AttendanceService(
        dtr,
        InMemoryEmployees(_employee(), _employee(11, schedule_id=2), _employee(12, schedule_id=None)),
        InMemorySchedules(SCHEDULE, NIGHT),
        InMemoryLeaveTypes(VL, SL, LWOP),
        LeaveLedger(balances),
        AuditService(audit),
    )
    service.dtr = dtr
    service.audit_rows = audit.rows
    service.balances = balances
    return service


def test_late_arrival_and_overtime_departure(svc):
    created = svc.update_dtr(
        actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="present", time_in="08:20", time_out="18:30"
    )

    row = svc.dtr.get_for_employee_and_date(10, date(2026, 10, 5))
    assert created is True
    assert row.attendance_status == AttendanceStatus.PRESENT
    assert row.tardiness_mins == 15
    assert row.undertime_mins == 0
    assert row.overtime_hours == Decimal("1.5")
    assert row.hours_worked == Decimal("9.17")
    assert svc.audit_rows[0].action == AuditAction.CREATE


def test_early_departure_records_undertime(svc):
    svc.update_dtr(
        actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="PRESENT", time_in="08:00", time_out="16:00"
    )
    row = svc.dtr.get_for_employee_and_date(10, date(2026, 10, 5))
    assert row.tardiness_mins == 0
    assert row.undertime_mins == 60


def test_rest_day_has_no_tardiness(svc):
    # 2026-10-10 is a Saturday
    svc.update_dtr(
        actor=HR, employee_id=10, attendance_date=date(2026, 10, 10), attendance_status="PRESENT", time_in="10:00", time_out="12:00"
    )
    row = svc.dtr.get_for_employee_and_date(10, date(2026, 10, 10))
    assert row.tardiness_mins == 0
    assert row.overtime_hours == 0


def test_night_shift_rolls_time_out_to_next_day(svc):
    svc.update_dtr(
        actor=HR, employee_id=11, attendance_date=date(2026, 10, 5), attendance_status="PRESENT", time_in="22:00", time_out="07:00"
    )
    row = svc.dtr.get_for_employee_and_date(11, date(2026, 10, 5))
    assert row.actual_time_out == datetime(2026, 10, 6, 7, 0)
    assert row.hours_worked == 8
    assert row.night_diff_hours == 8
    assert row.undertime_mins == 0


def test_correction_updates_existing_row_and_audits_changes(svc):
    svc.update_dtr(actor=HR, employee_id=12, attendance_date=date(2026, 10, 5), attendance_status="ABSENT")
    created = svc.update_dtr(
        actor=HR,
        employee_id=12,
        attendance_date=date(2026, 10, 5),
        attendance_status="PRESENT",
        time_in="08:00",
        time_out="17:00",
        remarks="Forgot to clock in",
    )
    assert created is False
    updates = [r for r in svc.audit_rows if r.action == AuditAction.UPDATE]
    assert {r.field_name for r in updates} >= {"attendance_status", "actual_time_in", "remarks"}


def test_update_dtr_validation(svc):
    with pytest.raises(AuthorizationError):
        svc.update_dtr(actor=EMPLOYEE, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="ABSENT")
    with pytest.raises(ValidationError, match="Invalid attendance status."):
        svc.update_dtr(actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="SICK")
    with pytest.raises(ValidationError, match="Both time in and time out"):
        svc.update_dtr(actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="PRESENT", time_in="08:00")
    with pytest.raises(ValidationError, match="Present status requires"):
        svc.update_dtr(actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="PRESENT")
    with pytest.raises(ValidationError, match="valid time"):
        svc.update_dtr(
            actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="PRESENT", time_in="8am", time_out="17:00"
        )
    with pytest.raises(NotFoundError):
        svc.update_dtr(actor=HR, employee_id=99, attendance_date=date(2026, 10, 5), attendance_status="ABSENT")


def test_employee_reads_only_own_logs(svc):
    svc.update_dtr(actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="ABSENT")

    logs = svc.get_logs(actor=EMPLOYEE, employee_id=10, start=date(2026, 10, 1), end=date(2026, 10, 31))
    assert [l["status"] for l in logs] == ["ABSENT"]
    assert logs[0]["time_in"] == "-"

    with pytest.raises(AuthorizationError):
        svc.get_logs(actor=EMPLOYEE, employee_id=11, start=date(2026, 10, 1), end=date(2026, 10, 31))
    with pytest.raises(ValidationError):
        svc.get_logs(actor=HR, employee_id=10, start=date(2026, 10, 31), end=date(2026, 10, 1))


def test_export_csv(svc):
    svc.update_dtr(
        actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="PRESENT", time_in="08:20", time_out="17:00"
    )
    lines = svc.export_csv(actor=HR, start=date(2026, 10, 1), end=date(2026, 10, 31)).splitlines()

    assert lines[0].startswith("Date,Employee Number,Employee Name")
    assert lines[1].startswith('2026-10-05,EMP-0010,"Cruz, Ana",,08:20,17:00')
    with pytest.raises(ValidationError, match="one year"):
        svc.export_csv(actor=HR, start=date(2025, 1, 1), end=date(2026, 10, 31))


def _mark_leave(svc, **kwargs):
    data = dict(actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="ON_LEAVE")
    data.update(kwargs)
    return svc.update_dtr(**data)


def test_on_leave_requires_an_available_leave_type(svc):
    with pytest.raises(ValidationError, match="Leave type is required"):
        _mark_leave(svc)
    with pytest.raises(ValidationError, match="not available"):
        _mark_leave(svc, leave_type_id=99)
    with pytest.raises(ValidationError, match="FULL or HALF"):
        _mark_leave(svc, leave_type_id=1, day_fraction="QUARTER")
    assert svc.balances.transactions == []


def test_on_leave_deducts_and_reverses_manual_usage(svc):
    _mark_leave(svc, leave_type_id=1, day_fraction="HALF")
    vl = svc.balances.get_by_id(1)
    assert vl.current_balance == D("4.50")
    assert vl.credits_used == D("0.50")
    assert vl.available_balance == D("4.50")
    usage = svc.balances.transactions[-1]
    assert usage.transaction_type == LeaveTransactionType.USAGE
    assert usage.reference_type == "DTR_MANUAL_LEAVE"

    # same type and fraction again leaves the ledger alone
    _mark_leave(svc, leave_type_id=1, day_fraction="half", remarks="Doctor visit")
    assert len(svc.balances.transactions) == 1

    # widening to a full day reverses the half day, then charges one day
    _mark_leave(svc, day_fraction="FULL")
    assert [t.transaction_type for t in svc.balances.transactions] == [
        LeaveTransactionType.USAGE,
        LeaveTransactionType.ADJUSTMENT,
        LeaveTransactionType.USAGE,
    ]
    assert svc.balances.get_by_id(1).current_balance == D("4.00")

    svc.update_dtr(actor=HR, employee_id=10, attendance_date=date(2026, 10, 5), attendance_status="ABSENT")
    vl = svc.balances.get_by_id(1)
    assert vl.current_balance == D("5.00")
    assert vl.credits_used == D("0.00")
    leave_changes = {r.field_name: r.new_value for r in svc.audit_rows if (r.field_name or "").startswith("manual_leave")}
    assert leave_changes == {"manual_leave_type_id": None, "manual_leave_days": "0"}


def test_on_leave_switching_to_unpaid_leave_returns_the_day(svc):
    _mark_leave(svc, leave_type_id=1)
    assert svc.balances.get_by_id(1).current_balance == D("4.00")

    _mark_leave(svc, leave_type_id=3)

    assert svc.balances.get_by_id(1).current_balance == D("5.00")
    assert svc.balances.transactions[-1].transaction_type == LeaveTransactionType.ADJUSTMENT


def test_on_leave_respects_pending_reservations(svc):
    _mark_leave(svc, leave_type_id=2, attendance_date=date(2026, 10, 6))
    sl = svc.balances.get_by_id(2)
    assert sl.current_balance == D("2.00")
    assert sl.available_balance == D("0.00")

    with pytest.raises(ValidationError, match="after pending requests"):
        _mark_leave(svc, leave_type_id=2, attendance_date=date(2026, 10, 7))
