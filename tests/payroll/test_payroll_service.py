from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.attendance.model import DailyTimeRecord
from src.hr_payroll.hr_payroll.audit.service import AuditService
from src.hr_payroll.hr_payroll.common.datetime_utils import date_range, now_local
from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import (
    AttendanceStatus,
    AuditAction,
    CompanyRole,
    LineCategory,
    PayFrequency,
    PayPeriodStatus,
    PayrollRunStatus,
    PayrollRunType,
    ProcessStepStatus,
)
from src.hr_payroll.hr_payroll.core.exceptions import AuthorizationError, DomainError, NotFoundError, ValidationError
from src.hr_payroll.hr_payroll.employees.model import Employee
from src.hr_payroll.hr_payroll.payroll import statutory
from src.hr_payroll.hr_payroll.payroll.model import PayPeriod, PayrollPolicy, StatutoryTables, TaxBracket
from src.hr_payroll.hr_payroll.payroll.service import PayrollService, next_run_number, parse_filters

D = Decimal

PERIOD = PayPeriod(
    period_id=1,
    company_id=1,
    year=2026,
    period_number=19,
    pay_frequency=PayFrequency.SEMI_MONTHLY,
    cutoff_start=date(2026, 10, 1),
    cutoff_end=date(2026, 10, 15),
    period_half="FIRST",
)

TABLES = StatutoryTables(
    tax=(TaxBracket(D("0"), D("250000"), D("0"), D("0"), D("0")),),
    settings={
        statutory.PHILHEALTH_RATE: D("0.05"),
        statutory.PHILHEALTH_FLOOR: D("10000"),
        statutory.PHILHEALTH_CEILING: D("100000"),
        statutory.PAGIBIG_EMPLOYEE_RATE: D("0.02"),
        statutory.PAGIBIG_MAX_COMPENSATION: D("10000"),
    },
)


class FakePeriods:
    def __init__(self, *periods):
        self.periods = {p.period_id: p for p in periods}
        self.status_calls = []

    def get_by_id(self, *, company_id, period_id):
        p = self.periods.get(period_id)
        return p if p and p.company_id == company_id else None

    def list_for_year(self, *, company_id, year):
        return [p for p in self.periods.values() if p.year == year]

    def set_status(self, *, period_id, status, actor_user_id, at):
        self.status_calls.append((period_id, status))
        self.periods[period_id] = replace(self.periods[period_id], status=PayPeriodStatus(status))


class FakeRuns:
    def __init__(self):
        self.runs = {}
        self.taken_numbers = set()
        self.steps = {}

    def latest_run_number(self, prefix):
        numbers = sorted(r.run_number for r in self.runs.values() if r.run_number.startswith(prefix))
        return numbers[-1] if numbers else None

    def run_number_exists(self, run_number):
        return run_number in self.taken_numbers or any(r.run_number == run_number for r in self.runs.values())

    def find_active_run(self, *, period_id):
        return next(
            (r for r in self.runs.values() if r.period_id == period_id and r.status != PayrollRunStatus.PAID),
            None,
        )

    def create(self, run):
        run_id = len(self.runs) + 1
        self.runs[run_id] = replace(run, run_id=run_id)
        return run_id

    def get(self, *, company_id, run_id):
        run = self.runs.get(run_id)
        return run if run and run.company_id == company_id else None

    def update(self, *, run_id, fields):
        self.runs[run_id] = replace(self.runs[run_id], **fields)

    def list_runs(self, *, company_id, limit=200):
        return [{"run_id": r.run_id, "run_number": r.run_number} for r in self.runs.values()]

    def create_steps(self, steps):
        for s in steps:
            self.steps[(s.run_id, s.step_number)] = s

    def list_steps(self, run_id):
        return [s for (rid, _), s in self.steps.items() if rid == run_id]

    def update_step(self, *, run_id, step_number, fields):
        self.steps[(run_id, step_number)] = replace(self.steps[(run_id, step_number)], **fields)

    def step(self, run_id, number):
        return self.steps[(run_id, number)]


class FakePayslips:
    def __init__(self):
        self.payslips = {}
        self.next_line = 100

    def replace_for_run(self, run_id, payslips):
        self.payslips = {k: v for k, v in self.payslips.items() if v.run_id != run_id}
        for p in payslips:
            payslip_id = len(self.payslips) + 1
            lines = []
            for line in p.lines:
                self.next_line += 1
                lines.append(replace(line, line_id=self.next_line))
            self.payslips[payslip_id] = replace(p, payslip_id=payslip_id, lines=tuple(lines))

    def list_for_run(self, run_id):
        return [p for p in self.payslips.values() if p.run_id == run_id]

    def count_for_run(self, run_id):
        return len(self.list_for_run(run_id))

    def get(self, *, run_id, payslip_id):
        p = self.payslips.get(payslip_id)
        return p if p and p.run_id == run_id else None

    def get_for_employee(self, *, employee_id, payslip_id):
        p = self.payslips.get(payslip_id)
        return p if p and p.employee_id == employee_id else None

    def add_line(self, payslip_id, line):
        self.next_line += 1
        return self.next_line

    def delete_line(self, *, payslip_id, line_id):
        return True

    def save_totals(self, payslip):
        self.payslips[payslip.payslip_id] = payslip

    def mark_generated(self, *, run_id, generated_at):
        for k, p in list(self.payslips.items()):
            if p.run_id == run_id:
                self.payslips[k] = replace(p, generated_at=generated_at)

    def list_generated_for_employee(self, employee_id, *, limit=200):
        return [{"payslip_id": p.payslip_id} for p in self.payslips.values() if p.employee_id == employee_id and p.generated_at]

    def ytd_earnings(self, *, company_id, year, employee_ids):
        return {}

    def register_rows(self, run_id):
        return [
            {
                "payslip_id": p.payslip_id,
                "employee_number": f"EMP-{p.employee_id:04d}",
                "employee_name": "Cruz, Ana",
                "department_name": "Operations",
                "cutoff_start": PERIOD.cutoff_start,
                "cutoff_end": PERIOD.cutoff_end,
            }
            for p in self.list_for_run(run_id)
        ]


class FakeSettings:
    def __init__(self, tables=TABLES):
        self.tables = tables

    def get_policy(self, company_id):
        return PayrollPolicy(company_id=company_id)

    def list_holidays(self, *, company_id, start, end):
        return []

    def overtime_rates(self, company_id):
        return {}

    def attendance_rules(self, company_id):
        return []

    def statutory_tables(self):
        return self.tables

    def recurring_deductions(self, employee_ids):
        return []


class FakeEmployees:
    def __init__(self, *employees):
        self.employees = list(employees)

    def list_active(self, *, company_id, department_ids=(), employee_ids=()):
        rows = [e for e in self.employees if e.company_id == company_id]
        if department_ids:
            rows = [e for e in rows if e.department_id in department_ids]
        if employee_ids:
            rows = [e for e in rows if e.employee_id in employee_ids]
        return rows


class FakeSchedules:
    def list_all(self, company_id):
        return []


class FakeDtrs:
    def list_for_employees(self, *, employee_ids, start, end):
        return [
            DailyTimeRecord(dtr_id=day.toordinal() + emp, employee_id=emp, attendance_date=day, attendance_status=AttendanceStatus.PRESENT)
            for emp in employee_ids
            for day in date_range(start, end)
            if day.weekday() < 5
        ]


class FakeLeaveTypes:
    def list_for_company(self, company_id, *, active_only=True):
        return []


class FakePending:
    def __init__(self, pending=0):
        self.pending = pending

    def list_approved_in_range(self, *, employee_ids, start, end):
        return []

    def count_pending_in_range(self, *, company_id, start, end):
        return self.pending


class FakeAuditRepo:
    def __init__(self):
        self.rows = []

    def insert_rows(self, rows):
        self.rows.extend(rows)

    def list_logs(self, **kwargs):
        return []


def _employee(employee_id, salary="26100", **overrides):
    data = dict(
        employee_id=employee_id,
        company_id=1,
        employee_number=f"EMP-{employee_id:04d}",
        first_name="Ana",
        last_name="Cruz",
        hire_date=date(2020, 1, 6),
        monthly_salary=D(salary) if salary else None,
        department_id=1,
    )
    data.update(overrides)
    return Employee(**data)


PAYROLL = Actor(user_id=3, company_id=1, company_role=CompanyRole.PAYROLL_ADMIN)


@pytest.fixture
def env():
    audit_repo = FakeAuditRepo()
    env = dict(
        periods=FakePeriods(PERIOD),
        runs=FakeRuns(),
        payslips=FakePayslips(),
        settings=FakeSettings(),
        employees=FakeEmployees(_employee(1), _employee(2, department_id=2)),
        leave_requests=FakePending(),
        overtime_requests=FakePending(),
    )
    service = PayrollService(
        schedules=FakeSchedules(),
        dtrs=FakeDtrs(),
        leave_types=FakeLeaveTypes(),
        audit=AuditService(audit_repo),
        **env,
    )
    env.update(service=service, audit_rows=audit_repo.rows)
    return env


def _advance_to_review(service, run_id):
    service.validate(actor=PAYROLL, run_id=run_id)
    service.proceed_to_calculate(actor=PAYROLL, run_id=run_id)
    service.calculate(actor=PAYROLL, run_id=run_id)
    return service.proceed_to_review(actor=PAYROLL, run_id=run_id)


def test_next_run_number_continues_the_year_sequence():
    assert next_run_number(2026, None) == "RUN-2026-00001"
    assert next_run_number(2026, "RUN-2026-00041") == "RUN-2026-00042"
    assert next_run_number(2026, "RUN-2026-00041", attempt=2) == "RUN-2026-00044"


def test_create_run_skips_run_numbers_already_taken(env):
    year = now_local().year
    env["runs"].taken_numbers = {f"RUN-{year}-00001", f"RUN-{year}-00002"}
    run, _ = env["service"].create_run(actor=PAYROLL, period_id=1)
    assert run.run_number == f"RUN-{year}-00003"

    env["runs"].taken_numbers = {f"RUN-{year}-{n:05d}" for n in range(1, 20)}
    env["runs"].runs.clear()
    with pytest.raises(DomainError, match="unique payroll run number"):
        env["service"].create_run(actor=PAYROLL, period_id=1)


def test_parse_filters_reads_department_and_employee_ids():
    assert parse_filters('{"department_ids": [2, "3"], "employee_ids": []}') == ([2, 3], [])
    assert parse_filters(None) == ([], [])


def test_create_run_sets_up_six_steps(env):
    service, runs = env["service"], env["runs"]
    run, message = service.create_run(actor=PAYROLL, period_id=1)

    assert message == f"Payroll run {run.run_number} created."
    assert run.status == PayrollRunStatus.DRAFT
    assert run.current_step == 2
    assert run.total_employees == 2
    assert runs.step(run.run_id, 1).is_completed
    assert runs.step(run.run_id, 2).status == ProcessStepStatus.IN_PROGRESS
    assert [runs.step(run.run_id, n).status for n in (3, 4, 5, 6)] == [ProcessStepStatus.PENDING] * 4
    assert env["audit_rows"][0].action == AuditAction.CREATE


def test_create_run_honours_department_filter(env):
    run, _ = env["service"].create_run(actor=PAYROLL, period_id=1, department_ids=[2])
    assert run.total_employees == 1
    assert parse_filters(run.filters_json) == ([2], [])


def test_create_run_rejects_second_active_run_in_period(env):
    service = env["service"]
    first, _ = service.create_run(actor=PAYROLL, period_id=1)
    for run_type in PayrollRunType:
        with pytest.raises(ValidationError, match=first.run_number):
            service.create_run(actor=PAYROLL, period_id=1, run_type=run_type)
    assert len(env["runs"].runs) == 1


def test_trial_run_blocks_a_regular_run_until_closed(env):
    service = env["service"]
    trial, _ = service.create_run(actor=PAYROLL, period_id=1, run_type=PayrollRunType.TRIAL_RUN)
    with pytest.raises(ValidationError, match="already in progress"):
        service.create_run(actor=PAYROLL, period_id=1)

    env["runs"].update(run_id=trial.run_id, fields={"status": PayrollRunStatus.PAID})
    regular, _ = service.create_run(actor=PAYROLL, period_id=1)
    assert regular.run_type == PayrollRunType.REGULAR


def test_create_run_requires_open_period_and_payroll_role(env):
    env["periods"].periods[1] = replace(PERIOD, status=PayPeriodStatus.LOCKED)
    with pytest.raises(ValidationError, match="not open"):
        env["service"].create_run(actor=PAYROLL, period_id=1)
    with pytest.raises(NotFoundError):
        env["service"].create_run(actor=PAYROLL, period_id=99)
    with pytest.raises(AuthorizationError):
        env["service"].create_run(actor=replace(PAYROLL, company_role=CompanyRole.EMPLOYEE), period_id=1)


def test_create_run_without_eligible_employees(env):
    env["employees"].employees = [_employee(1, hire_date=date(2026, 11, 1))]
    with pytest.raises(ValidationError, match="No eligible employees"):
        env["service"].create_run(actor=PAYROLL, period_id=1)


def test_validate_reports_warnings_without_failing(env):
    env["leave_requests"].pending = 2
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)

    run, message, warnings = service.validate(actor=PAYROLL, run_id=run.run_id)

    assert message == f"Validation completed with {len(warnings)} warning(s)."
    assert "SSS contribution table is not configured." in warnings
    assert "2 leave request(s) in this period are still pending." in warnings
    assert run.status == PayrollRunStatus.VALIDATING
    assert env["runs"].step(run.run_id, 2).is_completed


def test_validate_fails_step_when_salary_missing(env):
    env["employees"].employees.append(_employee(3, salary=None))
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)

    with pytest.raises(ValidationError, match="EMP-0003 has no monthly salary"):
        service.validate(actor=PAYROLL, run_id=run.run_id)
    step = env["runs"].step(run.run_id, 2)
    assert step.status == ProcessStepStatus.FAILED
    assert not step.is_completed
    with pytest.raises(ValidationError, match="Validate step must be completed first."):
        service.proceed_to_calculate(actor=PAYROLL, run_id=run.run_id)


def test_calculate_requires_validation(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    with pytest.raises(ValidationError, match="must pass validation"):
        service.calculate(actor=PAYROLL, run_id=run.run_id)


def test_full_run_lifecycle_locks_period(env):
    service, runs = env["service"], env["runs"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    run_id = run.run_id

    run, message = _advance_to_review(service, run_id)
    assert message == "Calculation reviewed. Proceeded to review/adjust step."
    assert run.status == PayrollRunStatus.FOR_REVIEW
    assert run.current_step == 4
    stored = runs.runs[run_id]
    assert stored.total_employees == 2
    assert stored.total_net_pay == sum(p.net_pay for p in env["payslips"].list_for_run(run_id))
    assert stored.total_gross_pay > 0

    run, _ = service.complete_review(actor=PAYROLL, run_id=run_id)
    assert run.current_step == 5
    run, _ = service.generate_payslips(actor=PAYROLL, run_id=run_id)
    assert run.status == PayrollRunStatus.APPROVED
    assert all(p.generated_at for p in env["payslips"].list_for_run(run_id))

    run, _ = service.proceed_to_close(actor=PAYROLL, run_id=run_id)
    assert run.status == PayrollRunStatus.FOR_PAYMENT
    run, message = service.close(actor=PAYROLL, run_id=run_id)
    assert message == "Payroll run closed successfully."
    assert run.status == PayrollRunStatus.PAID
    assert all(runs.step(run_id, n).is_completed for n in range(1, 7))
    assert env["periods"].periods[1].status == PayPeriodStatus.LOCKED

    again, message = service.close(actor=PAYROLL, run_id=run_id)
    assert message == "Payroll run is already closed and locked."


def test_reopen_unlocks_period_and_resets_steps(env):
    service, runs = env["service"], env["runs"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    _advance_to_review(service, run.run_id)
    service.complete_review(actor=PAYROLL, run_id=run.run_id)
    service.generate_payslips(actor=PAYROLL, run_id=run.run_id)
    service.close(actor=PAYROLL, run_id=run.run_id)

    run, message = service.reopen(actor=PAYROLL, run_id=run.run_id)

    assert message == "Payroll run reopened for review."
    assert run.status == PayrollRunStatus.FOR_REVIEW
    assert run.current_step == 4
    assert run.paid_at is None
    assert runs.step(run.run_id, 5).status == ProcessStepStatus.PENDING
    assert env["periods"].periods[1].status == PayPeriodStatus.OPEN


def test_trial_run_close_keeps_period_open(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1, run_type=PayrollRunType.TRIAL_RUN)
    _advance_to_review(service, run.run_id)
    service.complete_review(actor=PAYROLL, run_id=run.run_id)
    service.generate_payslips(actor=PAYROLL, run_id=run.run_id)
    service.close(actor=PAYROLL, run_id=run.run_id)

    assert env["periods"].status_calls == []


def test_reopen_rejects_runs_in_progress(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    with pytest.raises(ValidationError, match="Only approved/paid"):
        service.reopen(actor=PAYROLL, run_id=run.run_id)


def test_adjustments_update_net_pay(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    _advance_to_review(service, run.run_id)
    payslip = env["payslips"].list_for_run(run.run_id)[0]

    updated, message = service.add_adjustment(
        actor=PAYROLL,
        run_id=run.run_id,
        payslip_id=payslip.payslip_id,
        category=LineCategory.EARNING,
        name="Meal allowance",
        amount="500",
    )
    assert updated.net_pay == payslip.net_pay + D("500.00")
    assert message.startswith("Adjustment added. New net pay is PHP ")
    manual = [l for l in updated.lines if l.is_manual]
    assert len(manual) == 1 and not manual[0].is_taxable

    removed, _ = service.remove_adjustment(
        actor=PAYROLL, run_id=run.run_id, payslip_id=payslip.payslip_id, line_id=manual[0].line_id
    )
    assert removed.net_pay == payslip.net_pay


def test_adjustments_reject_bad_input_and_locked_runs(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    _advance_to_review(service, run.run_id)
    payslip = env["payslips"].list_for_run(run.run_id)[0]

    with pytest.raises(ValidationError):
        service.add_adjustment(
            actor=PAYROLL, run_id=run.run_id, payslip_id=payslip.payslip_id, category=LineCategory.DEDUCTION, name="X", amount="0"
        )
    with pytest.raises(NotFoundError, match="Adjustment not found."):
        service.remove_adjustment(actor=PAYROLL, run_id=run.run_id, payslip_id=payslip.payslip_id, line_id=payslip.lines[0].line_id)

    service.complete_review(actor=PAYROLL, run_id=run.run_id)
    with pytest.raises(ValidationError, match="no longer editable"):
        service.add_adjustment(
            actor=PAYROLL, run_id=run.run_id, payslip_id=payslip.payslip_id, category=LineCategory.EARNING, name="X", amount="1"
        )


def test_generate_requires_completed_review(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    _advance_to_review(service, run.run_id)
    with pytest.raises(ValidationError, match="Review and adjustment step must be completed first."):
        service.generate_payslips(actor=PAYROLL, run_id=run.run_id)
    with pytest.raises(ValidationError, match="not in a closable state"):
        service.close(actor=PAYROLL, run_id=run.run_id)


def test_employee_sees_only_generated_payslips(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    _advance_to_review(service, run.run_id)
    payslip = env["payslips"].list_for_run(run.run_id)[0]
    employee = Actor(user_id=9, company_id=1, company_role=CompanyRole.EMPLOYEE, employee_id=payslip.employee_id)

    with pytest.raises(NotFoundError):
        service.my_payslip(actor=employee, payslip_id=payslip.payslip_id)

    service.complete_review(actor=PAYROLL, run_id=run.run_id)
    service.generate_payslips(actor=PAYROLL, run_id=run.run_id)
    assert service.my_payslip(actor=employee, payslip_id=payslip.payslip_id).payslip_id == payslip.payslip_id
    assert service.my_payslips(actor=employee) == [{"payslip_id": payslip.payslip_id}]


def test_register_csv_is_named_after_run(env):
    service = env["service"]
    run, _ = service.create_run(actor=PAYROLL, period_id=1)
    _advance_to_review(service, run.run_id)

    filename, content = service.register_csv(actor=PAYROLL, run_id=run.run_id)

    assert filename == f"payroll-register-{run.run_number}.csv"
    assert "GRAND TOTAL" in content
