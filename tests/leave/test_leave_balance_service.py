from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.audit.service import AuditService
from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import CompanyRole, LeaveTransactionType, ProrationMethod
from src.hr_payroll.hr_payroll.core.exceptions import AuthorizationError, NotFoundError
from src.hr_payroll.hr_payroll.employees.model import Department, Employee
from src.hr_payroll.hr_payroll.leave.balances import LeaveBalanceService
from src.hr_payroll.hr_payroll.leave.model import LeaveBalance, LeaveType, LeaveTypePolicy

D = Decimal

VL = LeaveType(leave_type_id=1, company_id=1, code="VL", name="Vacation Leave", is_carried_over=True, max_carry_over_days=D("5"))
SL = LeaveType(leave_type_id=2, company_id=1, code="SL", name="Sick Leave")
ML = LeaveType(leave_type_id=3, company_id=1, code="ML", name="Maternity Leave")


class InMemoryLeaveTypes:
    def __init__(self, types, policies):
        self.types = types
        self.policies = policies

    def list_for_company(self, company_id, *, active_only=True):
        return list(self.types)

    def list_policies(self, leave_type_ids):
        return [p for p in self.policies if p.leave_type_id in leave_type_ids]


class InMemoryBalances:
    def __init__(self, *balances):
        self.rows = {b.balance_id: b for b in balances}
        self.transactions = []

    def get(self, *, employee_id, leave_type_id, year):
        return next(
            (b for b in self.rows.values() if (b.employee_id, b.leave_type_id, b.year) == (employee_id, leave_type_id, year)),
            None,
        )

    def get_by_id(self, balance_id):
        return self.rows.get(balance_id)

    def create(self, balance):
        balance_id = max(self.rows, default=0) + 1
        self.rows[balance_id] = replace(balance, balance_id=balance_id)
        return balance_id

    def add_transaction(self, tx):
        self.transactions.append(tx)
        return len(self.transactions)

    def list_transactions(self, balance_id):
        return [t for t in reversed(self.transactions) if t.balance_id == balance_id]

    def list_for_employee(self, *, employee_id, year):
        return [b for b in self.rows.values() if b.employee_id == employee_id and b.year == year]

    def list_for_company_year(self, *, company_id, year):
        return [b for b in self.rows.values() if b.year == year]

    def existing_keys(self, *, year, employee_ids):
        return {(b.employee_id, b.leave_type_id) for b in self.rows.values() if b.year == year and b.employee_id in employee_ids}


class InMemoryEmployees:
    def __init__(self, *employees):
        self.employees = {e.employee_id: e for e in employees}

    def list_active(self, *, company_id, department_ids=(), employee_ids=()):
        return list(self.employees.values())

    def get_by_id(self, *, company_id, employee_id, include_deleted=False):
        return self.employees.get(employee_id)


class InMemoryDepartments:
    def list_all(self, company_id):
        return [Department(department_id=1, company_id=1, code="OPS", name="Operations")]


class InMemoryAudit:
    def __init__(self):
        self.rows = []

    def insert_rows(self, rows):
        self.rows.extend(rows)


HR = Actor(user_id=2, company_id=1, company_role=CompanyRole.HR_ADMIN)

POLICIES = [
    LeaveTypePolicy(leave_type_id=1, employment_status="REGULAR", annual_entitlement=D("15")),
    LeaveTypePolicy(leave_type_id=2, employment_status="REGULAR", annual_entitlement=D("12"), proration_method=ProrationMethod.FULL),
]


def _service(*balances):
    repo = InMemoryBalances(*balances)
    employees = InMemoryEmployees(
        Employee(10, 1, "EMP-0010", "Ana", "Cruz", date(2020, 1, 6), department_id=1),
        Employee(11, 1, "EMP-0011", "Ben", "Reyes", date(2026, 7, 1)),
        Employee(12, 1, "EMP-0012", "Carla", "Diaz", date(2025, 2, 1), employment_status="PROBATIONARY"),
        Employee(13, 1, "EMP-0013", "Dan", "Lim", date(2027, 3, 1)),
    )
    service = LeaveBalanceService(
        repo, InMemoryLeaveTypes([VL, SL, ML], POLICIES), employees, InMemoryDepartments(), AuditService(InMemoryAudit())
    )
    return service, repo


def test_initialize_year_prorates_and_carries_over():
    previous = LeaveBalance(balance_id=1, employee_id=10, leave_type_id=1, year=2025, available_balance=D("8"))
    service, repo = _service(previous)

    stats, message = service.initialize_year(actor=HR, year=2026)

    assert stats.employees_considered == 3
    assert stats.balances_created == 4
    # probationary employee has no policy rows; maternity leave has none either
    assert stats.balances_skipped_no_policy == 5
    assert message == "Initialized 4 leave balance row(s) for 2026."

    vl = repo.get(employee_id=10, leave_type_id=1, year=2026)
    assert vl.opening_balance == D("5.00")
    assert vl.credits_earned == D("15.00")
    assert vl.current_balance == D("20.00")
    assert [t.transaction_type for t in repo.list_transactions(vl.balance_id)] == [
        LeaveTransactionType.ACCRUAL,
        LeaveTransactionType.CARRY_OVER,
    ]
    assert repo.get(employee_id=11, leave_type_id=1, year=2026).credits_earned == D("7.50")
    assert repo.get(employee_id=11, leave_type_id=2, year=2026).credits_earned == D("12.00")


def test_initialize_year_skips_existing_rows():
    service, _ = _service()
    service.initialize_year(actor=HR, year=2026)
    stats, message = service.initialize_year(actor=HR, year=2026)

    assert stats.balances_created == 0
    assert stats.balances_skipped_existing == 4


def test_initialize_year_requires_hr():
    service, _ = _service()
    with pytest.raises(AuthorizationError):
        service.initialize_year(actor=replace(HR, company_role=CompanyRole.PAYROLL_ADMIN), year=2026)


def test_balance_history_is_limited_to_owner_or_hr():
    service, repo = _service()
    service.initialize_year(actor=HR, year=2026)
    vl = repo.get(employee_id=10, leave_type_id=1, year=2026)

    own = Actor(user_id=9, company_id=1, company_role=CompanyRole.EMPLOYEE, employee_id=10)
    other = replace(own, employee_id=11)
    assert service.balance_history(actor=own, balance_id=vl.balance_id)
    with pytest.raises(AuthorizationError):
        service.balance_history(actor=other, balance_id=vl.balance_id)
    with pytest.raises(NotFoundError):
        service.balance_history(actor=HR, balance_id=999)
    assert {b["leave_type"] for b in service.my_balances(actor=own, year=2026)} == {"Vacation Leave", "Sick Leave"}


def test_summary_report_adds_mandatory_leave_column():
    service, _ = _service()
    service.initialize_year(actor=HR, year=2026)

    report = service.summary_report(actor=HR, year=2026)

    assert report["columns"] == ["Sick Leave", "Vacation Leave", "Mandatory Leave"]
    assert [r["employee_name"] for r in report["rows"]] == ["Cruz, Ana", "Reyes, Ben"]
    assert report["rows"][0]["department_name"] == "Operations"
    assert report["rows"][1]["department_name"] == "Unassigned"
    assert report["rows"][0]["balances"]["Vacation Leave"] == D("15.00")
