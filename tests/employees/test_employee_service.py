from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.audit.service import AuditService
from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import AuditAction, CompanyRole, PayFrequency
from src.hr_payroll.hr_payroll.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from src.hr_payroll.hr_payroll.employees.model import Department, Employee
from src.hr_payroll.hr_payroll.employees.service import EmployeeService, normalize_employee_fields


class InMemoryEmployees:
    def __init__(self, *employees):
        self.rows = {e.employee_id: e for e in employees}

    def get_by_id(self, *, company_id, employee_id, include_deleted=False):
        e = self.rows.get(employee_id)
        if not e or e.company_id != company_id or (e.deleted_at and not include_deleted):
            return None
        return e

    def get_by_number(self, *, company_id, employee_number):
        return next((e for e in self.rows.values() if e.employee_number == employee_number), None)

    def create(self, *, company_id, fields):
        employee_id = max(self.rows, default=0) + 1
        self.rows[employee_id] = Employee(employee_id=employee_id, company_id=company_id, **fields)
        return employee_id

    def update(self, *, employee_id, fields):
        self.rows[employee_id] = replace(self.rows[employee_id], **fields)
        return True

    def soft_delete(self, *, employee_id, deleted_by, deleted_at):
        self.rows[employee_id] = replace(self.rows[employee_id], deleted_at=deleted_at, is_active=False)
        return True

    def restore(self, *, employee_id):
        self.rows[employee_id] = replace(self.rows[employee_id], deleted_at=None, is_active=True)
        return True

    def list_masterlist(self, *, company_id, search="", department_id=None, include_inactive=False, page=1, page_size=25):
        rows = [{"employee_id": e.employee_id} for e in self.rows.values() if include_inactive or e.is_active]
        return rows[(page - 1) * page_size : page * page_size], len(rows)


class InMemoryDepartments:
    def get_by_id(self, *, company_id, department_id):
        return Department(1, 1, "OPS", "Operations") if department_id == 1 else None

    def list_all(self, company_id):
        return [Department(1, 1, "OPS", "Operations")]


class InMemoryAudit:
    def __init__(self):
        self.rows = []

    def insert_rows(self, rows):
        self.rows.extend(rows)


ADMIN = Actor(user_id=1, company_id=1, company_role=CompanyRole.COMPANY_ADMIN, employee_id=1)
HR = Actor(user_id=2, company_id=1, company_role=CompanyRole.HR_ADMIN, employee_id=2)
STAFF = Actor(user_id=4, company_id=1, company_role=CompanyRole.EMPLOYEE, employee_id=3)


@pytest.fixture
def env():
    employees = InMemoryEmployees(
        Employee(1, 1, "EMP-0001", "Maria", "Santos", date(2015, 1, 5)),
        Employee(2, 1, "EMP-0002", "Jose", "Reyes", date(2018, 1, 8)),
        Employee(3, 1, "EMP-0003", "Ana", "Cruz", date(2020, 1, 6), reporting_manager_id=2),
    )
    audit = InMemoryAudit()
    return EmployeeService(employees, InMemoryDepartments(), AuditService(audit)), employees, audit.rows


def test_normalize_employee_fields():
    fields = normalize_employee_fields(
        {
            "first_name": " Ana ",
            "email": "",
            "employment_status": "part-time",
            "hire_date": "2026-10-01",
            "separation_date": "",
            "department_id": "1",
            "monthly_salary": "25000.555",
            "pay_frequency": "monthly",
            "is_overtime_eligible": "no",
        }
    )
    assert fields == {
        "first_name": "Ana",
        "email": None,
        "employment_status": "PART_TIME",
        "hire_date": date(2026, 10, 1),
        "separation_date": None,
        "department_id": 1,
        "monthly_salary": Decimal("25000.56"),
        "pay_frequency": PayFrequency.MONTHLY,
        "is_overtime_eligible": False,
    }


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"employment_status": "intern"}, "Unknown employment status"),
        ({"hire_date": "10/01/2026"}, "Hire date must be a valid date"),
        ({"monthly_salary": "-1"}, "cannot be negative"),
        ({"monthly_salary": "lots"}, "must be a number"),
        ({"monthly_salary": "NaN"}, "must be a number"),
        ({"monthly_salary": "Infinity"}, "must be a number"),
        ({"department_id": "ops"}, "must be a whole number"),
        ({"is_night_diff_eligible": "maybe"}, "must be yes or no"),
        ({"pay_frequency": "weekly"}, "Unknown pay frequency"),
        ({"last_name": "  "}, "Last name is required"),
    ],
)
def test_normalize_employee_fields_rejects_bad_values(raw, message):
    with pytest.raises(ValidationError, match=message):
        normalize_employee_fields(raw)


def test_create_employee(env):
    service, employees, audit = env
    employee_id = service.create(
        actor=HR,
        data={"employee_number": "EMP-0009", "first_name": "Leo", "last_name": "Tan", "hire_date": "2026-10-01", "department_id": "1"},
    )
    created = employees.rows[employee_id]
    assert created.employment_status == "REGULAR"
    assert created.pay_frequency == PayFrequency.SEMI_MONTHLY
    assert audit[-1].action == AuditAction.CREATE

    with pytest.raises(ValidationError, match="already in use"):
        service.create(actor=HR, data={"employee_number": "EMP-0009", "first_name": "A", "last_name": "B", "hire_date": "2026-10-01"})
    with pytest.raises(ValidationError, match="Hire date is required"):
        service.create(actor=HR, data={"employee_number": "EMP-0010", "first_name": "A", "last_name": "B"})
    with pytest.raises(ValidationError, match="Selected department does not exist"):
        service.create(
            actor=HR, data={"employee_number": "EMP-0010", "first_name": "A", "last_name": "B", "hire_date": "2026-10-01", "department_id": "7"}
        )
    with pytest.raises(AuthorizationError):
        service.create(actor=STAFF, data={})


def test_update_audits_only_changed_fields(env):
    service, employees, audit = env
    assert service.update(actor=HR, employee_id=3, data={"first_name": "Ana", "position": "Clerk"}) == 1
    assert [r.field_name for r in audit] == ["position"]
    assert service.update(actor=HR, employee_id=3, data={"position": "Clerk"}) == 0

    with pytest.raises(ValidationError, match="cannot report to themselves"):
        service.update(actor=HR, employee_id=3, data={"reporting_manager_id": "3"})
    with pytest.raises(ValidationError, match="reporting manager does not exist"):
        service.update(actor=HR, employee_id=3, data={"reporting_manager_id": "99"})


def test_delete_and_restore_are_admin_only(env):
    service, employees, _ = env
    with pytest.raises(AuthorizationError):
        service.delete(actor=HR, employee_id=3)
    with pytest.raises(AuthorizationError, match="your own"):
        service.delete(actor=ADMIN, employee_id=1)

    service.delete(actor=ADMIN, employee_id=3)
    assert isinstance(employees.rows[3].deleted_at, datetime)
    with pytest.raises(NotFoundError):
        service.get_profile(actor=HR, employee_id=3)

    service.restore(actor=ADMIN, employee_id=3)
    assert employees.rows[3].deleted_at is None
    with pytest.raises(ValidationError, match="not deleted"):
        service.restore(actor=ADMIN, employee_id=3)


def test_profile_and_masterlist_access(env):
    service, _, _ = env
    assert service.get_profile(actor=STAFF, employee_id=3).employee_number == "EMP-0003"
    with pytest.raises(AuthorizationError):
        service.get_profile(actor=STAFF, employee_id=2)

    page = service.masterlist(actor=HR, page=2, page_size=2)
    assert page["total"] == 3
    assert page["page_count"] == 2
    assert page["rows"] == [{"employee_id": 3}]
    with pytest.raises(AuthorizationError):
        service.masterlist(actor=STAFF)
