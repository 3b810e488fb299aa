from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.audit.service import AuditService
from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import CompanyRole
from src.hr_payroll.hr_payroll.core.exceptions import AuthorizationError, ValidationError
from src.hr_payroll.hr_payroll.employees.bulk_csv import (
    TEMPLATE_HEADERS,
    EmployeeBulkUpdateService,
    build_template_csv,
    normalize_header_key,
    parse_csv_rows,
)
from src.hr_payroll.hr_payroll.employees.model import Department, Employee
from src.hr_payroll.hr_payroll.employees.service import EmployeeService


class InMemoryEmployees:
    def __init__(self, *employees):
        self.rows = {e.employee_id: e for e in employees}

    def get_by_id(self, *, company_id, employee_id, include_deleted=False):
        e = self.rows.get(employee_id)
        return e if e and (include_deleted or e.deleted_at is None) else None

    def get_by_number(self, *, company_id, employee_number):
        return next((e for e in self.rows.values() if e.employee_number == employee_number), None)

    def update(self, *, employee_id, fields):
        self.rows[employee_id] = replace(self.rows[employee_id], **fields)
        return True


class InMemoryDepartments:
    DEPARTMENTS = [Department(1, 1, "OPS", "Operations"), Department(2, 1, "FIN", "Finance")]

    def list_all(self, company_id):
        return self.DEPARTMENTS

    def get_by_id(self, *, company_id, department_id):
        return next((d for d in self.DEPARTMENTS if d.department_id == department_id), None)


class InMemoryAudit:
    def insert_rows(self, rows):
        pass


HR = Actor(user_id=2, company_id=1, company_role=CompanyRole.HR_ADMIN)


@pytest.fixture
def env():
    employees = InMemoryEmployees(
        Employee(1, 1, "EMP-0001", "Maria", "Santos", date(2015, 1, 5)),
        Employee(2, 1, "EMP-0002", "Ana", "Cruz", date(2020, 1, 6), middle_name="Lopez", department_id=1),
        Employee(3, 1, "EMP-0003", "Old", "Timer", date(2010, 1, 4), deleted_at=datetime(2025, 1, 1)),
    )
    departments = InMemoryDepartments()
    employee_service = EmployeeService(employees, departments, AuditService(InMemoryAudit()))
    return EmployeeBulkUpdateService(employees, departments, employee_service), employees


def test_template_marks_required_header():
    header = build_template_csv().splitlines()[0].split(",")
    assert header[0] == "employeeNumber *"
    assert len(header) == len(TEMPLATE_HEADERS)
    assert normalize_header_key(" EmployeeNumber [required] ") == "employeenumber"


def test_parse_csv_rows_tracks_physical_lines():
    rows = parse_csv_rows('\ufeffa,b\n"multi\nline",x\nc,d\n')
    assert [line for line, _ in rows] == [1, 2, 4]
    with pytest.raises(ValidationError, match="Invalid CSV format"):
        parse_csv_rows('a,"b\n')


def test_apply_updates_rows_and_collects_errors(env):
    service, employees = env
    content = "\n".join(
        [
            "employeeNumber *,department,monthlyRate,middleName,reportingManagerEmployeeNumber,position",
            "EMP-0002,finance,30000,__clear__,EMP-0001,",
            "EMP-0001,,,,,",
            "EMP-0404,OPS,,,,",
            "EMP-0001,Marketing,,,,",
            "EMP-0003,OPS,,,,",
            ",OPS,,,,",
            "EMP-0001,,,,EMP-0003,",
        ]
    )

    result = service.apply(actor=HR, content=content)

    assert result.processed_rows == 7
    assert result.updated_rows == 1
    assert result.unchanged_rows == 1
    assert [(e.line_number, e.error) for e in result.errors] == [
        (4, 'Unknown employee number "EMP-0404".'),
        (5, 'Unknown department "Marketing".'),
        (6, 'Unknown employee number "EMP-0003".'),
        (7, "employeeNumber is required."),
        (8, 'Unknown reporting manager "EMP-0003".'),
    ]
    updated = employees.rows[2]
    assert updated.department_id == 2
    assert updated.monthly_salary == Decimal("30000.00")
    assert updated.middle_name is None
    assert updated.reporting_manager_id == 1


def test_apply_rejects_unclearable_and_bad_files(env):
    service, _ = env
    result = service.apply(actor=HR, content="employeeNumber,firstName\nEMP-0001,__CLEAR__\n")
    assert result.errors[0].error == "firstName cannot be cleared."

    with pytest.raises(ValidationError, match="CSV file is empty"):
        service.apply(actor=HR, content="  ")
    with pytest.raises(ValidationError, match="missing required column"):
        service.apply(actor=HR, content="firstName\nAna\n")
    with pytest.raises(ValidationError, match="No data rows"):
        service.apply(actor=HR, content="employeeNumber\n,\n")
    with pytest.raises(AuthorizationError):
        service.apply(actor=Actor(user_id=9, company_id=1, company_role=CompanyRole.EMPLOYEE), content="employeeNumber\n")
