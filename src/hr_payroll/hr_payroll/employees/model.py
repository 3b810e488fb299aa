from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..core.enums import PayFrequency


EMPLOYMENT_STATUSES = ("REGULAR", "PROBATIONARY", "CONTRACTUAL", "PROJECT_BASED", "PART_TIME")


@dataclass(frozen=True)
class Department:
    department_id: int
    company_id: int
    code: str
    name: str


@dataclass(frozen=True)
class Employee:
    """Domain entity: masterlist employee record."""

    employee_id: int
    company_id: int
    employee_number: str
    first_name: str
    last_name: str
    hire_date: date
    middle_name: Optional[str] = None
    email: Optional[str] = None
    department_id: Optional[int] = None
    position: Optional[str] = None
    employment_status: str = "REGULAR"
    separation_date: Optional[date] = None
    reporting_manager_id: Optional[int] = None
    work_schedule_id: Optional[int] = None
    monthly_salary: Optional[Decimal] = None
    pay_frequency: PayFrequency = PayFrequency.SEMI_MONTHLY
    is_overtime_eligible: bool = True
    is_night_diff_eligible: bool = True
    is_active: bool = True
    deleted_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.last_name}, {self.first_name}"


# Attributes update() may change; names match the employees columns.
UPDATABLE_FIELDS = (
    "employee_number",
    "first_name",
    "last_name",
    "middle_name",
    "email",
    "department_id",
    "position",
    "employment_status",
    "hire_date",
    "separation_date",
    "reporting_manager_id",
    "work_schedule_id",
    "monthly_salary",
    "pay_frequency",
    "is_overtime_eligible",
    "is_night_diff_eligible",
    "is_active",
)
