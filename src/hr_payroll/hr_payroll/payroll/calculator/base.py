from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import AbstractSet, Mapping, Optional, Sequence

from ...attendance.model import DailyTimeRecord, WorkSchedule
from ...core.constants import DEFAULT_HOURS_PER_DAY
from ...core.enums import LineCategory
from ...core.money import ZERO, round_currency
from ...employees.model import Employee
from ...leave.model import LeaveRequest
from ...overtime.model import OvertimeRequest
from ..model import AttendanceRule, Holiday, PayPeriod, PayrollPolicy, PayrollRun, Payslip, PayslipLine, RecurringDeduction, StatutoryTables


@dataclass(frozen=True)
class RunContext:
    """Company-wide inputs shared by every employee in a run."""

    run: PayrollRun
    period: PayPeriod
    policy: PayrollPolicy
    tables: StatutoryTables = field(default_factory=StatutoryTables)
    holidays: Mapping[date, Holiday] = field(default_factory=dict)
    overtime_rates: Mapping[str, Decimal] = field(default_factory=dict)
    attendance_rules: Mapping[str, AttendanceRule] = field(default_factory=dict)


@dataclass(frozen=True)
class EmployeePayInput:
    employee: Employee
    schedule: Optional[WorkSchedule] = None
    dtrs: Sequence[DailyTimeRecord] = ()
    leaves: Sequence[LeaveRequest] = ()
    paid_leave_type_ids: AbstractSet[int] = frozenset()
    overtime: Sequence[OvertimeRequest] = ()
    recurring: Sequence[RecurringDeduction] = ()
    ytd_basic: Decimal = ZERO
    ytd_gross: Decimal = ZERO


@dataclass(frozen=True)
class Rates:
    monthly: Decimal
    daily: Decimal
    hourly: Decimal


def rates_for(monthly_salary: Decimal, working_days_per_year: int) -> Rates:
    daily = monthly_salary * 12 / Decimal(working_days_per_year)
    return Rates(monthly=monthly_salary, daily=daily, hourly=daily / DEFAULT_HOURS_PER_DAY)


def payslip_number(run_number: str, employee_number: str) -> str:
    return f"{run_number}-{employee_number}"


def with_totals(payslip: Payslip, lines: Sequence[PayslipLine]) -> Payslip:
    """Return ``payslip`` carrying ``lines`` with gross, deductions and net recomputed from them."""

    gross = round_currency(sum((l.amount for l in lines if l.category == LineCategory.EARNING), ZERO))
    deductions = round_currency(sum((l.amount for l in lines if l.category == LineCategory.DEDUCTION), ZERO))
    return replace(
        payslip,
        lines=tuple(lines),
        gross_pay=gross,
        total_deductions=deductions,
        net_pay=round_currency(gross - deductions),
    )


def earning(code: str, name: str, amount: Decimal, *, description: Optional[str] = None, is_taxable: bool = True) -> PayslipLine:
    return PayslipLine(LineCategory.EARNING, code, name, round_currency(amount), description=description, is_taxable=is_taxable)


def deduction(code: str, name: str, amount: Decimal, *, description: Optional[str] = None) -> PayslipLine:
    return PayslipLine(LineCategory.DEDUCTION, code, name, round_currency(amount), description=description, is_taxable=False)


class PayrollCalculator(ABC):
    """Strategy Pattern: how one employee's payslip is computed for a run type."""

    @abstractmethod
    def calculate(self, context: RunContext, data: EmployeePayInput) -> Payslip:
        raise NotImplementedError
