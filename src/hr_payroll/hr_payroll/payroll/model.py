from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Mapping, Optional, Tuple

from ..core.constants import DEFAULT_NIGHT_DIFF_RATE, DEFAULT_WORKING_DAYS_PER_YEAR
from ..core.enums import (
    DeductionBasis,
    DeductionTiming,
    HolidayType,
    LineCategory,
    PayFrequency,
    PayPeriodStatus,
    PayrollRunStatus,
    PayrollRunType,
    ProcessStepName,
    ProcessStepStatus,
)
from ..core.money import ZERO

PERIOD_HALVES = ("FIRST", "SECOND")
THIRTEENTH_MONTH_FORMULAS = ("BASIC_YTD_OR_PRORATED", "GROSS_EARNED_TO_DATE")

PROCESS_STEPS = (
    (1, ProcessStepName.CREATE_RUN),
    (2, ProcessStepName.VALIDATE_DATA),
    (3, ProcessStepName.CALCULATE_PAYROLL),
    (4, ProcessStepName.REVIEW_ADJUST),
    (5, ProcessStepName.GENERATE_PAYSLIPS),
    (6, ProcessStepName.CLOSE_RUN),
)


@dataclass(frozen=True)
class PayPeriod:
    period_id: int
    company_id: int
    year: int
    period_number: int
    pay_frequency: PayFrequency
    cutoff_start: date
    cutoff_end: date
    status: PayPeriodStatus = PayPeriodStatus.OPEN
    period_half: Optional[str] = None
    locked_at: Optional[datetime] = None
    locked_by: Optional[int] = None

    @property
    def periods_per_month(self) -> int:
        return 2 if self.pay_frequency == PayFrequency.SEMI_MONTHLY else 1

    @property
    def periods_per_year(self) -> int:
        return 12 * self.periods_per_month


@dataclass(frozen=True)
class PayrollPolicy:
    """Company payroll settings; defaults apply when a company has no row."""

    company_id: int
    working_days_per_year: int = DEFAULT_WORKING_DAYS_PER_YEAR
    sss_timing: DeductionTiming = DeductionTiming.SECOND_HALF
    philhealth_timing: DeductionTiming = DeductionTiming.FIRST_HALF
    pagibig_timing: DeductionTiming = DeductionTiming.FIRST_HALF
    withholding_tax_timing: DeductionTiming = DeductionTiming.EVERY_PERIOD
    thirteenth_month_formula: str = "BASIC_YTD_OR_PRORATED"
    night_diff_rate: Decimal = Decimal(DEFAULT_NIGHT_DIFF_RATE)


@dataclass(frozen=True)
class Holiday:
    holiday_date: date
    name: str
    holiday_type: HolidayType
    pay_multiplier: Decimal = Decimal("1")


@dataclass(frozen=True)
class AttendanceRule:
    rule_type: str
    calculation_basis: DeductionBasis
    threshold_mins: int = 0


@dataclass(frozen=True)
class SssBracket:
    salary_from: Decimal
    salary_to: Decimal
    employee_share: Decimal
    employer_share: Decimal


@dataclass(frozen=True)
class TaxBracket:
    """Annual withholding tax row: ``base_tax + (income - excess_over) * tax_rate``."""

    bracket_over: Decimal
    bracket_not_over: Decimal
    base_tax: Decimal
    tax_rate: Decimal
    excess_over: Decimal


@dataclass(frozen=True)
class StatutoryTables:
    sss: Tuple[SssBracket, ...] = ()
    tax: Tuple[TaxBracket, ...] = ()
    settings: Mapping[str, Decimal] = field(default_factory=dict)

    def setting(self, key: str) -> Optional[Decimal]:
        return self.settings.get(key)


@dataclass(frozen=True)
class RecurringDeduction:
    recurring_id: int
    employee_id: int
    code: str
    description: str
    amount: Decimal
    timing: DeductionTiming = DeductionTiming.EVERY_PERIOD
    is_active: bool = True


@dataclass(frozen=True)
class ProcessStep:
    run_id: int
    step_number: int
    step_name: ProcessStepName
    status: ProcessStepStatus = ProcessStepStatus.PENDING
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PayrollRun:
    run_id: int
    company_id: int
    period_id: int
    run_number: str
    run_type: PayrollRunType
    status: PayrollRunStatus
    current_step: int
    created_by: int
    total_employees: int = 0
    total_gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_employer_contributions: Decimal = ZERO
    filters_json: Optional[str] = None
    processed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[int] = None
    paid_at: Optional[datetime] = None
    paid_by: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class PayslipLine:
    category: LineCategory
    code: str
    name: str
    amount: Decimal
    description: Optional[str] = None
    is_taxable: bool = True
    is_manual: bool = False
    line_id: Optional[int] = None


@dataclass(frozen=True)
class Payslip:
    payslip_id: int
    run_id: int
    employee_id: int
    payslip_number: str
    basic_pay: Decimal = ZERO
    gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO
    sss_employee: Decimal = ZERO
    sss_employer: Decimal = ZERO
    philhealth_employee: Decimal = ZERO
    philhealth_employer: Decimal = ZERO
    pagibig_employee: Decimal = ZERO
    pagibig_employer: Decimal = ZERO
    withholding_tax: Decimal = ZERO
    late_mins: int = 0
    undertime_mins: int = 0
    overtime_hours: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    tardiness_deduction: Decimal = ZERO
    working_days: Decimal = ZERO
    payable_days: Decimal = ZERO
    generated_at: Optional[datetime] = None
    lines: Tuple[PayslipLine, ...] = ()

    @property
    def employer_contributions(self) -> Decimal:
        return self.sss_employer + self.philhealth_employer + self.pagibig_employer

    def earnings(self) -> Tuple[PayslipLine, ...]:
        return tuple(line for line in self.lines if line.category == LineCategory.EARNING)

    def deductions(self) -> Tuple[PayslipLine, ...]:
        return tuple(line for line in self.lines if line.category == LineCategory.DEDUCTION)
