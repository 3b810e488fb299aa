from __future__ import annotations

from datetime import date
from decimal import Decimal

from ...common.datetime_utils import inclusive_day_count
from ...core.money import ZERO, round_currency, to_decimal
from ...employees.model import Employee
from ..model import PayPeriod, Payslip
from .base import EmployeePayInput, PayrollCalculator, RunContext, earning, payslip_number, with_totals

_DAYS_PER_YEAR = Decimal(365)


def covered_days(period: PayPeriod, employee: Employee) -> int:
    """Days of the payroll year the employee was employed, up to the cutoff end."""

    start = max(date(period.year, 1, 1), employee.hire_date)
    end = period.cutoff_end
    if employee.separation_date is not None:
        end = min(end, employee.separation_date)
    return min(inclusive_day_count(start, end), 365)


def thirteenth_month_amount(formula: str, period: PayPeriod, data: EmployeePayInput) -> Decimal:
    if formula == "GROSS_EARNED_TO_DATE":
        return round_currency(to_decimal(data.ytd_gross) / 12)
    if data.ytd_basic > 0:
        return round_currency(to_decimal(data.ytd_basic) / 12)
    monthly = to_decimal(data.employee.monthly_salary)
    return round_currency(monthly * covered_days(period, data.employee) / _DAYS_PER_YEAR)


class ThirteenthMonthCalculator(PayrollCalculator):
    """Bonus-only run: a single non-taxable 13th month earning and no deductions."""

    def calculate(self, context: RunContext, data: EmployeePayInput) -> Payslip:
        amount = thirteenth_month_amount(context.policy.thirteenth_month_formula, context.period, data)
        draft = Payslip(
            payslip_id=0,
            run_id=context.run.run_id,
            employee_id=data.employee.employee_id,
            payslip_number=payslip_number(context.run.run_number, data.employee.employee_number),
            basic_pay=ZERO,
        )
        lines = [earning("THIRTEENTH_MONTH", "13th Month Pay", amount, is_taxable=False)] if amount > 0 else []
        return with_totals(draft, lines)
