"""Government contributions and withholding tax.

Contribution tables are monthly. A semi-monthly period carries the whole
monthly amount in the half its timing names, or half of it in each period
when the timing is ``EVERY_PERIOD``.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from ..core.enums import DeductionTiming, PayFrequency
from ..core.money import ZERO, round_currency, to_decimal
from .model import SssBracket, StatutoryTables, TaxBracket

PHILHEALTH_RATE = "PHILHEALTH_RATE"
PHILHEALTH_FLOOR = "PHILHEALTH_FLOOR"
PHILHEALTH_CEILING = "PHILHEALTH_CEILING"
PAGIBIG_EMPLOYEE_RATE = "PAGIBIG_EMPLOYEE_RATE"
PAGIBIG_EMPLOYER_RATE = "PAGIBIG_EMPLOYER_RATE"
PAGIBIG_MAX_COMPENSATION = "PAGIBIG_MAX_COMPENSATION"

REQUIRED_SETTINGS = (PHILHEALTH_RATE, PHILHEALTH_FLOOR, PHILHEALTH_CEILING, PAGIBIG_EMPLOYEE_RATE, PAGIBIG_MAX_COMPENSATION)


@dataclass(frozen=True)
class Contribution:
    employee: Decimal = ZERO
    employer: Decimal = ZERO

    def scaled(self, factor: Decimal) -> "Contribution":
        return Contribution(round_currency(self.employee * factor), round_currency(self.employer * factor))


def timing_factor(timing: DeductionTiming, frequency: PayFrequency, period_half: Optional[str]) -> Decimal:
    """Share of the monthly amount that falls in this period (0, 1/2 or 1)."""

    if timing == DeductionTiming.DISABLED:
        return ZERO
    if frequency != PayFrequency.SEMI_MONTHLY:
        return Decimal("1")
    if timing == DeductionTiming.EVERY_PERIOD:
        return Decimal("0.5")
    if timing == DeductionTiming.FIRST_HALF:
        return Decimal("1") if period_half == "FIRST" else ZERO
    if timing == DeductionTiming.SECOND_HALF:
        return Decimal("1") if period_half == "SECOND" else ZERO
    return Decimal("1")


def sss_contribution(monthly_salary: Decimal, brackets: Sequence[SssBracket]) -> Optional[Contribution]:
    for bracket in brackets:
        if bracket.salary_from <= monthly_salary <= bracket.salary_to:
            return Contribution(round_currency(bracket.employee_share), round_currency(bracket.employer_share))
    return None


def philhealth_contribution(monthly_salary: Decimal, tables: StatutoryTables) -> Optional[Contribution]:
    rate = tables.setting(PHILHEALTH_RATE)
    if rate is None:
        return None
    floor = tables.setting(PHILHEALTH_FLOOR) or ZERO
    ceiling = tables.setting(PHILHEALTH_CEILING)
    base = max(monthly_salary, floor)
    if ceiling is not None:
        base = min(base, ceiling)
    premium = base * rate
    half = round_currency(premium / 2)
    return Contribution(half, half)


def pagibig_contribution(monthly_salary: Decimal, tables: StatutoryTables) -> Optional[Contribution]:
    employee_rate = tables.setting(PAGIBIG_EMPLOYEE_RATE)
    if employee_rate is None:
        return None
    employer_rate = tables.setting(PAGIBIG_EMPLOYER_RATE)
    if employer_rate is None:
        employer_rate = employee_rate
    cap = tables.setting(PAGIBIG_MAX_COMPENSATION)
    base = min(monthly_salary, cap) if cap is not None else monthly_salary
    return Contribution(round_currency(base * employee_rate), round_currency(base * employer_rate))


def annual_tax(annual_taxable: Decimal, brackets: Sequence[TaxBracket]) -> Decimal:
    income = to_decimal(annual_taxable)
    if income <= 0:
        return ZERO
    for bracket in sorted(brackets, key=lambda b: b.bracket_over):
        if bracket.bracket_over <= income <= bracket.bracket_not_over:
            return round_currency(bracket.base_tax + (income - bracket.excess_over) * bracket.tax_rate)
    top = max(brackets, key=lambda b: b.bracket_over, default=None)
    if top is not None and income > top.bracket_not_over:
        return round_currency(top.base_tax + (income - top.excess_over) * top.tax_rate)
    return ZERO


def withholding_tax(period_taxable: Decimal, periods_per_year: int, brackets: Sequence[TaxBracket]) -> Decimal:
    """Annualise this period's taxable pay, apply the bracket and spread it back."""

    if period_taxable <= 0 or not brackets:
        return ZERO
    annual = annual_tax(period_taxable * periods_per_year, brackets)
    return round_currency(annual / periods_per_year)
