from __future__ import annotations

import math
from datetime import date
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from ...attendance.model import WorkSchedule
from ...core.constants import DEFAULT_OVERTIME_MULTIPLIER
from ...core.enums import DeductionBasis, DeductionTiming, HolidayType, PayFrequency
from ...core.exceptions import ValidationError
from ...core.money import ZERO, round_currency, round_hours, to_decimal
from ...overtime.model import OvertimeRequest
from .. import statutory
from ..attendance_snapshot import AttendanceSnapshot, build_snapshot, is_rest_day
from ..model import AttendanceRule, Holiday, PayPeriod, Payslip, PayslipLine, RecurringDeduction
from .base import EmployeePayInput, PayrollCalculator, Rates, RunContext, deduction, earning, payslip_number, rates_for, with_totals

OVERTIME_TYPE_LABELS = {
    "REGULAR_OT": "Regular OT",
    "REST_DAY_OT": "Rest Day OT",
    "REGULAR_HOLIDAY_OT": "Regular Holiday OT",
    "SPECIAL_HOLIDAY_OT": "Special Holiday OT",
    "REST_DAY_HOLIDAY_OT": "Rest Day Holiday OT",
}

_ROUNDING_STEPS = {
    DeductionBasis.PER_15_MINS: 15,
    DeductionBasis.PER_30_MINS: 30,
    DeductionBasis.PER_HOUR: 60,
}


def attendance_rule_deduction(minutes: int, rates: Rates, rule: Optional[AttendanceRule]) -> Decimal:
    """Tardiness or undertime amount after the rule's grace threshold."""

    if minutes <= 0:
        return ZERO
    deductible = max(0, minutes - (rule.threshold_mins if rule else 0))
    if deductible == 0:
        return ZERO
    if rule is None or rule.calculation_basis == DeductionBasis.PER_MINUTE:
        return round_currency(Decimal(deductible) / 60 * rates.hourly)
    if rule.calculation_basis == DeductionBasis.DAILY_RATE:
        return round_currency(rates.daily)
    step = _ROUNDING_STEPS[rule.calculation_basis]
    blocks = math.ceil(deductible / step)
    return round_currency(Decimal(blocks) * rates.hourly * step / 60)


def overtime_type(day: date, schedule: Optional[WorkSchedule], holidays: Mapping[date, Holiday]) -> str:
    holiday = holidays.get(day)
    rest = is_rest_day(day, schedule)
    if holiday is not None and holiday.holiday_type != HolidayType.SPECIAL_WORKING:
        if rest:
            return "REST_DAY_HOLIDAY_OT"
        if holiday.holiday_type == HolidayType.REGULAR:
            return "REGULAR_HOLIDAY_OT"
        return "SPECIAL_HOLIDAY_OT"
    return "REST_DAY_OT" if rest else "REGULAR_OT"


def overtime_lines(
    requests: Sequence[OvertimeRequest],
    *,
    rates: Rates,
    schedule: Optional[WorkSchedule],
    holidays: Mapping[date, Holiday],
    multipliers: Mapping[str, Decimal],
) -> List[PayslipLine]:
    """One earning line per overtime type; CTO-converted requests are already paid in leave credits."""

    hours_by_type: Dict[str, Decimal] = {}
    for req in requests:
        if req.cto_converted_hours:
            continue
        kind = overtime_type(req.overtime_date, schedule, holidays)
        hours_by_type[kind] = hours_by_type.get(kind, ZERO) + to_decimal(req.hours)

    lines: List[PayslipLine] = []
    for kind in sorted(hours_by_type):
        hours = round_hours(hours_by_type[kind])
        multiplier = multipliers.get(kind, Decimal(DEFAULT_OVERTIME_MULTIPLIER))
        label = OVERTIME_TYPE_LABELS[kind]
        lines.append(
            earning(kind, f"Overtime Pay ({label})", hours * rates.hourly * multiplier, description=f"{hours} h x {multiplier}")
        )
    return lines


def recurring_applies(item: RecurringDeduction, period: PayPeriod) -> bool:
    if not item.is_active or item.timing == DeductionTiming.DISABLED:
        return False
    if period.pay_frequency != PayFrequency.SEMI_MONTHLY:
        return True
    if item.timing == DeductionTiming.FIRST_HALF:
        return period.period_half == "FIRST"
    if item.timing == DeductionTiming.SECOND_HALF:
        return period.period_half == "SECOND"
    return True


class RegularPayrollCalculator(PayrollCalculator):
    """Basic pay, attendance, overtime, statutory contributions, tax and recurring deductions."""

    def snapshot(self, context: RunContext, data: EmployeePayInput) -> AttendanceSnapshot:
        return build_snapshot(
            period=context.period,
            employee=data.employee,
            schedule=data.schedule,
            dtrs=data.dtrs,
            leaves=data.leaves,
            paid_leave_type_ids=data.paid_leave_type_ids,
            holidays=context.holidays,
        )

    def calculate(self, context: RunContext, data: EmployeePayInput) -> Payslip:
        employee = data.employee
        if not employee.monthly_salary or employee.monthly_salary <= 0:
            raise ValidationError(f"Employee {employee.employee_number} has no monthly salary.")

        period = context.period
        policy = context.policy
        monthly = to_decimal(employee.monthly_salary)
        rates = rates_for(monthly, policy.working_days_per_year)
        snap = self.snapshot(context, data)

        basic = round_currency(monthly / period.periods_per_month)
        earnings: List[PayslipLine] = [earning("BASIC_PAY", "Basic Pay", basic)]

        overtime: List[PayslipLine] = []
        if employee.is_overtime_eligible:
            overtime = overtime_lines(
                data.overtime,
                rates=rates,
                schedule=data.schedule,
                holidays=context.holidays,
                multipliers=context.overtime_rates,
            )
        earnings.extend(overtime)
        overtime_hours = ZERO
        if overtime:
            overtime_hours = round_hours(sum((to_decimal(r.hours) for r in data.overtime if not r.cto_converted_hours), ZERO))

        if employee.is_night_diff_eligible and snap.night_diff_hours > 0:
            earnings.append(
                earning(
                    "NIGHT_DIFF",
                    "Night Differential",
                    snap.night_diff_hours * rates.hourly * policy.night_diff_rate,
                    description=f"{snap.night_diff_hours} h",
                )
            )
        if snap.holiday_premium_factor > 0:
            earnings.append(earning("HOLIDAY_PAY", "Holiday Premium", rates.daily * snap.holiday_premium_factor))

        deductions: List[PayslipLine] = []
        absence = round_currency(snap.unpaid_absence_days * rates.daily)
        if absence > 0:
            deductions.append(deduction("ABSENCE", "Absences", absence, description=f"{snap.unpaid_absence_days} day(s)"))
        tardiness = attendance_rule_deduction(snap.tardiness_mins, rates, context.attendance_rules.get("TARDINESS"))
        if tardiness > 0:
            deductions.append(deduction("TARDINESS", "Tardiness", tardiness, description=f"{snap.tardiness_mins} min"))
        undertime = attendance_rule_deduction(snap.undertime_mins, rates, context.attendance_rules.get("UNDERTIME"))
        if undertime > 0:
            deductions.append(deduction("UNDERTIME", "Undertime", undertime, description=f"{snap.undertime_mins} min"))

        tables = context.tables
        sss = philhealth = pagibig = statutory.Contribution()
        factor = statutory.timing_factor(policy.sss_timing, period.pay_frequency, period.period_half)
        if factor > 0:
            sss = (statutory.sss_contribution(monthly, tables.sss) or sss).scaled(factor)
        factor = statutory.timing_factor(policy.philhealth_timing, period.pay_frequency, period.period_half)
        if factor > 0:
            philhealth = (statutory.philhealth_contribution(monthly, tables) or philhealth).scaled(factor)
        factor = statutory.timing_factor(policy.pagibig_timing, period.pay_frequency, period.period_half)
        if factor > 0:
            pagibig = (statutory.pagibig_contribution(monthly, tables) or pagibig).scaled(factor)
        for code, name, share in (
            ("SSS", "SSS Contribution", sss.employee),
            ("PHILHEALTH", "PhilHealth Contribution", philhealth.employee),
            ("PAGIBIG", "Pag-IBIG Contribution", pagibig.employee),
        ):
            if share > 0:
                deductions.append(deduction(code, name, share))

        taxable_earnings = sum((l.amount for l in earnings if l.is_taxable), ZERO)
        taxable = taxable_earnings - absence - tardiness - undertime - sss.employee - philhealth.employee - pagibig.employee
        tax = ZERO
        factor = statutory.timing_factor(policy.withholding_tax_timing, period.pay_frequency, period.period_half)
        if factor > 0:
            per_period = statutory.withholding_tax(taxable, period.periods_per_year, tables.tax)
            tax = round_currency(per_period * factor * period.periods_per_month)
        if tax > 0:
            deductions.append(deduction("WTAX", "Withholding Tax", tax))

        for item in data.recurring:
            if recurring_applies(item, period) and item.amount > 0:
                deductions.append(deduction(item.code.upper(), item.description, item.amount))

        draft = Payslip(
            payslip_id=0,
            run_id=context.run.run_id,
            employee_id=employee.employee_id,
            payslip_number=payslip_number(context.run.run_number, employee.employee_number),
            basic_pay=basic,
            sss_employee=sss.employee,
            sss_employer=sss.employer,
            philhealth_employee=philhealth.employee,
            philhealth_employer=philhealth.employer,
            pagibig_employee=pagibig.employee,
            pagibig_employer=pagibig.employer,
            withholding_tax=tax,
            late_mins=snap.tardiness_mins,
            undertime_mins=snap.undertime_mins,
            overtime_hours=overtime_hours,
            overtime_pay=round_currency(sum((l.amount for l in overtime), ZERO)),
            tardiness_deduction=tardiness,
            working_days=snap.working_days,
            payable_days=snap.payable_days,
        )
        return with_totals(draft, earnings + deductions)
