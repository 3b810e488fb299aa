"""Leave type classification: charge routing, proration and report filters."""
from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from ..common.datetime_utils import days_in_year, inclusive_day_count, month_diff_inclusive
from ..core.enums import ProrationMethod
from ..core.exceptions import ValidationError
from ..core.money import ZERO, round_days
from .model import LeaveType

EMERGENCY_LEAVE_NAMES = {"EMERGENCY LEAVE"}
EMERGENCY_LEAVE_CODES = {"EL", "EMERGENCY_LEAVE", "EMERGENCYLEAVE", "EMERGENCY"}
VACATION_LEAVE_NAMES = {"VACATION LEAVE"}
VACATION_LEAVE_CODES = {"VL", "VACATION_LEAVE", "VACATIONLEAVE", "VACATION"}
CTO_LEAVE_CODES = {"CTO", "COMPENSATORY_TIME_OFF", "COMPENSATORYTIMEOFF"}
CTO_LEAVE_NAMES = {"CTO", "COMPENSATORY TIME OFF"}

MANDATORY_LEAVE_COLUMN = "Mandatory Leave"


def normalize_name(value: str) -> str:
    return re.sub(r"\s+", " ", (value or "").strip().upper())


def normalize_code(value: str) -> str:
    return re.sub(r"[\s-]+", "_", (value or "").strip().upper())


def is_emergency_leave(leave_type: LeaveType) -> bool:
    return normalize_name(leave_type.name) in EMERGENCY_LEAVE_NAMES or normalize_code(leave_type.code) in EMERGENCY_LEAVE_CODES


def is_vacation_leave(leave_type: LeaveType) -> bool:
    return normalize_name(leave_type.name) in VACATION_LEAVE_NAMES or normalize_code(leave_type.code) in VACATION_LEAVE_CODES


def is_cto_leave(leave_type: LeaveType) -> bool:
    return normalize_code(leave_type.code) in CTO_LEAVE_CODES or normalize_name(leave_type.name) in CTO_LEAVE_NAMES


def _prefer_company(candidates: Sequence[LeaveType], company_id: int) -> Optional[LeaveType]:
    if not candidates:
        return None
    for lt in candidates:
        if lt.company_id == company_id:
            return lt
    for lt in candidates:
        if lt.company_id is None:
            return lt
    return candidates[0]


def pick_vacation_leave_type(leave_types: Iterable[LeaveType], company_id: int) -> Optional[LeaveType]:
    return _prefer_company([lt for lt in leave_types if is_vacation_leave(lt)], company_id)


def pick_cto_leave_type(leave_types: Iterable[LeaveType], company_id: int) -> Optional[LeaveType]:
    return _prefer_company([lt for lt in leave_types if is_cto_leave(lt)], company_id)


def resolve_charge_leave_type(source: LeaveType, available: Iterable[LeaveType], company_id: int) -> Optional[LeaveType]:
    """Leave type whose balance a request against ``source`` draws from; None when nothing is charged."""

    if is_emergency_leave(source):
        vacation = pick_vacation_leave_type(available, company_id)
        if not vacation:
            raise ValidationError("Emergency Leave requires a configured Vacation Leave type in the company settings.")
        return vacation
    if not source.is_paid:
        return None
    return source


def prorated_entitlement(
    *,
    entitlement: Decimal,
    method: ProrationMethod,
    hire_date: date,
    year: int,
) -> Decimal:
    year_start = date(year, 1, 1)
    year_end = date(year, 12, 31)
    if hire_date <= year_start:
        return round_days(entitlement)
    if hire_date > year_end:
        return ZERO
    if method == ProrationMethod.FULL:
        return round_days(entitlement)
    if method == ProrationMethod.PRORATED_DAY:
        eligible_days = inclusive_day_count(hire_date, year_end)
        return round_days(entitlement * Decimal(eligible_days) / Decimal(days_in_year(year)))

    eligible_months = month_diff_inclusive(hire_date, year_end)
    return round_days(entitlement * Decimal(eligible_months) / Decimal(12))


def _report_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


def is_mandatory_leave_name(name: str) -> bool:
    key = _report_key(name)
    return "mandatory" in key and "leave" in key


def is_reportable_leave_type(leave_type: LeaveType) -> bool:
    key = _report_key(leave_type.name)
    if any(token in key for token in ("maternity", "paternity", "bereavement", "emergency", "cto", "lwop", "leavewithoutpay")):
        return False
    return not ("compensatory" in key and "time" in key and "off" in key)
