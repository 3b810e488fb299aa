from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..core.enums import LeaveTransactionType, ProrationMethod, RequestStatus

HALF_DAY_PERIODS = ("AM", "PM")


@dataclass(frozen=True)
class LeaveType:
    leave_type_id: int
    company_id: Optional[int]
    code: str
    name: str
    is_paid: bool = True
    is_carried_over: bool = False
    max_carry_over_days: Optional[Decimal] = None
    is_active: bool = True


@dataclass(frozen=True)
class LeaveTypePolicy:
    leave_type_id: int
    employment_status: str
    annual_entitlement: Decimal
    proration_method: ProrationMethod = ProrationMethod.PRORATED_MONTH


@dataclass(frozen=True)
class LeaveBalance:
    """Per employee / leave type / year ledger row."""

    balance_id: int
    employee_id: int
    leave_type_id: int
    year: int
    opening_balance: Decimal = Decimal("0")
    credits_earned: Decimal = Decimal("0")
    credits_used: Decimal = Decimal("0")
    credits_carried_over: Decimal = Decimal("0")
    current_balance: Decimal = Decimal("0")
    pending_requests: Decimal = Decimal("0")
    available_balance: Decimal = Decimal("0")


@dataclass(frozen=True)
class LeaveBalanceTransaction:
    balance_id: int
    transaction_type: LeaveTransactionType
    amount: Decimal
    running_balance: Decimal
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    remarks: Optional[str] = None
    processed_by: Optional[int] = None
    transaction_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class LeaveRequest:
    request_id: int
    company_id: int
    request_number: str
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    number_of_days: Decimal
    status: RequestStatus
    is_half_day: bool = False
    half_day_period: Optional[str] = None
    reason: Optional[str] = None
    supervisor_approver_id: Optional[int] = None
    supervisor_decided_at: Optional[datetime] = None
    supervisor_remarks: Optional[str] = None
    hr_decided_by: Optional[int] = None
    hr_decided_at: Optional[datetime] = None
    hr_remarks: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
