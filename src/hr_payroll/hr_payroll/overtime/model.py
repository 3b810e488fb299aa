from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from ..core.enums import RequestStatus


@dataclass(frozen=True)
class OvertimeRequest:
    request_id: int
    company_id: int
    request_number: str
    employee_id: int
    overtime_date: date
    start_time: time
    end_time: time
    hours: Decimal
    status: RequestStatus
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
    cto_converted_hours: Optional[Decimal] = None
    created_at: Optional[datetime] = None
