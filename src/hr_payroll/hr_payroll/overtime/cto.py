"""Compensatory time off: approved overtime credited 1:1 in hours to the CTO balance."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ..core.context import Actor
from ..core.exceptions import ValidationError
from ..core.money import round_days
from ..employees.model import Employee
from ..employees.repository import EmployeeRepository
from ..leave.ledger import LeaveLedger, LedgerReference
from ..leave.policy import is_cto_leave
from ..leave.repository import LeaveBalanceRepository, LeaveTypeRepository
from .model import OvertimeRequest

logger = logging.getLogger(__name__)


class CtoConverter:
    def __init__(
        self,
        employees: EmployeeRepository,
        leave_types: LeaveTypeRepository,
        balances: LeaveBalanceRepository,
        ledger: LeaveLedger,
    ):
        self._employees = employees
        self._leave_types = leave_types
        self._balances = balances
        self._ledger = ledger

    def should_convert(self, employee: Employee) -> bool:
        if not employee.is_overtime_eligible:
            return True
        return self._employees.count_active_direct_reports(manager_id=employee.employee_id) > 0

    def apply(self, *, actor: Actor, employee: Employee, request: OvertimeRequest) -> Optional[Decimal]:
        """Credit the CTO balance when the employee converts overtime; returns the credited hours."""

        if not self.should_convert(employee):
            return None

        candidates = [
            lt
            for lt in self._leave_types.list_for_company(actor.company_id)
            if lt.company_id == actor.company_id and is_cto_leave(lt)
        ]
        if not candidates:
            raise ValidationError("CTO leave type is not configured for this company.")
        cto_type = candidates[0]

        year = request.overtime_date.year
        balance = self._balances.get(employee_id=employee.employee_id, leave_type_id=cto_type.leave_type_id, year=year)
        if not balance:
            raise ValidationError(f"No CTO leave balance found for {year}. Initialize leave balances first.")

        hours = round_days(request.hours)
        self._ledger.credit(
            balance,
            amount=hours,
            ref=LedgerReference("OVERTIME_REQUEST", request.request_id, request.request_number, actor.user_id),
            remarks=f"CTO credit from overtime request {request.request_number} (1:1 conversion)",
        )
        logger.info("Converted %s overtime hour(s) of %s to CTO", hours, request.request_number)
        return hours
