from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import replace
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, ContextManager, Mapping, Optional, Sequence

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..common.datetime_utils import now_local
from ..common.numbering import generate_request_number
from ..common.validators import optional_text, require_non_empty
from ..core.constants import MIN_OVERTIME_HOURS
from ..core.context import Actor
from ..core.enums import HR_APPROVER_ROLES, AuditAction, CompanyRole, RequestStatus
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..core.money import round_hours
from ..employees.repository import EmployeeRepository
from .cto import CtoConverter
from .model import OvertimeRequest
from .repository import OvertimeRequestRepository

logger = logging.getLogger(__name__)


def overtime_hours(start_time: time, end_time: time) -> Decimal:
    """Requested overtime duration; end must be later than start on the same day."""

    anchor = date(2000, 1, 1)
    minutes = int((datetime.combine(anchor, end_time) - datetime.combine(anchor, start_time)).total_seconds() // 60)
    if minutes <= 0:
        raise ValidationError("End time must be later than start time.")
    hours = round_hours(Decimal(minutes) / Decimal(60))
    if hours < MIN_OVERTIME_HOURS:
        raise ValidationError("Overtime requests must be at least 1 hour.")
    return hours


class OvertimeService:
    """Overtime request lifecycle with two-step approval and CTO conversion."""

    def __init__(
        self,
        requests: OvertimeRequestRepository,
        employees: EmployeeRepository,
        cto: CtoConverter,
        audit: AuditService,
        *,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
        number_generator: Callable[..., str] = generate_request_number,
    ):
        self._requests = requests
        self._employees = employees
        self._cto = cto
        self._audit = audit
        self._transaction = transaction
        self._number_generator = number_generator

    def _own_employee(self, actor: Actor, verb: str):
        if actor.company_role != CompanyRole.EMPLOYEE:
            raise AuthorizationError(f"Only employees can {verb} overtime requests.")
        employee_id = actor.require_employee("Employee profile not found for the active company.")
        employee = self._employees.get_by_id(company_id=actor.company_id, employee_id=employee_id)
        if not employee or not employee.is_active:
            raise NotFoundError("Employee profile not found for the active company.")
        return employee

    def _own_pending(self, actor: Actor, request_id: int, verb: str, past: str):
        employee = self._own_employee(actor, verb)
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req or req.employee_id != employee.employee_id:
            raise NotFoundError("Overtime request not found.")
        if req.status != RequestStatus.PENDING:
            raise ValidationError(f"Only pending overtime requests can be {past}.")
        return employee, req

    def _write(self, actor: Actor, req: OvertimeRequest, fields: Mapping[str, Any], *, reason: str) -> OvertimeRequest:
        self._requests.update(request_id=req.request_id, fields=fields)
        self._audit.record(
            actor=actor,
            table_name="overtime_requests",
            record_id=req.request_id,
            action=AuditAction.UPDATE,
            reason=reason,
            changes=[AuditChange(k, getattr(req, k), v) for k, v in fields.items() if getattr(req, k) != v],
        )
        return replace(req, **fields)

    def submit(
        self,
        *,
        actor: Actor,
        overtime_date: date,
        start_time: time,
        end_time: time,
        reason: Optional[str] = None,
    ) -> OvertimeRequest:
        employee = self._own_employee(actor, "submit")
        hours = overtime_hours(start_time, end_time)
        number = self._number_generator("OT", exists=self._requests.number_exists, today=now_local().date())
        draft = OvertimeRequest(
            request_id=0,
            company_id=actor.company_id,
            request_number=number,
            employee_id=employee.employee_id,
            overtime_date=overtime_date,
            start_time=start_time,
            end_time=end_time,
            hours=hours,
            status=RequestStatus.PENDING,
            reason=optional_text(reason),
            supervisor_approver_id=employee.reporting_manager_id,
        )
        with self._transaction():
            request_id = self._requests.create(draft)
            self._audit.record(
                actor=actor,
                table_name="overtime_requests",
                record_id=request_id,
                action=AuditAction.CREATE,
                reason="Employee submitted overtime request",
                changes=[
                    AuditChange("request_number", None, number),
                    AuditChange("status", None, RequestStatus.PENDING),
                    AuditChange("overtime_date", None, overtime_date),
                    AuditChange("hours", None, hours),
                ],
            )
        logger.info("Overtime request %s submitted by employee_id=%s (%s h)", number, employee.employee_id, hours)
        return replace(draft, request_id=request_id)

    def update(
        self,
        *,
        actor: Actor,
        request_id: int,
        overtime_date: date,
        start_time: time,
        end_time: time,
        reason: Optional[str] = None,
    ) -> OvertimeRequest:
        employee, req = self._own_pending(actor, request_id, "update", "updated")
        fields = {
            "overtime_date": overtime_date,
            "start_time": start_time,
            "end_time": end_time,
            "hours": overtime_hours(start_time, end_time),
            "reason": optional_text(reason),
            "supervisor_approver_id": employee.reporting_manager_id or req.supervisor_approver_id,
        }
        with self._transaction():
            return self._write(actor, req, fields, reason="Employee updated overtime request")

    def cancel(self, *, actor: Actor, request_id: int, reason: Optional[str] = None) -> OvertimeRequest:
        _, req = self._own_pending(actor, request_id, "cancel", "cancelled")
        fields = {
            "status": RequestStatus.CANCELLED,
            "cancelled_at": now_local(),
            "cancellation_reason": optional_text(reason) or "Cancelled by employee",
        }
        with self._transaction():
            return self._write(actor, req, fields, reason="Employee cancelled overtime request")

    def _supervised_pending(self, actor: Actor, request_id: int) -> OvertimeRequest:
        supervisor_id = actor.require_employee("Employee profile not found.")
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req or req.status != RequestStatus.PENDING or req.supervisor_approver_id != supervisor_id:
            raise NotFoundError("Overtime request not found or no longer pending.")
        return req

    def supervisor_approve(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> OvertimeRequest:
        req = self._supervised_pending(actor, request_id)
        fields = {
            "status": RequestStatus.SUPERVISOR_APPROVED,
            "supervisor_decided_at": now_local(),
            "supervisor_remarks": optional_text(remarks),
        }
        with self._transaction():
            return self._write(actor, req, fields, reason="Supervisor approved overtime request")

    def supervisor_reject(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> OvertimeRequest:
        req = self._supervised_pending(actor, request_id)
        fields = {
            "status": RequestStatus.REJECTED,
            "supervisor_decided_at": now_local(),
            "supervisor_remarks": optional_text(remarks),
            "rejection_reason": optional_text(remarks) or "Rejected by supervisor",
        }
        with self._transaction():
            return self._write(actor, req, fields, reason="Supervisor rejected overtime request")

    def _hr_eligible(self, actor: Actor, request_id: int, verb: str) -> OvertimeRequest:
        if actor.company_role not in HR_APPROVER_ROLES:
            raise AuthorizationError(f"Only HR or admins can {verb} this request.")
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req or req.status != RequestStatus.SUPERVISOR_APPROVED:
            raise NotFoundError("Overtime request not found or no longer eligible.")
        return req

    def _approval_employee(self, actor: Actor, req: OvertimeRequest):
        employee = self._employees.get_by_id(company_id=actor.company_id, employee_id=req.employee_id)
        if not employee:
            raise NotFoundError("Employee profile was not found for this overtime request.")
        if req.hours < MIN_OVERTIME_HOURS:
            raise ValidationError("Overtime requests must be at least 1 hour.")
        return employee

    def _final_approve(
        self, actor: Actor, employee, req: OvertimeRequest, remarks: Optional[str], reason: str
    ) -> OvertimeRequest:
        converted = self._cto.apply(actor=actor, employee=employee, request=req)
        fields = {
            "status": RequestStatus.APPROVED,
            "hr_decided_by": actor.user_id,
            "hr_decided_at": now_local(),
            "hr_remarks": remarks,
            "cto_converted_hours": converted,
        }
        approved = self._write(actor, req, fields, reason=reason)
        logger.info("Overtime request %s approved by user_id=%s cto=%s", req.request_number, actor.user_id, converted)
        return approved

    def _final_reject(self, actor: Actor, req: OvertimeRequest, remarks: Optional[str], reason: str) -> OvertimeRequest:
        fields = {
            "status": RequestStatus.REJECTED,
            "hr_decided_by": actor.user_id,
            "hr_decided_at": now_local(),
            "hr_remarks": remarks,
            "rejection_reason": remarks or "Rejected by approver",
        }
        return self._write(actor, req, fields, reason=reason)

    def hr_approve(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> OvertimeRequest:
        req = self._hr_eligible(actor, request_id, "approve")
        employee = self._approval_employee(actor, req)
        with self._transaction():
            return self._final_approve(actor, employee, req, optional_text(remarks), "HR approved overtime request")

    def hr_reject(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> OvertimeRequest:
        req = self._hr_eligible(actor, request_id, "reject")
        with self._transaction():
            return self._final_reject(actor, req, optional_text(remarks), "HR rejected overtime request")

    def _override(self, actor: Actor, request_id: int, remarks: Optional[str], *, approve: bool) -> OvertimeRequest:
        if actor.company_role not in HR_APPROVER_ROLES:
            raise AuthorizationError("Only HR or admins can override approvals.")
        note = require_non_empty(remarks, "Override remarks")
        decision = "approval" if approve else "rejection"
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req:
            raise NotFoundError("Overtime request not found in the active company.")
        if req.status not in (RequestStatus.PENDING, RequestStatus.SUPERVISOR_APPROVED):
            raise ValidationError(
                f"Overtime request is no longer pending and cannot be override-{'approved' if approve else 'rejected'}."
            )
        employee = self._approval_employee(actor, req) if approve else None

        with self._transaction():
            if req.status == RequestStatus.PENDING:
                stage = {
                    "status": RequestStatus.SUPERVISOR_APPROVED,
                    "supervisor_approver_id": req.supervisor_approver_id or actor.employee_id,
                    "supervisor_decided_at": now_local(),
                    "supervisor_remarks": f"HR supervisor-stage override for {decision}: {note}",
                }
                req = self._write(actor, req, stage, reason=f"HR supervisor-stage override for {decision}")
            final = f"HR final {decision} via supervisor override: {note}"
            if approve:
                return self._final_approve(actor, employee, req, final, "HR approved overtime request via override")
            return self._final_reject(actor, req, final, "HR rejected overtime request via override")

    def hr_override_approve(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> OvertimeRequest:
        return self._override(actor, request_id, remarks, approve=True)

    def hr_override_reject(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> OvertimeRequest:
        return self._override(actor, request_id, remarks, approve=False)

    def my_requests(self, *, actor: Actor) -> Sequence[dict]:
        employee_id = actor.require_employee("Employee profile not found.")
        return self._requests.list_for_employee(employee_id)

    def supervisor_queue(self, *, actor: Actor) -> Sequence[dict]:
        supervisor_id = actor.require_employee("Employee profile not found.")
        return self._requests.list_queue(
            company_id=actor.company_id, status=RequestStatus.PENDING, supervisor_id=supervisor_id
        )

    def hr_queue(self, *, actor: Actor) -> Sequence[dict]:
        if actor.company_role not in HR_APPROVER_ROLES:
            raise AuthorizationError("Only HR or admins can access this queue.")
        return self._requests.list_queue(company_id=actor.company_id, status=RequestStatus.SUPERVISOR_APPROVED)
