from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, ContextManager, Mapping, Optional, Sequence

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..common.datetime_utils import inclusive_day_count, now_local
from ..common.numbering import generate_request_number
from ..common.validators import optional_text, require_non_empty
from ..core.context import Actor
from ..core.enums import HR_APPROVER_ROLES, AuditAction, CompanyRole, RequestStatus
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..employees.repository import EmployeeRepository
from .ledger import LeaveLedger, LedgerReference
from .model import HALF_DAY_PERIODS, LeaveRequest, LeaveType
from .policy import resolve_charge_leave_type
from .repository import LeaveRequestRepository, LeaveTypeRepository

logger = logging.getLogger(__name__)


class LeaveRequestService:
    """Leave request lifecycle: submit, edit, cancel and the two-step approval."""

    def __init__(
        self,
        requests: LeaveRequestRepository,
        leave_types: LeaveTypeRepository,
        employees: EmployeeRepository,
        ledger: LeaveLedger,
        audit: AuditService,
        *,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
        number_generator: Callable[..., str] = generate_request_number,
    ):
        self._requests = requests
        self._leave_types = leave_types
        self._employees = employees
        self._ledger = ledger
        self._audit = audit
        self._transaction = transaction
        self._number_generator = number_generator

    # ---- helpers -------------------------------------------------------

    def _own_employee(self, actor: Actor, verb: str):
        if actor.company_role != CompanyRole.EMPLOYEE:
            raise AuthorizationError(f"Only employees can {verb} leave requests.")
        employee_id = actor.require_employee("Employee profile not found for the active company.")
        employee = self._employees.get_by_id(company_id=actor.company_id, employee_id=employee_id)
        if not employee or not employee.is_active:
            raise NotFoundError("Employee profile not found for the active company.")
        return employee

    def _leave_type(self, actor: Actor, leave_type_id: int) -> LeaveType:
        lt = self._leave_types.get_by_id(company_id=actor.company_id, leave_type_id=int(leave_type_id))
        if not lt or not lt.is_active:
            raise ValidationError("Leave type is not available for this company.")
        return lt

    def _charge_type(self, actor: Actor, source: LeaveType) -> Optional[LeaveType]:
        available = self._leave_types.list_for_company(actor.company_id, active_only=False)
        return resolve_charge_leave_type(source, available, actor.company_id)

    def _ref(self, actor: Actor, req: LeaveRequest) -> LedgerReference:
        return LedgerReference("LEAVE_REQUEST", req.request_id, req.request_number, actor.user_id)

    def _reserve(self, actor: Actor, req: LeaveRequest, source: LeaveType) -> None:
        charge = self._charge_type(actor, source)
        if charge is None:
            return
        self._ledger.reserve(
            employee_id=req.employee_id,
            leave_type_id=charge.leave_type_id,
            year=req.start_date.year,
            days=req.number_of_days,
            ref=self._ref(actor, req),
        )

    def _release(self, actor: Actor, req: LeaveRequest) -> None:
        source = self._leave_types.get_by_id(company_id=actor.company_id, leave_type_id=req.leave_type_id)
        if not source:
            raise ValidationError("Selected leave type is no longer available.")
        charge = self._charge_type(actor, source)
        if charge is None:
            return
        self._ledger.release(
            employee_id=req.employee_id,
            leave_type_id=charge.leave_type_id,
            year=req.start_date.year,
            days=req.number_of_days,
            ref=self._ref(actor, req),
        )

    def _consume(self, actor: Actor, req: LeaveRequest) -> None:
        source = self._leave_types.get_by_id(company_id=actor.company_id, leave_type_id=req.leave_type_id)
        if not source:
            raise ValidationError("Selected leave type is no longer available.")
        charge = self._charge_type(actor, source)
        if charge is None:
            return
        self._ledger.consume(
            employee_id=req.employee_id,
            leave_type_id=charge.leave_type_id,
            year=req.start_date.year,
            days=req.number_of_days,
            ref=self._ref(actor, req),
        )

    @staticmethod
    def compute_days(*, start_date: date, end_date: date, is_half_day: bool, half_day_period: Optional[str]) -> Decimal:
        if end_date < start_date:
            raise ValidationError("End date must be on or after start date.")
        if is_half_day:
            if start_date != end_date:
                raise ValidationError("Half-day leave must start and end on the same date.")
            if (half_day_period or "").upper() not in HALF_DAY_PERIODS:
                raise ValidationError("Half-day period (AM or PM) is required for half-day leave.")
            return Decimal("0.5")
        if start_date.year != end_date.year:
            raise ValidationError("Cross-year leave requests are not supported yet. Please split the request per year.")
        return Decimal(inclusive_day_count(start_date, end_date))

    def _get_request(self, actor: Actor, request_id: int) -> LeaveRequest:
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req:
            raise NotFoundError("Leave request not found.")
        return req

    def _decide(self, actor: Actor, req: LeaveRequest, fields: Mapping[str, Any], *, reason: str) -> None:
        self._requests.update(request_id=req.request_id, fields=fields)
        changes = [AuditChange("status", req.status, fields.get("status", req.status))]
        changes += [AuditChange(k, getattr(req, k), v) for k, v in fields.items() if k != "status"]
        self._audit.record(
            actor=actor,
            table_name="leave_requests",
            record_id=req.request_id,
            action=AuditAction.UPDATE,
            reason=reason,
            changes=changes,
        )

    # ---- employee actions ---------------------------------------------

    def submit(
        self,
        *,
        actor: Actor,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        is_half_day: bool = False,
        half_day_period: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        employee = self._own_employee(actor, "file")
        source = self._leave_type(actor, leave_type_id)
        days = self.compute_days(
            start_date=start_date, end_date=end_date, is_half_day=is_half_day, half_day_period=half_day_period
        )

        number = self._number_generator("LR", exists=self._requests.number_exists, today=now_local().date())
        draft = LeaveRequest(
            request_id=0,
            company_id=actor.company_id,
            request_number=number,
            employee_id=employee.employee_id,
            leave_type_id=source.leave_type_id,
            start_date=start_date,
            end_date=end_date,
            number_of_days=days,
            status=RequestStatus.PENDING,
            is_half_day=bool(is_half_day),
            half_day_period=(half_day_period or "").upper() if is_half_day else None,
            reason=optional_text(reason),
            supervisor_approver_id=employee.reporting_manager_id,
        )

        with self._transaction():
            request_id = self._requests.create(draft)
            created = replace(draft, request_id=request_id)
            self._reserve(actor, created, source)
            self._audit.record(
                actor=actor,
                table_name="leave_requests",
                record_id=request_id,
                action=AuditAction.CREATE,
                reason="Employee submitted leave request",
                changes=[
                    AuditChange("request_number", None, number),
                    AuditChange("status", None, RequestStatus.PENDING),
                    AuditChange("start_date", None, start_date),
                    AuditChange("end_date", None, end_date),
                    AuditChange("number_of_days", None, days),
                ],
            )

        logger.info("Leave request %s submitted by employee_id=%s (%s day(s))", number, employee.employee_id, days)
        return created

    def update(
        self,
        *,
        actor: Actor,
        request_id: int,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        is_half_day: bool = False,
        half_day_period: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        employee = self._own_employee(actor, "update")
        req = self._get_request(actor, request_id)
        if req.employee_id != employee.employee_id:
            raise NotFoundError("Leave request not found.")
        if req.status != RequestStatus.PENDING:
            raise ValidationError("Only pending leave requests can be updated.")

        source = self._leave_type(actor, leave_type_id)
        days = self.compute_days(
            start_date=start_date, end_date=end_date, is_half_day=is_half_day, half_day_period=half_day_period
        )
        fields = {
            "leave_type_id": source.leave_type_id,
            "start_date": start_date,
            "end_date": end_date,
            "number_of_days": days,
            "is_half_day": bool(is_half_day),
            "half_day_period": (half_day_period or "").upper() if is_half_day else None,
            "reason": optional_text(reason),
            "supervisor_approver_id": employee.reporting_manager_id or req.supervisor_approver_id,
        }
        updated = replace(req, **fields)

        with self._transaction():
            self._release(actor, req)
            self._requests.update(request_id=req.request_id, fields=fields)
            self._reserve(actor, updated, source)
            self._audit.record(
                actor=actor,
                table_name="leave_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason="Employee updated leave request",
                changes=[AuditChange(k, getattr(req, k), v) for k, v in fields.items() if getattr(req, k) != v],
            )
        return updated

    def cancel(self, *, actor: Actor, request_id: int, reason: Optional[str] = None) -> LeaveRequest:
        employee = self._own_employee(actor, "cancel")
        req = self._get_request(actor, request_id)
        if req.employee_id != employee.employee_id:
            raise NotFoundError("Leave request not found.")
        if req.status != RequestStatus.PENDING:
            raise ValidationError("Only pending leave requests can be cancelled.")

        fields = {
            "status": RequestStatus.CANCELLED,
            "cancelled_at": now_local(),
            "cancellation_reason": optional_text(reason) or "Cancelled by employee",
        }
        with self._transaction():
            self._release(actor, req)
            self._decide(actor, req, fields, reason="Employee cancelled leave request")
        return replace(req, **fields)

    # ---- approvals -----------------------------------------------------

    def _supervised_pending(self, actor: Actor, request_id: int) -> LeaveRequest:
        supervisor_id = actor.require_employee("Employee profile not found.")
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req or req.status != RequestStatus.PENDING or req.supervisor_approver_id != supervisor_id:
            raise NotFoundError("Leave request not found or no longer pending.")
        return req

    def supervisor_approve(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> LeaveRequest:
        req = self._supervised_pending(actor, request_id)
        fields = {
            "status": RequestStatus.SUPERVISOR_APPROVED,
            "supervisor_decided_at": now_local(),
            "supervisor_remarks": optional_text(remarks),
        }
        with self._transaction():
            self._decide(actor, req, fields, reason="Supervisor approved leave request")
        return replace(req, **fields)

    def supervisor_reject(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> LeaveRequest:
        req = self._supervised_pending(actor, request_id)
        fields = {
            "status": RequestStatus.REJECTED,
            "supervisor_decided_at": now_local(),
            "supervisor_remarks": optional_text(remarks),
            "rejection_reason": optional_text(remarks) or "Rejected by supervisor",
        }
        with self._transaction():
            self._release(actor, req)
            self._decide(actor, req, fields, reason="Supervisor rejected leave request")
        return replace(req, **fields)

    def _hr_eligible(self, actor: Actor, request_id: int, verb: str) -> LeaveRequest:
        if actor.company_role not in HR_APPROVER_ROLES:
            raise AuthorizationError(f"Only HR or admins can {verb} this request.")
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req or req.status != RequestStatus.SUPERVISOR_APPROVED:
            raise NotFoundError("Leave request not found or no longer eligible.")
        return req

    def _final_approve(self, actor: Actor, req: LeaveRequest, remarks: Optional[str], reason: str) -> LeaveRequest:
        fields = {
            "status": RequestStatus.APPROVED,
            "hr_decided_by": actor.user_id,
            "hr_decided_at": now_local(),
            "hr_remarks": remarks,
        }
        self._consume(actor, req)
        self._decide(actor, req, fields, reason=reason)
        logger.info("Leave request %s approved by user_id=%s", req.request_number, actor.user_id)
        return replace(req, **fields)

    def _final_reject(self, actor: Actor, req: LeaveRequest, remarks: Optional[str], reason: str) -> LeaveRequest:
        fields = {
            "status": RequestStatus.REJECTED,
            "hr_decided_by": actor.user_id,
            "hr_decided_at": now_local(),
            "hr_remarks": remarks,
            "rejection_reason": remarks or "Rejected by approver",
        }
        self._release(actor, req)
        self._decide(actor, req, fields, reason=reason)
        return replace(req, **fields)

    def hr_approve(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> LeaveRequest:
        req = self._hr_eligible(actor, request_id, "approve")
        with self._transaction():
            return self._final_approve(actor, req, optional_text(remarks), "HR approved leave request")

    def hr_reject(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> LeaveRequest:
        req = self._hr_eligible(actor, request_id, "reject")
        with self._transaction():
            return self._final_reject(actor, req, optional_text(remarks), "HR rejected leave request")

    def _override(self, actor: Actor, request_id: int, remarks: Optional[str], *, approve: bool) -> LeaveRequest:
        """Final HR decision that also stands in for a missing or idle supervisor.

        A PENDING request is first moved to SUPERVISOR_APPROVED with the acting
        HR employee as fallback supervisor, then finalized in the same transaction.
        """

        if actor.company_role not in HR_APPROVER_ROLES:
            raise AuthorizationError("Only HR or admins can override approvals.")
        note = require_non_empty(remarks, "Override remarks")
        decision = "approval" if approve else "rejection"
        req = self._requests.get_by_id(company_id=actor.company_id, request_id=int(request_id))
        if not req:
            raise NotFoundError("Leave request not found in the active company.")
        if req.status not in (RequestStatus.PENDING, RequestStatus.SUPERVISOR_APPROVED):
            raise ValidationError(
                f"Leave request is no longer pending and cannot be override-{'approved' if approve else 'rejected'}."
            )

        with self._transaction():
            if req.status == RequestStatus.PENDING:
                stage = {
                    "status": RequestStatus.SUPERVISOR_APPROVED,
                    "supervisor_approver_id": req.supervisor_approver_id or actor.employee_id,
                    "supervisor_decided_at": now_local(),
                    "supervisor_remarks": f"HR supervisor-stage override for {decision}: {note}",
                }
                self._decide(actor, req, stage, reason=f"HR supervisor-stage override for {decision}")
                req = replace(req, **stage)
            final = f"HR final {decision} via supervisor override: {note}"
            if approve:
                return self._final_approve(actor, req, final, "HR approved leave request via override")
            return self._final_reject(actor, req, final, "HR rejected leave request via override")

    def hr_override_approve(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> LeaveRequest:
        return self._override(actor, request_id, remarks, approve=True)

    def hr_override_reject(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> LeaveRequest:
        return self._override(actor, request_id, remarks, approve=False)

    # ---- read models ---------------------------------------------------

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
