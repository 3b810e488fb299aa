from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import replace
from datetime import date
from typing import Any, Callable, ContextManager, Dict, List, Optional, Sequence

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..common.datetime_utils import now_local
from ..common.validators import optional_text
from ..core.constants import MATERIAL_REQUEST_MAX_STEPS, REQUEST_NUMBER_ATTEMPTS
from ..core.context import Actor
from ..core.enums import AuditAction, CompanyRole, MaterialRequestStatus, ProcessingStatus, StepStatus
from ..core.exceptions import AuthorizationError, DomainError, NotFoundError, ValidationError
from ..employees.repository import DepartmentRepository, EmployeeRepository
from ..users.repository import UserRepository
from .calculations import compute_totals, normalize_items
from .model import REQUEST_TYPES, SERIES, ApprovalStep, FlowApprover, MaterialRequest, MaterialRequestDraft
from .repository import ApprovalFlowRepository, MaterialRequestRepository

logger = logging.getLogger(__name__)

SEQUENCE_DIGITS = 6


def next_request_number(series: str, today: date, latest: Optional[str], attempt: int = 0) -> str:
    """MR-{series}-{YYYYMMDD}-{NNNNNN}, one past the latest number for the same series and day."""

    prefix = f"MR-{series}-{today:%Y%m%d}-"
    suffix = (latest or "").rsplit("-", 1)[-1]
    current = int(suffix) if suffix.isdigit() else 0
    return f"{prefix}{current + 1 + attempt:0{SEQUENCE_DIGITS}d}"


def _request_fields(draft: MaterialRequestDraft) -> Dict[str, Any]:
    if draft.series not in SERIES:
        raise ValidationError("Unknown material request series.")
    if draft.request_type not in REQUEST_TYPES:
        raise ValidationError("Unknown material request type.")
    if draft.date_prepared > draft.date_required:
        raise ValidationError("Prepared date must be on or before required date.")
    selected = tuple(draft.selected_approvers[:MATERIAL_REQUEST_MAX_STEPS])
    selected += (None,) * (MATERIAL_REQUEST_MAX_STEPS - len(selected))
    return dict(
        series=draft.series,
        request_type=draft.request_type,
        date_prepared=draft.date_prepared,
        date_required=draft.date_required,
        purpose=optional_text(draft.purpose),
        remarks=optional_text(draft.remarks),
        selected_approvers=selected,
    )


class MaterialRequestService:
    """Requester drafts and the department multi-step approval chain."""

    def __init__(
        self,
        requests: MaterialRequestRepository,
        flows: ApprovalFlowRepository,
        employees: EmployeeRepository,
        departments: DepartmentRepository,
        users: UserRepository,
        audit: AuditService,
        *,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
    ):
        self._requests = requests
        self._flows = flows
        self._employees = employees
        self._departments = departments
        self._users = users
        self._audit = audit
        self._transaction = transaction

    # ---- requester -----------------------------------------------------

    def _requester(self, actor: Actor):
        if actor.company_role != CompanyRole.EMPLOYEE:
            raise AuthorizationError("Only employees can submit material requests in this portal.")
        employee_id = actor.require_employee("No linked employee profile found for this account.")
        employee = self._employees.get_by_id(company_id=actor.company_id, employee_id=employee_id)
        if not employee or not employee.is_active:
            raise NotFoundError("No linked employee profile found for this account.")
        return employee

    def _department_id(self, actor: Actor, draft: MaterialRequestDraft, fallback: Optional[int]) -> int:
        department_id = draft.department_id or fallback
        if not department_id:
            raise ValidationError("Department is required before creating a material request.")
        if not self._departments.get_by_id(company_id=actor.company_id, department_id=int(department_id)):
            raise ValidationError("Department is not available in the active company.")
        return int(department_id)

    def _own_request(self, actor: Actor, request_id: int, missing: str) -> MaterialRequest:
        req = self._requests.get(company_id=actor.company_id, request_id=int(request_id), for_update=True)
        if not req or req.requester_user_id != actor.user_id:
            raise NotFoundError(missing)
        return req

    def _generate_number(self, actor: Actor, series: str) -> str:
        today = now_local().date()
        latest = self._requests.latest_number(company_id=actor.company_id, prefix=f"MR-{series}-{today:%Y%m%d}-")
        for attempt in range(REQUEST_NUMBER_ATTEMPTS):
            number = next_request_number(series, today, latest, attempt)
            if not self._requests.number_exists(number):
                return number
        raise DomainError("Failed to create material request draft: REQUEST_NUMBER_GENERATION_FAILED")

    def create_draft(self, *, actor: Actor, draft: MaterialRequestDraft) -> MaterialRequest:
        employee = self._requester(actor)
        fields = _request_fields(draft)
        department_id = self._department_id(actor, draft, employee.department_id)
        items = normalize_items(draft.items)
        totals = compute_totals(items, freight=draft.freight, discount=draft.discount)

        with self._transaction():
            number = self._generate_number(actor, draft.series)
            request = MaterialRequest(
                request_id=0,
                company_id=actor.company_id,
                request_number=number,
                requester_employee_id=employee.employee_id,
                requester_user_id=actor.user_id,
                department_id=department_id,
                status=MaterialRequestStatus.DRAFT,
                freight=totals.freight,
                discount=totals.discount,
                subtotal=totals.subtotal,
                grand_total=totals.grand_total,
                **fields,
            )
            request_id = self._requests.create(request=request, items=items)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=request_id,
                action=AuditAction.CREATE,
                reason="Material request draft created",
                changes=[
                    AuditChange("request_number", None, number),
                    AuditChange("status", None, MaterialRequestStatus.DRAFT),
                    AuditChange("grand_total", None, totals.grand_total),
                    AuditChange("item_count", None, len(items)),
                ],
            )
        logger.info("Material request %s drafted by user_id=%s", number, actor.user_id)
        return replace(request, request_id=request_id)

    def update_draft(self, *, actor: Actor, request_id: int, draft: MaterialRequestDraft) -> MaterialRequest:
        employee = self._requester(actor)
        fields = _request_fields(draft)
        fields["department_id"] = self._department_id(actor, draft, employee.department_id)
        items = normalize_items(draft.items)
        totals = compute_totals(items, freight=draft.freight, discount=draft.discount)
        fields.update(
            freight=totals.freight, discount=totals.discount, subtotal=totals.subtotal, grand_total=totals.grand_total
        )

        with self._transaction():
            req = self._own_request(actor, request_id, "Material request draft not found.")
            if req.status != MaterialRequestStatus.DRAFT:
                raise ValidationError("Only draft material requests can be edited.")
            if draft.series != req.series:
                raise ValidationError("Series cannot be changed after the request number is assigned.")
            self._requests.update(request_id=req.request_id, fields=fields)
            self._requests.replace_items(request_id=req.request_id, items=items)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason="Material request draft updated",
                changes=[AuditChange(k, getattr(req, k), v) for k, v in fields.items() if getattr(req, k) != v]
                + [AuditChange("item_count", len(req.items), len(items))],
            )
        return replace(req, **fields)

    def delete_draft(self, *, actor: Actor, request_id: int) -> str:
        self._requester(actor)
        with self._transaction():
            req = self._own_request(actor, request_id, "Material request draft not found.")
            if req.status != MaterialRequestStatus.DRAFT:
                raise ValidationError("Only draft material requests can be deleted.")
            self._requests.delete(req.request_id)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.DELETE,
                reason="Material request draft deleted",
                changes=[AuditChange("request_number", req.request_number, None)],
            )
        return f"Material request {req.request_number} draft deleted."

    def _submission_steps(self, actor: Actor, req: MaterialRequest) -> List[FlowApprover]:
        flow = self._flows.get_for_department(company_id=actor.company_id, department_id=req.department_id)
        if not flow or not flow.is_active:
            raise ValidationError("No active department approval flow found for this request.")

        for step_number in range(1, flow.required_steps + 1):
            step_approvers = flow.approvers_for(step_number)
            if not step_approvers:
                continue
            selected = req.selected_approver(step_number)
            if not selected:
                raise ValidationError(f"{flow.step_name(step_number)} approver selection is required before submitting.")
            if not any(a.approver_user_id == selected for a in step_approvers):
                raise ValidationError(
                    f"Selected approver for {flow.step_name(step_number)} is no longer valid for the department flow."
                )

        steps = [
            a
            for a in flow.approvers
            if 1 <= a.step_number <= flow.required_steps and a.approver_user_id == req.selected_approver(a.step_number)
        ]
        for expected in range(1, flow.required_steps + 1):
            if not any(a.step_number == expected for a in steps):
                raise ValidationError(
                    "Department approval flow is invalid. Each required step must have at least one approver."
                )

        for user_id in {a.approver_user_id for a in steps}:
            user = self._users.get_by_id(user_id)
            if not user or not user.is_active or user.company_id != actor.company_id:
                raise ValidationError("Department approval flow contains one or more inactive or unauthorized approvers.")
        return sorted(steps, key=lambda a: a.step_number)

    def submit(self, *, actor: Actor, request_id: int) -> MaterialRequest:
        self._requester(actor)
        with self._transaction():
            req = self._own_request(actor, request_id, "Material request not found in the active company.")
            if req.status != MaterialRequestStatus.DRAFT:
                raise ValidationError("Only draft material requests can be submitted for approval.")
            if not req.items:
                raise ValidationError("At least one item is required before submitting the request.")

            steps = self._submission_steps(actor, req)
            required_steps = max(a.step_number for a in steps)
            fields = {
                "status": MaterialRequestStatus.PENDING_APPROVAL,
                "current_step": 1,
                "required_steps": required_steps,
                "submitted_at": now_local(),
            }
            self._requests.create_steps(request_id=req.request_id, approvers=steps)
            self._requests.update(request_id=req.request_id, fields=fields)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason="Material request submitted for approval",
                changes=[
                    AuditChange("status", req.status, MaterialRequestStatus.PENDING_APPROVAL),
                    AuditChange("current_step", req.current_step, 1),
                    AuditChange("required_steps", req.required_steps, required_steps),
                ],
            )
        logger.info("Material request %s submitted (%s step(s))", req.request_number, required_steps)
        return replace(req, **fields)

    def cancel(self, *, actor: Actor, request_id: int, reason: Optional[str] = None) -> MaterialRequest:
        acted_at = now_local()
        fields = {
            "status": MaterialRequestStatus.CANCELLED,
            "cancelled_at": acted_at,
            "cancellation_reason": optional_text(reason) or "Cancelled by requester",
        }
        with self._transaction():
            req = self._own_request(actor, request_id, "Material request not found in the active company.")
            if req.status not in (MaterialRequestStatus.DRAFT, MaterialRequestStatus.PENDING_APPROVAL):
                raise ValidationError("Only draft or pending requests can be cancelled.")
            if req.status == MaterialRequestStatus.PENDING_APPROVAL and any(
                s.status in (StepStatus.APPROVED, StepStatus.REJECTED) for s in req.steps
            ):
                raise ValidationError("This request already has an approval decision and can no longer be cancelled.")
            self._requests.skip_pending_steps(request_id=req.request_id, acted_at=acted_at, remarks="Cancelled by requester")
            self._requests.update(request_id=req.request_id, fields=fields)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason="Requester cancelled material request",
                changes=[
                    AuditChange("status", req.status, MaterialRequestStatus.CANCELLED),
                    AuditChange("cancellation_reason", None, fields["cancellation_reason"]),
                ],
            )
        return replace(req, **fields)

    # ---- approvers -----------------------------------------------------

    def _pending_step(self, actor: Actor, request_id: int, verb: str):
        req = self._requests.get(company_id=actor.company_id, request_id=int(request_id), for_update=True)
        if not req or req.status != MaterialRequestStatus.PENDING_APPROVAL:
            raise NotFoundError("Material request not found or no longer pending approval.")
        step = _pending_step_for(req, actor.user_id)
        if step is None:
            raise AuthorizationError(f"You are not allowed to {verb} this request at the current step.")
        return req, step

    def approve(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> MaterialRequest:
        acted_at = now_local()
        with self._transaction():
            req, step = self._pending_step(actor, request_id, "approve")
            is_final = step.step_number >= (req.required_steps or step.step_number)
            if is_final:
                fields: Dict[str, Any] = {
                    "status": MaterialRequestStatus.APPROVED,
                    "approved_at": acted_at,
                    "processing_status": ProcessingStatus.PENDING_PURCHASER,
                    "processing_started_at": None,
                    "processing_completed_at": None,
                    "processed_by": None,
                }
            else:
                fields = {"current_step": step.step_number + 1}

            if not self._requests.decide_step(
                step_id=step.step_id, status=StepStatus.APPROVED, acted_at=acted_at, remarks=optional_text(remarks)
            ):
                raise ValidationError("The approval step is no longer pending.")
            self._requests.skip_pending_steps(
                request_id=req.request_id,
                step_number=step.step_number,
                acted_at=acted_at,
                remarks="Skipped after step approval",
            )
            self._requests.update(request_id=req.request_id, fields=fields)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason=f"Approved step {step.step_number} ({step.step_name})",
                changes=[
                    AuditChange("status", req.status, fields.get("status", req.status)),
                    AuditChange("current_step", req.current_step, fields.get("current_step", req.current_step)),
                ],
            )
        logger.info(
            "Material request %s step %s approved by user_id=%s%s",
            req.request_number,
            step.step_number,
            actor.user_id,
            " (final)" if is_final else "",
        )
        return replace(req, **fields)

    def reject(self, *, actor: Actor, request_id: int, remarks: Optional[str] = None) -> MaterialRequest:
        acted_at = now_local()
        fields = {
            "status": MaterialRequestStatus.REJECTED,
            "rejected_at": acted_at,
            "rejection_reason": optional_text(remarks),
        }
        with self._transaction():
            req, step = self._pending_step(actor, request_id, "reject")
            if not self._requests.decide_step(
                step_id=step.step_id, status=StepStatus.REJECTED, acted_at=acted_at, remarks=optional_text(remarks)
            ):
                raise ValidationError("The approval step is no longer pending.")
            self._requests.skip_pending_steps(
                request_id=req.request_id,
                from_step=step.step_number,
                acted_at=acted_at,
                remarks="Skipped after rejection",
            )
            self._requests.update(request_id=req.request_id, fields=fields)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason=f"Rejected at step {step.step_number} ({step.step_name})",
                changes=[
                    AuditChange("status", req.status, MaterialRequestStatus.REJECTED),
                    AuditChange("rejection_reason", None, fields["rejection_reason"]),
                ],
            )
        logger.info("Material request %s rejected at step %s", req.request_number, step.step_number)
        return replace(req, **fields)

    # ---- read models ---------------------------------------------------

    def my_requests(self, *, actor: Actor) -> Sequence[dict]:
        return self._requests.list_for_requester(company_id=actor.company_id, user_id=actor.user_id)

    def approval_queue(self, *, actor: Actor) -> Sequence[dict]:
        return self._requests.list_pending_for_approver(company_id=actor.company_id, user_id=actor.user_id)

    def get_detail(self, *, actor: Actor, request_id: int) -> MaterialRequest:
        req = self._requests.get(company_id=actor.company_id, request_id=int(request_id))
        if not req:
            raise NotFoundError("Material request not found in the active company.")
        involved = req.requester_user_id == actor.user_id or any(s.approver_user_id == actor.user_id for s in req.steps)
        if not involved and actor.company_role == CompanyRole.EMPLOYEE:
            raise NotFoundError("Material request not found in the active company.")
        return req


def _pending_step_for(req: MaterialRequest, user_id: int) -> Optional[ApprovalStep]:
    if not req.current_step:
        return None
    for step in req.steps:
        if step.step_number == req.current_step and step.approver_user_id == user_id and step.status == StepStatus.PENDING:
            return step
    return None
