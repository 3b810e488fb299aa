"""Department approval flows for material requests."""
from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Dict, Iterable, List, Mapping, Optional, Sequence

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..core.constants import MATERIAL_REQUEST_MAX_STEPS
from ..core.context import Actor
from ..core.enums import EMPLOYEE_MANAGER_ROLES, AuditAction
from ..core.exceptions import NotFoundError, ValidationError
from ..employees.repository import DepartmentRepository
from ..users.repository import UserRepository
from .model import ApprovalFlow, FlowApprover
from .repository import ApprovalFlowRepository

logger = logging.getLogger(__name__)

FLOW_MANAGE_DENIED = "You do not have access to manage material-request approval flows."


def validate_flow_definition(required_steps: int, approvers: Sequence[FlowApprover]) -> None:
    """Raise ValidationError with the first problem in a flow definition."""

    if not 1 <= int(required_steps) <= MATERIAL_REQUEST_MAX_STEPS:
        raise ValidationError(f"Required steps must be between 1 and {MATERIAL_REQUEST_MAX_STEPS}.")
    if len(approvers) < required_steps:
        raise ValidationError(f"At least one approver per step is required for {required_steps} step(s).")

    seen = set()
    names: Dict[int, str] = {}
    for a in approvers:
        if not 1 <= a.step_number <= required_steps:
            raise ValidationError(f"Step number must be between 1 and {required_steps}.")
        if not a.step_name.strip():
            raise ValidationError("Step name is required.")
        key = (a.step_number, a.approver_user_id)
        if key in seen:
            raise ValidationError("Duplicate approver assignment for the same step is not allowed.")
        seen.add(key)
        existing = names.setdefault(a.step_number, a.step_name.strip())
        if existing != a.step_name.strip():
            raise ValidationError("All approvers under the same step must use the same step name.")

    for expected in range(1, required_steps + 1):
        if expected not in names:
            raise ValidationError(f"Step {expected} must have at least one approver.")


def parse_flow_approvers(rows: Iterable[Mapping[str, Any]]) -> List[FlowApprover]:
    approvers = []
    for row in rows:
        try:
            approvers.append(
                FlowApprover(
                    step_number=int(row.get("step_number")),
                    step_name=str(row.get("step_name") or "").strip(),
                    approver_user_id=int(row.get("approver_user_id")),
                )
            )
        except (TypeError, ValueError):
            raise ValidationError("Each approver needs a step number, step name and approver.")
    return approvers


class ApprovalFlowService:
    def __init__(
        self,
        flows: ApprovalFlowRepository,
        departments: DepartmentRepository,
        users: UserRepository,
        audit: AuditService,
        *,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
    ):
        self._flows = flows
        self._departments = departments
        self._users = users
        self._audit = audit
        self._transaction = transaction

    def list_flows(self, *, actor: Actor, department_id: Optional[int] = None) -> Sequence[ApprovalFlow]:
        actor.require_role(EMPLOYEE_MANAGER_ROLES, FLOW_MANAGE_DENIED)
        flows = self._flows.list_for_company(actor.company_id)
        if department_id is not None:
            flows = [f for f in flows if f.department_id == int(department_id)]
        return flows

    def upsert(
        self,
        *,
        actor: Actor,
        department_id: int,
        required_steps: int,
        approvers: Sequence[FlowApprover],
        is_active: bool = True,
    ) -> str:
        actor.require_role(EMPLOYEE_MANAGER_ROLES, FLOW_MANAGE_DENIED)
        validate_flow_definition(required_steps, approvers)

        department = self._departments.get_by_id(company_id=actor.company_id, department_id=int(department_id))
        if not department:
            raise NotFoundError("Department not found in the active company.")

        for user_id in {a.approver_user_id for a in approvers}:
            user = self._users.get_by_id(user_id)
            if not user or not user.is_active or user.company_id != actor.company_id:
                raise ValidationError("Department approval flow contains one or more inactive or unauthorized approvers.")

        existing = self._flows.get_for_department(company_id=actor.company_id, department_id=department.department_id)
        with self._transaction():
            flow_id = self._flows.upsert(
                company_id=actor.company_id,
                department_id=department.department_id,
                required_steps=int(required_steps),
                is_active=is_active,
                approvers=approvers,
            )
            self._audit.record(
                actor=actor,
                table_name="department_approval_flows",
                record_id=flow_id,
                action=AuditAction.UPDATE if existing else AuditAction.CREATE,
                reason="Material-request approval flow saved",
                changes=[
                    AuditChange("required_steps", existing.required_steps if existing else None, int(required_steps)),
                    AuditChange("approver_count", len(existing.approvers) if existing else None, len(approvers)),
                    AuditChange("is_active", existing.is_active if existing else None, is_active),
                ],
            )
        logger.info("Approval flow for department_id=%s saved (%s steps)", department.department_id, required_steps)
        return f"Material-request approval flow saved for department {department.name}."

    def delete(self, *, actor: Actor, department_id: int) -> str:
        actor.require_role(EMPLOYEE_MANAGER_ROLES, FLOW_MANAGE_DENIED)
        department = self._departments.get_by_id(company_id=actor.company_id, department_id=int(department_id))
        flow = (
            self._flows.get_for_department(company_id=actor.company_id, department_id=department.department_id)
            if department
            else None
        )
        if not flow:
            raise NotFoundError("Department approval flow not found.")
        with self._transaction():
            self._flows.delete(flow.flow_id)
            self._audit.record(
                actor=actor,
                table_name="department_approval_flows",
                record_id=flow.flow_id,
                action=AuditAction.DELETE,
                reason="Material-request approval flow deleted",
            )
        return f"Material-request approval flow deleted for department {department.name}."
