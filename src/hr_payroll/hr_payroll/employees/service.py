from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Dict, Mapping, Optional

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..common.datetime_utils import now_local, parse_date_field
from ..common.validators import optional_text, require_decimal, require_non_empty
from ..core.context import Actor
from ..core.enums import EMPLOYEE_MANAGER_ROLES, AuditAction, CompanyRole, PayFrequency
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..core.money import round_currency
from .model import EMPLOYMENT_STATUSES, UPDATABLE_FIELDS, Employee
from .repository import DepartmentRepository, EmployeeRepository

logger = logging.getLogger(__name__)

_REQUIRED_ON_CREATE = ("employee_number", "first_name", "last_name", "hire_date")
_TRUE_WORDS = {"1", "true", "yes", "y", "on"}
_FALSE_WORDS = {"0", "false", "no", "n", "off"}


def _parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValidationError(f"{field_name} must be yes or no.")


def _parse_optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field_name} must be a whole number.")


def normalize_employee_fields(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert submitted values into typed column values.

    Only keys present in ``raw`` are returned; ``None`` means "clear".
    """

    out: Dict[str, Any] = {}
    for field in UPDATABLE_FIELDS:
        if field not in raw:
            continue
        value = raw[field]

        if field in ("employee_number", "first_name", "last_name"):
            label = field.replace("_", " ").capitalize()
            out[field] = require_non_empty(value, label)
        elif field in ("middle_name", "email", "position"):
            out[field] = optional_text(value)
        elif field == "employment_status":
            status = str(value or "").strip().upper().replace(" ", "_").replace("-", "_")
            if status not in EMPLOYMENT_STATUSES:
                raise ValidationError(f'Unknown employment status "{value}".')
            out[field] = status
        elif field == "hire_date":
            out[field] = parse_date_field(value, "Hire date")
        elif field == "separation_date":
            out[field] = parse_date_field(value, "Separation date") if optional_text(value) else None
        elif field in ("department_id", "reporting_manager_id", "work_schedule_id"):
            out[field] = _parse_optional_int(value, field.replace("_", " ").capitalize())
        elif field == "monthly_salary":
            if optional_text(value) is None:
                out[field] = None
            else:
                salary = require_decimal(value, "Monthly salary")
                if salary < 0:
                    raise ValidationError("Monthly salary cannot be negative.")
                out[field] = round_currency(salary)
        elif field == "pay_frequency":
            try:
                out[field] = PayFrequency(str(value or "").strip().upper())
            except ValueError:
                raise ValidationError(f'Unknown pay frequency "{value}".')
        else:
            out[field] = _parse_bool(value, field.replace("_", " ").capitalize())
    return out


class EmployeeService:
    """Use cases: onboarding, profile updates, soft delete/restore and the masterlist."""

    def __init__(
        self,
        employees: EmployeeRepository,
        departments: DepartmentRepository,
        audit: AuditService,
        *,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
    ):
        self._employees = employees
        self._departments = departments
        self._audit = audit
        self._transaction = transaction

    def _require_manager(self, actor: Actor) -> None:
        actor.require_role(EMPLOYEE_MANAGER_ROLES, "Only Company Admin or HR Admin can manage employees.")

    def _get_in_company(self, actor: Actor, employee_id: int, *, include_deleted: bool = False) -> Employee:
        emp = self._employees.get_by_id(
            company_id=actor.company_id, employee_id=int(employee_id), include_deleted=include_deleted
        )
        if not emp:
            raise NotFoundError("Employee record was not found in the selected company.")
        return emp

    def _check_references(self, actor: Actor, fields: Mapping[str, Any], *, employee_id: Optional[int] = None) -> None:
        department_id = fields.get("department_id")
        if department_id is not None:
            if not self._departments.get_by_id(company_id=actor.company_id, department_id=department_id):
                raise ValidationError("Selected department does not exist.")

        manager_id = fields.get("reporting_manager_id")
        if manager_id is not None:
            if employee_id is not None and manager_id == employee_id:
                raise ValidationError("An employee cannot report to themselves.")
            if not self._employees.get_by_id(company_id=actor.company_id, employee_id=manager_id):
                raise ValidationError("Selected reporting manager does not exist.")

        number = fields.get("employee_number")
        if number:
            existing = self._employees.get_by_number(company_id=actor.company_id, employee_number=number)
            if existing and existing.employee_id != employee_id:
                raise ValidationError(f"Employee number {number} is already in use.")

    def create(self, *, actor: Actor, data: Mapping[str, Any]) -> int:
        self._require_manager(actor)
        for field in _REQUIRED_ON_CREATE:
            if optional_text(data.get(field)) is None:
                raise ValidationError(f"{field.replace('_', ' ').capitalize()} is required.")

        fields = normalize_employee_fields(data)
        fields.setdefault("employment_status", "REGULAR")
        fields.setdefault("pay_frequency", PayFrequency.SEMI_MONTHLY)
        self._check_references(actor, fields)

        with self._transaction():
            employee_id = self._employees.create(company_id=actor.company_id, fields=fields)
            self._audit.record(
                actor=actor,
                table_name="employees",
                record_id=employee_id,
                action=AuditAction.CREATE,
                reason="Employee onboarding",
                changes=[AuditChange(k, None, v) for k, v in fields.items() if v is not None],
            )

        logger.info("Employee %s created by user_id=%s", fields["employee_number"], actor.user_id)
        return employee_id

    def update(self, *, actor: Actor, employee_id: int, data: Mapping[str, Any], reason: Optional[str] = None) -> int:
        """Apply a partial profile update; returns the number of changed fields."""

        self._require_manager(actor)
        current = self._get_in_company(actor, employee_id)
        fields = normalize_employee_fields(data)
        return self._apply_update(actor, current, fields, reason=reason or "Employee profile update")

    def _apply_update(self, actor: Actor, current: Employee, fields: Mapping[str, Any], *, reason: str) -> int:
        changed = {k: v for k, v in fields.items() if getattr(current, k) != v}
        if not changed:
            return 0
        self._check_references(actor, changed, employee_id=current.employee_id)

        with self._transaction():
            self._employees.update(employee_id=current.employee_id, fields=changed)
            self._audit.record(
                actor=actor,
                table_name="employees",
                record_id=current.employee_id,
                action=AuditAction.UPDATE,
                reason=reason,
                changes=[AuditChange(k, getattr(current, k), v) for k, v in changed.items()],
            )
        return len(changed)

    def delete(self, *, actor: Actor, employee_id: int) -> None:
        if actor.company_role != CompanyRole.COMPANY_ADMIN:
            raise AuthorizationError("Only Company Admin can delete employees.")
        if actor.employee_id is not None and int(actor.employee_id) == int(employee_id):
            raise AuthorizationError("You cannot delete your own employee record.")

        emp = self._get_in_company(actor, employee_id)
        with self._transaction():
            if not self._employees.soft_delete(
                employee_id=emp.employee_id, deleted_by=actor.user_id, deleted_at=now_local()
            ):
                raise NotFoundError("Employee record was not found in the selected company.")
            self._audit.record(
                actor=actor,
                table_name="employees",
                record_id=emp.employee_id,
                action=AuditAction.DELETE,
                reason="Employee deleted",
                changes=[AuditChange("is_active", True, False)],
            )
        logger.info("Employee %s soft-deleted by user_id=%s", emp.employee_number, actor.user_id)

    def restore(self, *, actor: Actor, employee_id: int) -> None:
        if actor.company_role != CompanyRole.COMPANY_ADMIN:
            raise AuthorizationError("Only Company Admin can restore employees.")

        emp = self._get_in_company(actor, employee_id, include_deleted=True)
        if emp.deleted_at is None:
            raise ValidationError("Employee record is not deleted.")

        with self._transaction():
            self._employees.restore(employee_id=emp.employee_id)
            self._audit.record(
                actor=actor,
                table_name="employees",
                record_id=emp.employee_id,
                action=AuditAction.UPDATE,
                reason="Employee restored",
                changes=[AuditChange("is_active", False, True)],
            )

    def get_profile(self, *, actor: Actor, employee_id: int) -> Employee:
        if actor.company_role not in EMPLOYEE_MANAGER_ROLES and actor.employee_id != int(employee_id):
            raise AuthorizationError("You can only view your own employee profile.")
        return self._get_in_company(actor, employee_id)

    def masterlist(
        self,
        *,
        actor: Actor,
        search: str = "",
        department_id: Optional[int] = None,
        include_inactive: bool = False,
        page: int = 1,
        page_size: int = 25,
    ) -> dict:
        self._require_manager(actor)
        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), 100)
        rows, total = self._employees.list_masterlist(
            company_id=actor.company_id,
            search=(search or "").strip(),
            department_id=department_id,
            include_inactive=include_inactive,
            page=page,
            page_size=page_size,
        )
        return {
            "rows": list(rows),
            "total": total,
            "page": page,
            "page_size": page_size,
            "page_count": max((total + page_size - 1) // page_size, 1),
        }

    def list_departments(self, *, actor: Actor):
        return self._departments.list_all(actor.company_id)
