from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, ContextManager, Dict, List, Sequence

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..core.context import Actor
from ..core.enums import EMPLOYEE_MANAGER_ROLES, HR_APPROVER_ROLES, AuditAction, LeaveTransactionType
from ..core.exceptions import AuthorizationError, NotFoundError
from ..core.money import ZERO, round_days
from ..employees.repository import DepartmentRepository, EmployeeRepository
from .model import LeaveBalance, LeaveBalanceTransaction
from .policy import MANDATORY_LEAVE_COLUMN, is_mandatory_leave_name, is_reportable_leave_type, prorated_entitlement
from .repository import LeaveBalanceRepository, LeaveTypeRepository

logger = logging.getLogger(__name__)


@dataclass
class InitializationStats:
    employees_considered: int = 0
    leave_types_considered: int = 0
    balances_created: int = 0
    balances_skipped_existing: int = 0
    balances_skipped_no_policy: int = 0


class LeaveBalanceService:
    """Yearly balance initialization, balance views and the leave summary report."""

    def __init__(
        self,
        balances: LeaveBalanceRepository,
        leave_types: LeaveTypeRepository,
        employees: EmployeeRepository,
        departments: DepartmentRepository,
        audit: AuditService,
        *,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
    ):
        self._balances = balances
        self._leave_types = leave_types
        self._employees = employees
        self._departments = departments
        self._audit = audit
        self._transaction = transaction

    def initialize_year(self, *, actor: Actor, year: int) -> tuple[InitializationStats, str]:
        if actor.company_role not in EMPLOYEE_MANAGER_ROLES:
            raise AuthorizationError("You do not have access to leave policy settings.")

        year = int(year)
        year_end = date(year, 12, 31)
        employees = [e for e in self._employees.list_active(company_id=actor.company_id) if e.hire_date <= year_end]
        leave_types = [lt for lt in self._leave_types.list_for_company(actor.company_id) if lt.is_active]

        stats = InitializationStats(employees_considered=len(employees), leave_types_considered=len(leave_types))
        if not employees:
            return stats, f"No eligible employees found for {year}."
        if not leave_types:
            return stats, "No active leave types found for this company."

        policies = {
            (p.leave_type_id, p.employment_status): p
            for p in self._leave_types.list_policies([lt.leave_type_id for lt in leave_types])
        }
        employee_ids = [e.employee_id for e in employees]
        existing = self._balances.existing_keys(year=year, employee_ids=employee_ids)

        with self._transaction():
            for employee in employees:
                for lt in leave_types:
                    if (employee.employee_id, lt.leave_type_id) in existing:
                        stats.balances_skipped_existing += 1
                        continue

                    policy = policies.get((lt.leave_type_id, employee.employment_status))
                    carried = ZERO
                    if lt.is_carried_over:
                        previous = self._balances.get(
                            employee_id=employee.employee_id, leave_type_id=lt.leave_type_id, year=year - 1
                        )
                        carried = max(previous.available_balance, ZERO) if previous else ZERO
                        if lt.max_carry_over_days is not None:
                            carried = min(carried, max(lt.max_carry_over_days, ZERO))
                    carried = round_days(carried)

                    if policy is None and carried <= 0:
                        stats.balances_skipped_no_policy += 1
                        continue

                    earned = (
                        prorated_entitlement(
                            entitlement=policy.annual_entitlement,
                            method=policy.proration_method,
                            hire_date=employee.hire_date,
                            year=year,
                        )
                        if policy
                        else ZERO
                    )
                    current = round_days(carried + earned)
                    balance_id = self._balances.create(
                        LeaveBalance(
                            balance_id=0,
                            employee_id=employee.employee_id,
                            leave_type_id=lt.leave_type_id,
                            year=year,
                            opening_balance=carried,
                            credits_earned=earned,
                            credits_carried_over=carried,
                            current_balance=current,
                            available_balance=current,
                        )
                    )
                    if carried > 0:
                        self._balances.add_transaction(
                            LeaveBalanceTransaction(
                                balance_id=balance_id,
                                transaction_type=LeaveTransactionType.CARRY_OVER,
                                amount=carried,
                                running_balance=carried,
                                reference_type="YEAR_INITIALIZATION",
                                remarks=f"Carry-over from {year - 1}",
                                processed_by=actor.user_id,
                            )
                        )
                    if earned > 0:
                        self._balances.add_transaction(
                            LeaveBalanceTransaction(
                                balance_id=balance_id,
                                transaction_type=LeaveTransactionType.ACCRUAL,
                                amount=earned,
                                running_balance=current,
                                reference_type="YEAR_INITIALIZATION",
                                remarks=f"Year {year} entitlement initialization",
                                processed_by=actor.user_id,
                            )
                        )
                    stats.balances_created += 1

            self._audit.record(
                actor=actor,
                table_name="leave_balances",
                record_id=f"{actor.company_id}:{year}",
                action=AuditAction.CREATE,
                reason="Initialize leave balances for year",
                changes=[
                    AuditChange("year", None, year),
                    AuditChange("employees_considered", None, stats.employees_considered),
                    AuditChange("leave_types_considered", None, stats.leave_types_considered),
                    AuditChange("balances_created", None, stats.balances_created),
                    AuditChange("balances_skipped_existing", None, stats.balances_skipped_existing),
                    AuditChange("balances_skipped_no_policy", None, stats.balances_skipped_no_policy),
                ],
            )

        logger.info("Leave balances for %s initialized: %s", year, stats)
        return stats, f"Initialized {stats.balances_created} leave balance row(s) for {year}."

    def my_balances(self, *, actor: Actor, year: int) -> List[dict]:
        employee_id = actor.require_employee("Employee profile not found.")
        names = {lt.leave_type_id: lt.name for lt in self._leave_types.list_for_company(actor.company_id, active_only=False)}
        return [
            {
                "balance_id": b.balance_id,
                "leave_type": names.get(b.leave_type_id, "-"),
                "year": b.year,
                "opening_balance": b.opening_balance,
                "credits_earned": b.credits_earned,
                "credits_used": b.credits_used,
                "current_balance": b.current_balance,
                "pending_requests": b.pending_requests,
                "available_balance": b.available_balance,
            }
            for b in self._balances.list_for_employee(employee_id=employee_id, year=int(year))
        ]

    def balance_history(self, *, actor: Actor, balance_id: int) -> Sequence[LeaveBalanceTransaction]:
        balance = self._balances.get_by_id(int(balance_id))
        employee = None
        if balance:
            employee = self._employees.get_by_id(
                company_id=actor.company_id, employee_id=balance.employee_id, include_deleted=True
            )
        if not balance or not employee:
            raise NotFoundError("Leave balance not found.")
        if actor.company_role not in HR_APPROVER_ROLES and actor.employee_id != balance.employee_id:
            raise AuthorizationError("You can only view your own leave balance history.")
        return self._balances.list_transactions(balance.balance_id)

    def summary_report(self, *, actor: Actor, year: int) -> dict:
        """Available balance per employee for every reportable leave type of ``year``."""

        if actor.company_role not in HR_APPROVER_ROLES:
            raise AuthorizationError("Only HR or admins can view the leave summary report.")

        leave_types = {
            lt.leave_type_id: lt
            for lt in self._leave_types.list_for_company(actor.company_id, active_only=False)
            if is_reportable_leave_type(lt)
        }
        employees = {e.employee_id: e for e in self._employees.list_active(company_id=actor.company_id)}
        departments = {d.department_id: d.name for d in self._departments.list_all(actor.company_id)}

        balances = self._balances.list_for_company_year(company_id=actor.company_id, year=int(year))
        columns = sorted({leave_types[b.leave_type_id].name for b in balances if b.leave_type_id in leave_types})
        if not any(is_mandatory_leave_name(c) for c in columns):
            columns.append(MANDATORY_LEAVE_COLUMN)

        rows: Dict[int, dict] = {}
        for b in balances:
            lt = leave_types.get(b.leave_type_id)
            emp = employees.get(b.employee_id)
            if not lt or not emp:
                continue
            row = rows.setdefault(
                emp.employee_id,
                {
                    "employee_number": emp.employee_number,
                    "employee_name": emp.display_name,
                    "department_name": departments.get(emp.department_id, "Unassigned"),
                    "balances": {},
                    "used": {},
                },
            )
            row["balances"][lt.name] = b.available_balance
            row["used"][lt.name] = b.credits_used

        return {
            "year": int(year),
            "columns": columns,
            "rows": sorted(rows.values(), key=lambda r: (r["employee_name"], r["employee_number"])),
        }

