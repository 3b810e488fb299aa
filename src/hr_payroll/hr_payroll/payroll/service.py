from __future__ import annotations

import json
import logging
from contextlib import nullcontext
from dataclasses import replace
from typing import Any, Callable, ContextManager, Dict, List, Mapping, Optional, Sequence, Tuple

from ..attendance.repository import DtrRepository, WorkScheduleRepository
from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..common.datetime_utils import now_local
from ..common.validators import optional_text, require_non_empty, require_positive
from ..core.constants import REQUEST_NUMBER_ATTEMPTS
from ..core.context import Actor
from ..core.enums import (
    PAYROLL_ROLES,
    AuditAction,
    LineCategory,
    PayPeriodStatus,
    PayrollRunStatus,
    PayrollRunType,
    ProcessStepStatus,
)
from ..core.exceptions import DomainError, NotFoundError, ValidationError
from ..core.money import ZERO, currency_text, round_currency
from ..employees.model import Employee
from ..employees.repository import EmployeeRepository
from ..leave.repository import LeaveRequestRepository, LeaveTypeRepository
from ..overtime.repository import OvertimeRequestRepository
from .calculator.base import EmployeePayInput, RunContext, with_totals
from .calculator.factory import PayrollCalculatorFactory
from .model import PROCESS_STEPS, PayPeriod, PayrollRun, Payslip, PayslipLine, ProcessStep
from .register import RegisterInputRow, build_register_csv
from .repository import PayPeriodRepository, PayrollRunRepository, PayrollSettingsRepository, PayslipRepository
from .statutory import REQUIRED_SETTINGS

logger = logging.getLogger(__name__)

ACCESS_DENIED = "You do not have access to payroll operations."
RUN_SEQUENCE_DIGITS = 5
CLOSABLE_STATUSES = frozenset({PayrollRunStatus.FOR_PAYMENT, PayrollRunStatus.APPROVED})
REOPENABLE_STATUSES = frozenset({PayrollRunStatus.PAID, PayrollRunStatus.APPROVED, PayrollRunStatus.FOR_PAYMENT})


def next_run_number(year: int, latest: Optional[str], attempt: int = 0) -> str:
    """RUN-{YYYY}-{NNNNN}, one past the latest run number of the year (plus ``attempt`` on retries)."""

    suffix = (latest or "").rsplit("-", 1)[-1]
    current = int(suffix) if suffix.isdigit() else 0
    return f"RUN-{year}-{current + 1 + attempt:0{RUN_SEQUENCE_DIGITS}d}"


def parse_filters(filters_json: Optional[str]) -> Tuple[List[int], List[int]]:
    data = json.loads(filters_json) if filters_json else {}
    return [int(v) for v in data.get("department_ids") or []], [int(v) for v in data.get("employee_ids") or []]


def in_period(employee: Employee, period: PayPeriod) -> bool:
    if employee.hire_date > period.cutoff_end:
        return False
    return employee.separation_date is None or employee.separation_date >= period.cutoff_start


def run_totals(payslips: Sequence[Payslip]) -> Dict[str, Any]:
    return dict(
        total_employees=len(payslips),
        total_gross_pay=round_currency(sum((p.gross_pay for p in payslips), ZERO)),
        total_deductions=round_currency(sum((p.total_deductions for p in payslips), ZERO)),
        total_net_pay=round_currency(sum((p.net_pay for p in payslips), ZERO)),
        total_employer_contributions=round_currency(sum((p.employer_contributions for p in payslips), ZERO)),
    )


class PayrollService:
    """Six-step payroll run workflow: create, validate, calculate, review, generate payslips, close."""

    def __init__(
        self,
        *,
        periods: PayPeriodRepository,
        runs: PayrollRunRepository,
        payslips: PayslipRepository,
        settings: PayrollSettingsRepository,
        employees: EmployeeRepository,
        schedules: WorkScheduleRepository,
        dtrs: DtrRepository,
        leave_types: LeaveTypeRepository,
        leave_requests: LeaveRequestRepository,
        overtime_requests: OvertimeRequestRepository,
        audit: AuditService,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
        calculators: Optional[PayrollCalculatorFactory] = None,
    ):
        self._periods = periods
        self._runs = runs
        self._payslips = payslips
        self._settings = settings
        self._employees = employees
        self._schedules = schedules
        self._dtrs = dtrs
        self._leave_types = leave_types
        self._leave_requests = leave_requests
        self._overtime = overtime_requests
        self._audit = audit
        self._transaction = transaction
        self._calculators = calculators or PayrollCalculatorFactory()

    # -- helpers ---------------------------------------------------------

    def _get_run(self, actor: Actor, run_id: int) -> PayrollRun:
        actor.require_role(PAYROLL_ROLES, ACCESS_DENIED)
        run = self._runs.get(company_id=actor.company_id, run_id=int(run_id))
        if not run:
            raise NotFoundError("Payroll run not found.")
        return run

    def _steps(self, run_id: int) -> Dict[int, ProcessStep]:
        return {s.step_number: s for s in self._runs.list_steps(run_id)}

    def _step_done(self, run_id: int, step_number: int) -> bool:
        step = self._steps(run_id).get(step_number)
        return bool(step and step.is_completed)

    def _period(self, run: PayrollRun) -> PayPeriod:
        period = self._periods.get_by_id(company_id=run.company_id, period_id=run.period_id)
        if not period:
            raise NotFoundError("Pay period not found.")
        return period

    def _scope(self, company_id: int, period: PayPeriod, department_ids: Sequence[int], employee_ids: Sequence[int]) -> List[Employee]:
        rows = self._employees.list_active(company_id=company_id, department_ids=department_ids, employee_ids=employee_ids)
        return [e for e in rows if in_period(e, period)]

    def _run_scope(self, run: PayrollRun, period: PayPeriod) -> List[Employee]:
        department_ids, employee_ids = parse_filters(run.filters_json)
        return self._scope(run.company_id, period, department_ids, employee_ids)

    def _set_step(self, run_id: int, step_number: int, status: ProcessStepStatus, *, notes: Optional[str] = None) -> None:
        done = status == ProcessStepStatus.COMPLETED
        fields: Dict[str, Any] = dict(status=status, is_completed=done, completed_at=now_local() if done else None)
        if notes is not None:
            fields["notes"] = notes
        self._runs.update_step(run_id=run_id, step_number=step_number, fields=fields)

    def _write_run(self, actor: Actor, run: PayrollRun, fields: Mapping[str, Any], *, reason: str) -> PayrollRun:
        self._runs.update(run_id=run.run_id, fields=fields)
        self._audit.record(
            actor=actor,
            table_name="payroll_runs",
            record_id=run.run_id,
            action=AuditAction.UPDATE,
            reason=reason,
            changes=[AuditChange(k, getattr(run, k), v) for k, v in fields.items() if getattr(run, k) != v],
        )
        return replace(run, **fields)

    def _generate_run_number(self, year: int) -> str:
        latest = self._runs.latest_run_number(f"RUN-{year}-")
        for attempt in range(REQUEST_NUMBER_ATTEMPTS):
            number = next_run_number(year, latest, attempt)
            if not self._runs.run_number_exists(number):
                return number
        raise DomainError("Unable to generate a unique payroll run number. Please try again.")

    def _refresh_totals(self, actor: Actor, run: PayrollRun, *, reason: str) -> PayrollRun:
        return self._write_run(actor, run, run_totals(self._payslips.list_for_run(run.run_id)), reason=reason)

    # -- run lifecycle ---------------------------------------------------

    def create_run(
        self,
        *,
        actor: Actor,
        period_id: int,
        run_type: PayrollRunType = PayrollRunType.REGULAR,
        department_ids: Sequence[int] = (),
        employee_ids: Sequence[int] = (),
    ) -> Tuple[PayrollRun, str]:
        actor.require_role(PAYROLL_ROLES, ACCESS_DENIED)
        period = self._periods.get_by_id(company_id=actor.company_id, period_id=int(period_id))
        if not period:
            raise NotFoundError("Pay period not found.")
        if period.status != PayPeriodStatus.OPEN:
            raise ValidationError("Selected pay period is not open.")

        active = self._runs.find_active_run(period_id=period.period_id)
        if active:
            raise ValidationError(f"A payroll run is already in progress for this period ({active.run_number}).")

        department_ids = sorted({int(v) for v in department_ids})
        employee_ids = sorted({int(v) for v in employee_ids})
        scope = self._scope(actor.company_id, period, department_ids, employee_ids)
        if not scope:
            raise ValidationError("No eligible employees matched this payroll run scope.")

        now = now_local()
        draft = PayrollRun(
            run_id=0,
            company_id=actor.company_id,
            period_id=period.period_id,
            run_number="",
            run_type=run_type,
            status=PayrollRunStatus.DRAFT,
            current_step=2,
            created_by=actor.user_id,
            total_employees=len(scope),
            filters_json=json.dumps({"department_ids": department_ids, "employee_ids": employee_ids}),
        )
        with self._transaction():
            number = self._generate_run_number(now.year)
            draft = replace(draft, run_number=number)
            run_id = self._runs.create(draft)
            steps = []
            for step_number, name in PROCESS_STEPS:
                status = ProcessStepStatus.PENDING
                if step_number == 1:
                    status = ProcessStepStatus.COMPLETED
                elif step_number == 2:
                    status = ProcessStepStatus.IN_PROGRESS
                steps.append(
                    ProcessStep(
                        run_id=run_id,
                        step_number=step_number,
                        step_name=name,
                        status=status,
                        is_completed=step_number == 1,
                        completed_at=now if step_number == 1 else None,
                    )
                )
            self._runs.create_steps(steps)
            self._audit.record(
                actor=actor,
                table_name="payroll_runs",
                record_id=run_id,
                action=AuditAction.CREATE,
                reason="Payroll run created",
                changes=[
                    AuditChange("run_number", None, number),
                    AuditChange("run_type", None, run_type),
                    AuditChange("period_id", None, period.period_id),
                    AuditChange("total_employees", None, len(scope)),
                ],
            )
        logger.info("Payroll run %s created for period_id=%s (%d employees)", number, period.period_id, len(scope))
        return replace(draft, run_id=run_id), f"Payroll run {number} created."

    def validate(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str, List[str]]:
        """Check run inputs; errors fail step 2, warnings are reported but allowed."""

        run = self._get_run(actor, run_id)
        if run.current_step > 2:
            raise ValidationError("Run is already beyond validation step.")
        period = self._period(run)

        errors: List[str] = []
        warnings: List[str] = []
        if period.status != PayPeriodStatus.OPEN:
            errors.append("Selected pay period is not open.")
        scope = self._run_scope(run, period)
        if not scope:
            errors.append("No eligible employees matched this payroll run scope.")
        for employee in scope:
            if not employee.monthly_salary or employee.monthly_salary <= 0:
                errors.append(f"Employee {employee.employee_number} has no monthly salary.")

        if run.run_type != PayrollRunType.THIRTEENTH_MONTH:
            tables = self._settings.statutory_tables()
            if not tables.sss:
                warnings.append("SSS contribution table is not configured.")
            if not tables.tax:
                warnings.append("Withholding tax table is not configured.")
            missing = [key for key in REQUIRED_SETTINGS if tables.setting(key) is None]
            if missing:
                warnings.append(f"Statutory settings missing: {', '.join(missing)}.")
            pending_leave = self._leave_requests.count_pending_in_range(
                company_id=run.company_id, start=period.cutoff_start, end=period.cutoff_end
            )
            if pending_leave:
                warnings.append(f"{pending_leave} leave request(s) in this period are still pending.")
            pending_ot = self._overtime.count_pending_in_range(
                company_id=run.company_id, start=period.cutoff_start, end=period.cutoff_end
            )
            if pending_ot:
                warnings.append(f"{pending_ot} overtime request(s) in this period are still pending.")

        with self._transaction():
            if errors:
                self._set_step(run.run_id, 2, ProcessStepStatus.FAILED, notes="\n".join(errors))
                run = self._write_run(actor, run, {"status": PayrollRunStatus.DRAFT}, reason="Payroll validation failed")
            else:
                self._set_step(run.run_id, 2, ProcessStepStatus.COMPLETED, notes="\n".join(warnings))
                run = self._write_run(
                    actor,
                    run,
                    {"status": PayrollRunStatus.VALIDATING, "total_employees": len(scope)},
                    reason="Payroll validation completed",
                )

        if errors:
            logger.info("Payroll run %s failed validation: %d error(s)", run.run_number, len(errors))
            raise ValidationError(f"Validation failed ({len(errors)}): {errors[0]}")
        if warnings:
            return run, f"Validation completed with {len(warnings)} warning(s).", warnings
        return run, "Validation completed.", warnings

    def proceed_to_calculate(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if not self._step_done(run.run_id, 2):
            raise ValidationError("Validate step must be completed first.")
        if run.current_step > 2:
            raise ValidationError("Run is already beyond validation step.")
        with self._transaction():
            run = self._write_run(
                actor,
                run,
                {"status": PayrollRunStatus.VALIDATING, "current_step": 3},
                reason="Proceeded to calculation step",
            )
            self._set_step(run.run_id, 3, ProcessStepStatus.IN_PROGRESS)
        return run, "Validation reviewed. Proceeded to calculation step."

    def _context(self, run: PayrollRun, period: PayPeriod) -> RunContext:
        holidays = self._settings.list_holidays(company_id=run.company_id, start=period.cutoff_start, end=period.cutoff_end)
        return RunContext(
            run=run,
            period=period,
            policy=self._settings.get_policy(run.company_id),
            tables=self._settings.statutory_tables(),
            holidays={h.holiday_date: h for h in holidays},
            overtime_rates=self._settings.overtime_rates(run.company_id),
            attendance_rules={r.rule_type: r for r in self._settings.attendance_rules(run.company_id)},
        )

    def _inputs(self, run: PayrollRun, period: PayPeriod, scope: Sequence[Employee]) -> List[EmployeePayInput]:
        ids = [e.employee_id for e in scope]
        if run.run_type == PayrollRunType.THIRTEENTH_MONTH:
            ytd = self._payslips.ytd_earnings(company_id=run.company_id, year=period.year, employee_ids=ids)
            inputs = []
            for e in scope:
                basic, gross = ytd.get(e.employee_id, (ZERO, ZERO))
                inputs.append(EmployeePayInput(employee=e, ytd_basic=basic, ytd_gross=gross))
            return inputs

        start, end = period.cutoff_start, period.cutoff_end
        schedules = {s.schedule_id: s for s in self._schedules.list_all(run.company_id)}
        paid_types = frozenset(t.leave_type_id for t in self._leave_types.list_for_company(run.company_id, active_only=False) if t.is_paid)

        def by_employee(rows) -> Dict[int, list]:
            grouped: Dict[int, list] = {}
            for row in rows:
                grouped.setdefault(row.employee_id, []).append(row)
            return grouped

        dtrs = by_employee(self._dtrs.list_for_employees(employee_ids=ids, start=start, end=end))
        leaves = by_employee(self._leave_requests.list_approved_in_range(employee_ids=ids, start=start, end=end))
        overtime = by_employee(self._overtime.list_approved_in_range(employee_ids=ids, start=start, end=end))
        recurring = by_employee(self._settings.recurring_deductions(ids))

        return [
            EmployeePayInput(
                employee=e,
                schedule=schedules.get(e.work_schedule_id) if e.work_schedule_id else None,
                dtrs=dtrs.get(e.employee_id, []),
                leaves=leaves.get(e.employee_id, []),
                paid_leave_type_ids=paid_types,
                overtime=overtime.get(e.employee_id, []),
                recurring=recurring.get(e.employee_id, []),
            )
            for e in scope
        ]

    def calculate(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if not self._step_done(run.run_id, 2) or run.current_step < 3:
            raise ValidationError("Payroll run must pass validation before calculation.")
        if run.current_step > 3:
            raise ValidationError("Run is already beyond calculation step.")
        period = self._period(run)
        scope = self._run_scope(run, period)
        if not scope:
            raise ValidationError("No eligible employees matched this payroll run scope.")

        context = self._context(run, period)
        calculator = self._calculators.for_run_type(run.run_type)
        payslips = [calculator.calculate(context, data) for data in self._inputs(run, period, scope)]

        with self._transaction():
            self._payslips.replace_for_run(run.run_id, payslips)
            fields = dict(run_totals(payslips), status=PayrollRunStatus.COMPUTED, processed_at=now_local())
            run = self._write_run(actor, run, fields, reason="Payroll calculated")
            self._set_step(run.run_id, 3, ProcessStepStatus.COMPLETED)
        logger.info("Payroll run %s calculated: %d payslips, net %s", run.run_number, len(payslips), run.total_net_pay)
        return run, "Payroll calculation completed."

    def proceed_to_review(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if not self._step_done(run.run_id, 3):
            raise ValidationError("Calculation step must be completed before proceeding.")
        if run.current_step > 3 or run.status == PayrollRunStatus.PAID:
            raise ValidationError("Run is already beyond calculation step.")
        with self._transaction():
            run = self._write_run(
                actor,
                run,
                {"status": PayrollRunStatus.FOR_REVIEW, "current_step": 4},
                reason="Proceeded to review step",
            )
            self._set_step(run.run_id, 4, ProcessStepStatus.IN_PROGRESS)
        return run, "Calculation reviewed. Proceeded to review/adjust step."

    def _editable_payslip(self, actor: Actor, run_id: int, payslip_id: int) -> Tuple[PayrollRun, Payslip]:
        run = self._get_run(actor, run_id)
        if run.status != PayrollRunStatus.FOR_REVIEW:
            raise ValidationError(f"Adjustments are not allowed for {run.status.value} runs.")
        if run.current_step != 4:
            raise ValidationError("Review step is no longer editable for this run.")
        payslip = self._payslips.get(run_id=run.run_id, payslip_id=int(payslip_id))
        if not payslip:
            raise NotFoundError("Payslip not found.")
        return run, payslip

    def add_adjustment(
        self,
        *,
        actor: Actor,
        run_id: int,
        payslip_id: int,
        category: LineCategory,
        name: str,
        amount: Any,
        description: Optional[str] = None,
        is_taxable: bool = False,
    ) -> Tuple[Payslip, str]:
        run, payslip = self._editable_payslip(actor, run_id, payslip_id)
        label = require_non_empty(name, "Adjustment name")
        value = round_currency(require_positive(amount, "Adjustment amount"))
        line = PayslipLine(
            category=LineCategory(category),
            code="ADJUSTMENT",
            name=label,
            amount=value,
            description=optional_text(description) or label,
            is_taxable=bool(is_taxable) and LineCategory(category) == LineCategory.EARNING,
            is_manual=True,
        )
        with self._transaction():
            line_id = self._payslips.add_line(payslip.payslip_id, line)
            updated = with_totals(payslip, list(payslip.lines) + [replace(line, line_id=line_id)])
            self._payslips.save_totals(updated)
            self._audit.record(
                actor=actor,
                table_name="payslips",
                record_id=payslip.payslip_id,
                action=AuditAction.UPDATE,
                reason=f"Manual {line.category.value.lower()} adjustment added: {label}",
                changes=[AuditChange("net_pay", payslip.net_pay, updated.net_pay)],
            )
            self._refresh_totals(actor, run, reason="Payroll adjustment added")
        return updated, f"Adjustment added. New net pay is PHP {currency_text(updated.net_pay)}."

    def remove_adjustment(self, *, actor: Actor, run_id: int, payslip_id: int, line_id: int) -> Tuple[Payslip, str]:
        run, payslip = self._editable_payslip(actor, run_id, payslip_id)
        target = next((l for l in payslip.lines if l.line_id == int(line_id)), None)
        if target is None or not target.is_manual:
            raise NotFoundError("Adjustment not found.")
        with self._transaction():
            self._payslips.delete_line(payslip_id=payslip.payslip_id, line_id=target.line_id)
            updated = with_totals(payslip, [l for l in payslip.lines if l.line_id != target.line_id])
            self._payslips.save_totals(updated)
            self._audit.record(
                actor=actor,
                table_name="payslips",
                record_id=payslip.payslip_id,
                action=AuditAction.UPDATE,
                reason=f"Manual adjustment removed: {target.name}",
                changes=[AuditChange("net_pay", payslip.net_pay, updated.net_pay)],
            )
            self._refresh_totals(actor, run, reason="Payroll adjustment removed")
        return updated, f"Adjustment removed. New net pay is PHP {currency_text(updated.net_pay)}."

    def complete_review(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if not self._step_done(run.run_id, 3):
            raise ValidationError("Payroll must be calculated before review completion.")
        if run.current_step > 4 or run.status == PayrollRunStatus.PAID:
            raise ValidationError("Review step is no longer editable for this run.")
        with self._transaction():
            run = self._write_run(
                actor,
                run,
                {"status": PayrollRunStatus.FOR_REVIEW, "current_step": 5},
                reason="Payroll review completed",
            )
            self._set_step(run.run_id, 4, ProcessStepStatus.COMPLETED)
            self._set_step(run.run_id, 5, ProcessStepStatus.IN_PROGRESS)
        return run, "Payroll review completed. Ready to generate payslips."

    def generate_payslips(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if not self._step_done(run.run_id, 4):
            raise ValidationError("Review and adjustment step must be completed first.")
        if run.current_step > 5 or run.status == PayrollRunStatus.PAID:
            raise ValidationError("Payslip generation is no longer available for this run.")
        if self._payslips.count_for_run(run.run_id) == 0:
            raise ValidationError("No payslips found. Run calculation first.")
        now = now_local()
        with self._transaction():
            self._payslips.mark_generated(run_id=run.run_id, generated_at=now)
            run = self._write_run(
                actor,
                run,
                {"status": PayrollRunStatus.APPROVED, "approved_at": now, "approved_by": actor.user_id},
                reason="Payslips generated",
            )
            self._set_step(run.run_id, 5, ProcessStepStatus.COMPLETED)
        logger.info("Payslips generated for payroll run %s", run.run_number)
        return run, "Payslips generated. Review and proceed when ready."

    def proceed_to_close(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if not self._step_done(run.run_id, 5):
            raise ValidationError("Generate payslips step must be completed before proceeding.")
        if run.current_step > 5 or run.status == PayrollRunStatus.PAID:
            raise ValidationError("Run is already beyond payslip generation.")
        with self._transaction():
            run = self._write_run(
                actor,
                run,
                {"status": PayrollRunStatus.FOR_PAYMENT, "current_step": 6},
                reason="Proceeded to close step",
            )
            self._set_step(run.run_id, 6, ProcessStepStatus.IN_PROGRESS)
        return run, "Proceeded to close period step."

    def close(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if run.status == PayrollRunStatus.PAID:
            return run, "Payroll run is already closed and locked."
        if run.status not in CLOSABLE_STATUSES:
            raise ValidationError("Payroll run is not in a closable state.")
        steps = self._steps(run.run_id)
        if not (steps.get(5) and steps[5].is_completed):
            raise ValidationError("Generate payslips step must be completed before closing run.")

        now = now_local()
        with self._transaction():
            run = self._write_run(
                actor,
                run,
                {"status": PayrollRunStatus.PAID, "current_step": 6, "paid_at": now, "paid_by": actor.user_id},
                reason="Payroll run closed",
            )
            for step_number in (4, 5):
                step = steps.get(step_number)
                if step is None or not step.is_completed:
                    self._set_step(run.run_id, step_number, ProcessStepStatus.COMPLETED)
            self._set_step(run.run_id, 6, ProcessStepStatus.COMPLETED)
            if run.run_type == PayrollRunType.REGULAR:
                self._periods.set_status(period_id=run.period_id, status=PayPeriodStatus.LOCKED.value, actor_user_id=actor.user_id, at=now)
        logger.info("Payroll run %s closed by user_id=%s", run.run_number, actor.user_id)
        return run, "Payroll run closed successfully."

    def reopen(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, str]:
        run = self._get_run(actor, run_id)
        if run.status not in REOPENABLE_STATUSES:
            raise ValidationError("Only approved/paid payroll runs can be reopened.")
        with self._transaction():
            run = self._write_run(
                actor,
                run,
                {"status": PayrollRunStatus.FOR_REVIEW, "current_step": 4, "paid_at": None, "paid_by": None},
                reason="Payroll run reopened",
            )
            self._set_step(run.run_id, 4, ProcessStepStatus.IN_PROGRESS)
            self._set_step(run.run_id, 5, ProcessStepStatus.PENDING)
            self._set_step(run.run_id, 6, ProcessStepStatus.PENDING)
            if run.run_type == PayrollRunType.REGULAR:
                self._periods.set_status(period_id=run.period_id, status=PayPeriodStatus.OPEN.value, actor_user_id=None, at=None)
        logger.info("Payroll run %s reopened by user_id=%s", run.run_number, actor.user_id)
        return run, "Payroll run reopened for review."

    # -- queries ---------------------------------------------------------

    def list_periods(self, *, actor: Actor, year: int) -> Sequence[PayPeriod]:
        actor.require_role(PAYROLL_ROLES, ACCESS_DENIED)
        return self._periods.list_for_year(company_id=actor.company_id, year=int(year))

    def list_runs(self, *, actor: Actor) -> Sequence[dict]:
        actor.require_role(PAYROLL_ROLES, ACCESS_DENIED)
        return self._runs.list_runs(company_id=actor.company_id)

    def run_detail(self, *, actor: Actor, run_id: int) -> Tuple[PayrollRun, Sequence[ProcessStep], Sequence[Payslip]]:
        run = self._get_run(actor, run_id)
        steps = sorted(self._runs.list_steps(run.run_id), key=lambda s: s.step_number)
        return run, steps, self._payslips.list_for_run(run.run_id)

    def register_csv(self, *, actor: Actor, run_id: int) -> Tuple[str, str]:
        """Return ``(filename, csv_text)`` for the run's payroll register."""

        run = self._get_run(actor, run_id)
        payslips = {p.payslip_id: p for p in self._payslips.list_for_run(run.run_id)}
        rows = []
        for row in self._payslips.register_rows(run.run_id):
            payslip = payslips.get(int(row["payslip_id"]))
            if payslip is None:
                continue
            rows.append(
                RegisterInputRow(
                    employee_number=row["employee_number"],
                    employee_name=row["employee_name"],
                    department_name=row.get("department_name"),
                    period_start=row["cutoff_start"],
                    period_end=row["cutoff_end"],
                    basic_pay=payslip.basic_pay,
                    sss=payslip.sss_employee,
                    philhealth=payslip.philhealth_employee,
                    pagibig=payslip.pagibig_employee,
                    tax=payslip.withholding_tax,
                    net_pay=payslip.net_pay,
                    lines=payslip.lines,
                )
            )
        return f"payroll-register-{run.run_number}.csv", build_register_csv(rows)

    def my_payslips(self, *, actor: Actor) -> Sequence[dict]:
        employee_id = actor.require_employee()
        return self._payslips.list_generated_for_employee(employee_id)

    def my_payslip(self, *, actor: Actor, payslip_id: int) -> Payslip:
        employee_id = actor.require_employee()
        payslip = self._payslips.get_for_employee(employee_id=employee_id, payslip_id=int(payslip_id))
        if not payslip or payslip.generated_at is None:
            raise NotFoundError("Payslip not found.")
        return payslip
