from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence, Tuple

from .model import (
    AttendanceRule,
    Holiday,
    PayPeriod,
    PayrollPolicy,
    PayrollRun,
    Payslip,
    PayslipLine,
    ProcessStep,
    RecurringDeduction,
    StatutoryTables,
)


class PayPeriodRepository(Protocol):
    def get_by_id(self, *, company_id: int, period_id: int) -> Optional[PayPeriod]:
        raise NotImplementedError

    def list_for_year(self, *, company_id: int, year: int) -> Sequence[PayPeriod]:
        raise NotImplementedError

    def set_status(self, *, period_id: int, status: str, actor_user_id: Optional[int], at: Optional[datetime]) -> None:
        raise NotImplementedError


class PayrollSettingsRepository(Protocol):
    """Read side of the company payroll configuration and statutory tables."""

    def get_policy(self, company_id: int) -> PayrollPolicy:
        raise NotImplementedError

    def list_holidays(self, *, company_id: int, start: date, end: date) -> Sequence[Holiday]:
        raise NotImplementedError

    def overtime_rates(self, company_id: int) -> Mapping[str, Decimal]:
        raise NotImplementedError

    def attendance_rules(self, company_id: int) -> Sequence[AttendanceRule]:
        raise NotImplementedError

    def statutory_tables(self) -> StatutoryTables:
        raise NotImplementedError

    def recurring_deductions(self, employee_ids: Sequence[int]) -> Sequence[RecurringDeduction]:
        raise NotImplementedError


class PayrollRunRepository(Protocol):
    def latest_run_number(self, prefix: str) -> Optional[str]:
        raise NotImplementedError

    def run_number_exists(self, run_number: str) -> bool:
        raise NotImplementedError

    def find_active_run(self, *, period_id: int) -> Optional[PayrollRun]:
        raise NotImplementedError

    def create(self, run: PayrollRun) -> int:
        raise NotImplementedError

    def get(self, *, company_id: int, run_id: int) -> Optional[PayrollRun]:
        raise NotImplementedError

    def update(self, *, run_id: int, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def list_runs(self, *, company_id: int, limit: int = 200) -> Sequence[dict]:
        raise NotImplementedError

    def create_steps(self, steps: Sequence[ProcessStep]) -> None:
        raise NotImplementedError

    def list_steps(self, run_id: int) -> Sequence[ProcessStep]:
        raise NotImplementedError

    def update_step(self, *, run_id: int, step_number: int, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError


class PayslipRepository(Protocol):
    def replace_for_run(self, run_id: int, payslips: Sequence[Payslip]) -> None:
        """Delete the run's payslips and lines and insert ``payslips`` with their lines."""

        raise NotImplementedError

    def list_for_run(self, run_id: int) -> Sequence[Payslip]:
        raise NotImplementedError

    def count_for_run(self, run_id: int) -> int:
        raise NotImplementedError

    def get(self, *, run_id: int, payslip_id: int) -> Optional[Payslip]:
        raise NotImplementedError

    def get_for_employee(self, *, employee_id: int, payslip_id: int) -> Optional[Payslip]:
        raise NotImplementedError

    def add_line(self, payslip_id: int, line: PayslipLine) -> int:
        raise NotImplementedError

    def delete_line(self, *, payslip_id: int, line_id: int) -> bool:
        raise NotImplementedError

    def save_totals(self, payslip: Payslip) -> None:
        raise NotImplementedError

    def mark_generated(self, *, run_id: int, generated_at: datetime) -> None:
        raise NotImplementedError

    def list_generated_for_employee(self, employee_id: int, *, limit: int = 200) -> Sequence[dict]:
        """Payslips of the employee whose run has been released (step 5 or later), newest first."""

        raise NotImplementedError

    def ytd_earnings(self, *, company_id: int, year: int, employee_ids: Sequence[int]) -> Mapping[int, Tuple[Decimal, Decimal]]:
        """``{employee_id: (basic, gross)}`` over PAID regular runs of ``year``."""

        raise NotImplementedError

    def register_rows(self, run_id: int) -> Sequence[dict]:
        """Run payslips joined with employee name, number, department and cutoff dates."""

        raise NotImplementedError

    def report_rows(self, *, company_id: int, start: date, end: date) -> Sequence[dict]:
        """Payslip attendance figures of closed REGULAR and TRIAL_RUN runs whose cutoff ends in ``[start, end]``."""

        raise NotImplementedError
