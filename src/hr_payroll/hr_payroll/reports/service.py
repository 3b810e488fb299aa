from __future__ import annotations

import csv
import io
import logging
from datetime import date

from ..core.context import Actor
from ..core.enums import HR_APPROVER_ROLES
from ..core.exceptions import ValidationError
from ..core.money import currency_text
from ..payroll.repository import PayslipRepository
from .late_overtime import LateOvertimeReport, build_report, source_row

logger = logging.getLogger(__name__)

MAX_TOP = 50


class ReportService:
    """Read-only payroll reports for HR and payroll admins."""

    def __init__(self, payslips: PayslipRepository):
        self._payslips = payslips

    def late_overtime(self, *, actor: Actor, start: date, end: date, include_trial_runs: bool = False, top: int = 10) -> LateOvertimeReport:
        actor.require_role(HR_APPROVER_ROLES, "You do not have access to payroll reports.")
        if end < start:
            raise ValidationError("End date must be on or after start date.")
        rows = [source_row(r) for r in self._payslips.report_rows(company_id=actor.company_id, start=start, end=end)]
        report = build_report(rows, include_trial_runs=include_trial_runs, top=max(1, min(int(top), MAX_TOP)))
        logger.debug("Late/overtime report %s..%s: %d source rows", start, end, len(rows))
        return report

    def late_overtime_csv(self, *, actor: Actor, start: date, end: date, include_trial_runs: bool = False) -> str:
        report = self.late_overtime(actor=actor, start=start, end=end, include_trial_runs=include_trial_runs)
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["Emp ID", "Employee Name", "Department", "Late (mins)", "Tardiness Deduction", "OT Hours", "OT Pay"])
        for row in report.employees:
            f = row.figures
            writer.writerow(
                [
                    row.employee_number,
                    row.employee_name,
                    row.department_name or "UNASSIGNED",
                    f.late_mins,
                    currency_text(f.tardiness_deduction),
                    f.overtime_hours,
                    currency_text(f.overtime_pay),
                ]
            )
        t = report.totals
        writer.writerow(["TOTAL", "", "", t.late_mins, currency_text(t.tardiness_deduction), t.overtime_hours, currency_text(t.overtime_pay)])
        return buf.getvalue()
