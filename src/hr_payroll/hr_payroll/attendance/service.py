from __future__ import annotations

import csv
import io
import logging
from contextlib import nullcontext
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, ContextManager, Dict, List, Optional, Tuple

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..common.datetime_utils import ensure_end_after_start, parse_time_field
from ..common.validators import optional_text
from ..core.constants import DEFAULT_BREAK_MINUTES, DTR_MANUAL_LEAVE_REFERENCE
from ..core.context import Actor
from ..core.enums import DTR_EDITOR_ROLES, AttendanceStatus, AuditAction, DayFraction
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..core.money import ZERO, round_hours
from ..employees.repository import EmployeeRepository
from ..leave.ledger import LeaveLedger, LedgerReference
from ..leave.model import LeaveBalance, LeaveType
from ..leave.repository import LeaveTypeRepository
from .factory import DtrStrategyFactory
from .model import DailyTimeRecord, WorkSchedule
from .night_diff import calculate_night_diff_hours
from .repository import DtrRepository, WorkScheduleRepository

logger = logging.getLogger(__name__)

EXPORT_HEADERS = (
    "Date",
    "Employee Number",
    "Employee Name",
    "Department",
    "Time In",
    "Time Out",
    "Hours Worked",
    "Tardiness Mins",
    "Undertime Mins",
    "Overtime Hours",
    "Night Diff Hours",
    "Attendance Status",
    "Remarks",
)


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%H:%M") if value else ""


class AttendanceService:
    """Manual DTR corrections, DTR logs and the DTR export."""

    def __init__(
        self,
        dtr: DtrRepository,
        employees: EmployeeRepository,
        schedules: WorkScheduleRepository,
        leave_types: LeaveTypeRepository,
        ledger: LeaveLedger,
        audit: AuditService,
        *,
        strategy_factory: DtrStrategyFactory | None = None,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
    ):
        self._dtr = dtr
        self._employees = employees
        self._schedules = schedules
        self._leave_types = leave_types
        self._ledger = ledger
        self._audit = audit
        self._factory = strategy_factory or DtrStrategyFactory()
        self._transaction = transaction

    def _schedule_for(self, work_schedule_id: Optional[int]) -> Optional[WorkSchedule]:
        if not work_schedule_id:
            return None
        return self._schedules.get_by_id(int(work_schedule_id))

    def compute_metrics(
        self,
        *,
        attendance_date: date,
        time_in: datetime,
        time_out: datetime,
        schedule: Optional[WorkSchedule],
    ) -> Dict[str, Any]:
        break_minutes = schedule.break_minutes if schedule else DEFAULT_BREAK_MINUTES
        worked_seconds = (time_out - time_in).total_seconds() - break_minutes * 60
        hours_worked = max(Decimal(int(worked_seconds)) / Decimal(3600), ZERO)

        scheduled_in: Optional[datetime] = None
        scheduled_out: Optional[datetime] = None
        if schedule and not schedule.is_rest_day(attendance_date):
            scheduled_in = datetime.combine(attendance_date, schedule.work_start_time)
            scheduled_out = ensure_end_after_start(scheduled_in, datetime.combine(attendance_date, schedule.work_end_time))

        grace = schedule.grace_minutes if schedule else 0
        arrival = self._factory.for_time_in(time_in=time_in, scheduled_in=scheduled_in, grace_minutes=grace)
        departure = self._factory.for_time_out(time_out=time_out, scheduled_out=scheduled_out)
        in_decision = arrival.decide_time_in(time_in=time_in, scheduled_in=scheduled_in, grace_minutes=grace)
        out_decision = departure.decide_time_out(time_out=time_out, scheduled_out=scheduled_out)

        return {
            "hours_worked": round_hours(hours_worked),
            "tardiness_mins": in_decision.tardiness_mins,
            "undertime_mins": out_decision.undertime_mins,
            "overtime_hours": round_hours(out_decision.overtime_hours),
            "night_diff_hours": round_hours(calculate_night_diff_hours(time_in, time_out)),
        }

    def update_dtr(
        self,
        *,
        actor: Actor,
        employee_id: int,
        attendance_date: date,
        attendance_status: str,
        time_in: Optional[str] = None,
        time_out: Optional[str] = None,
        remarks: Optional[str] = None,
        leave_type_id: Optional[int] = None,
        day_fraction: Optional[str] = None,
    ) -> bool:
        """Create or correct one DTR row; returns True when a new row was created.

        ON_LEAVE rows charge a FULL or HALF day against the chosen paid leave
        type. Changing the status, leave type or fraction reverses the earlier
        charge before applying the new one.
        """

        if actor.company_role not in DTR_EDITOR_ROLES:
            raise AuthorizationError("Only Company Admin or HR Admin can manually modify DTR records.")

        try:
            status = AttendanceStatus(str(attendance_status or "").strip().upper())
        except ValueError:
            raise ValidationError("Invalid attendance status.")

        employee = self._employees.get_by_id(company_id=actor.company_id, employee_id=int(employee_id))
        if not employee:
            raise NotFoundError("Employee not found for this company.")

        in_t = parse_time_field(time_in, "Time in")
        out_t = parse_time_field(time_out, "Time out")
        if (in_t is None) != (out_t is None):
            raise ValidationError("Both time in and time out are required when providing attendance time.")
        if status == AttendanceStatus.PRESENT and in_t is None:
            raise ValidationError("Present status requires both time in and time out.")
        try:
            fraction = DayFraction(str(day_fraction or DayFraction.FULL.value).strip().upper())
        except ValueError:
            raise ValidationError("Day fraction must be FULL or HALF.")

        fields: Dict[str, Any] = {
            "actual_time_in": None,
            "actual_time_out": None,
            "hours_worked": ZERO,
            "tardiness_mins": 0,
            "undertime_mins": 0,
            "overtime_hours": ZERO,
            "night_diff_hours": ZERO,
            "attendance_status": status,
            "remarks": optional_text(remarks),
        }
        if in_t is not None and out_t is not None:
            actual_in = datetime.combine(attendance_date, in_t)
            actual_out = ensure_end_after_start(actual_in, datetime.combine(attendance_date, out_t))
            fields["actual_time_in"] = actual_in
            fields["actual_time_out"] = actual_out
            fields.update(
                self.compute_metrics(
                    attendance_date=attendance_date,
                    time_in=actual_in,
                    time_out=actual_out,
                    schedule=self._schedule_for(employee.work_schedule_id),
                )
            )

        with self._transaction():
            existing = self._dtr.get_for_employee_and_date(employee.employee_id, attendance_date)
            changes = [
                AuditChange(name, getattr(existing, name) if existing else None, value)
                for name, value in fields.items()
                if existing is None or getattr(existing, name) != value
            ]
            prior = (
                self._ledger.active_deduction(reference_type=DTR_MANUAL_LEAVE_REFERENCE, reference_id=existing.dtr_id)
                if existing
                else None
            )
            leave_type = None
            if status == AttendanceStatus.ON_LEAVE:
                leave_type = self._leave_type_for(actor, leave_type_id, prior)

            dtr_id = self._dtr.upsert(
                employee_id=employee.employee_id,
                attendance_date=attendance_date,
                fields=fields,
                updated_by=actor.user_id,
            )
            changes += self._sync_leave_usage(
                actor,
                employee_id=employee.employee_id,
                dtr_id=dtr_id,
                attendance_date=attendance_date,
                leave_type=leave_type,
                days=Decimal("0.5") if fraction == DayFraction.HALF else Decimal("1"),
                prior=prior,
            )
            self._audit.record(
                actor=actor,
                table_name="dtr_records",
                record_id=dtr_id,
                action=AuditAction.UPDATE if existing else AuditAction.CREATE,
                reason="DTR manual correction" if existing else "DTR manual creation",
                changes=changes,
            )

        logger.info(
            "DTR %s for employee_id=%s on %s by user_id=%s",
            "updated" if existing else "created",
            employee.employee_id,
            attendance_date.isoformat(),
            actor.user_id,
        )
        return existing is None

    def _leave_type_for(
        self, actor: Actor, leave_type_id: Optional[int], prior: Optional[Tuple[LeaveBalance, Decimal]]
    ) -> LeaveType:
        if leave_type_id in (None, "") and prior is not None:
            leave_type_id = prior[0].leave_type_id
        if leave_type_id in (None, ""):
            raise ValidationError("Leave type is required when attendance status is ON_LEAVE.")
        try:
            wanted = int(leave_type_id)
        except (TypeError, ValueError):
            raise ValidationError("Leave type is not available for this company.")
        leave_type = self._leave_types.get_by_id(company_id=actor.company_id, leave_type_id=wanted)
        if not leave_type or not leave_type.is_active:
            raise ValidationError("Leave type is not available for this company.")
        return leave_type

    def _sync_leave_usage(
        self,
        actor: Actor,
        *,
        employee_id: int,
        dtr_id: int,
        attendance_date: date,
        leave_type: Optional[LeaveType],
        days: Decimal,
        prior: Optional[Tuple[LeaveBalance, Decimal]],
    ) -> List[AuditChange]:
        """Bring the DTR leave deduction in line with the row; returns audit changes."""

        wanted = leave_type if leave_type is not None and leave_type.is_paid else None
        unchanged = (
            wanted is not None
            and prior is not None
            and prior[0].leave_type_id == wanted.leave_type_id
            and prior[0].year == attendance_date.year
            and prior[1] == days
        )
        ref = LedgerReference(
            DTR_MANUAL_LEAVE_REFERENCE, dtr_id, f"manual DTR leave on {attendance_date:%Y-%m-%d}", actor.user_id
        )
        if prior is not None and not unchanged:
            self._ledger.restore(prior[0], days=prior[1], ref=ref)
        if wanted is not None and not unchanged:
            self._ledger.deduct(
                employee_id=employee_id,
                leave_type_id=wanted.leave_type_id,
                year=attendance_date.year,
                days=days,
                ref=ref,
            )

        old_type, old_days = (prior[0].leave_type_id, prior[1]) if prior else (None, ZERO)
        new_type, new_days = (wanted.leave_type_id, days) if wanted else (None, ZERO)
        changes = []
        if old_type != new_type:
            changes.append(AuditChange("manual_leave_type_id", old_type, new_type))
        if old_days != new_days:
            changes.append(AuditChange("manual_leave_days", old_days, new_days))
        return changes

    def get_logs(self, *, actor: Actor, employee_id: int, start: date, end: date) -> List[dict]:
        if actor.company_role not in DTR_EDITOR_ROLES and actor.employee_id != int(employee_id):
            raise AuthorizationError("You can only view your own DTR logs.")
        if end < start:
            raise ValidationError("End date must be on or after start date.")

        employee = self._employees.get_by_id(company_id=actor.company_id, employee_id=int(employee_id))
        if not employee:
            raise NotFoundError("Employee not found for this company.")

        records = self._dtr.list_for_employees(employee_ids=[employee.employee_id], start=start, end=end)
        return [self._to_ui(r) for r in records]

    def _to_ui(self, r: DailyTimeRecord) -> dict:
        return {
            "dtr_id": r.dtr_id,
            "date": r.attendance_date.strftime("%Y-%m-%d"),
            "time_in": _fmt_time(r.actual_time_in) or "-",
            "time_out": _fmt_time(r.actual_time_out) or "-",
            "hours_worked": r.hours_worked,
            "tardiness_mins": r.tardiness_mins,
            "undertime_mins": r.undertime_mins,
            "overtime_hours": r.overtime_hours,
            "night_diff_hours": r.night_diff_hours,
            "status": r.attendance_status.value,
            "remarks": r.remarks or "",
        }

    def export_csv(self, *, actor: Actor, start: date, end: date) -> str:
        if actor.company_role not in DTR_EDITOR_ROLES:
            raise AuthorizationError("You do not have permission to export DTR records.")
        if end < start:
            raise ValidationError("End date must be on or after start date.")
        if (end - start) > timedelta(days=366):
            raise ValidationError("Export range cannot exceed one year.")

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(EXPORT_HEADERS)
        for r in self._dtr.list_export_rows(company_id=actor.company_id, start=start, end=end):
            writer.writerow(
                [
                    r["attendance_date"].strftime("%Y-%m-%d"),
                    r["employee_number"],
                    f"{r['last_name']}, {r['first_name']}",
                    r.get("department_name") or "",
                    _fmt_time(r.get("actual_time_in")),
                    _fmt_time(r.get("actual_time_out")),
                    str(r.get("hours_worked") or 0),
                    int(r.get("tardiness_mins") or 0),
                    int(r.get("undertime_mins") or 0),
                    str(r.get("overtime_hours") or 0),
                    str(r.get("night_diff_hours") or 0),
                    r["attendance_status"],
                    r.get("remarks") or "",
                ]
            )
        return buf.getvalue()

    def list_schedules(self, *, actor: Actor):
        return self._schedules.list_all(actor.company_id)
