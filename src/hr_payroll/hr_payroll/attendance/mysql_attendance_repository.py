from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from ..core.enums import AttendanceStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, in_clause, normalize_mysql_time
from .model import DailyTimeRecord, WorkSchedule, parse_rest_days
from .repository import DtrRepository, WorkScheduleRepository

_DTR_COLUMNS = """
    dtr_id, employee_id, attendance_date, actual_time_in, actual_time_out, hours_worked,
    tardiness_mins, undertime_mins, overtime_hours, night_diff_hours, attendance_status, remarks
"""
_WRITABLE = (
    "actual_time_in",
    "actual_time_out",
    "hours_worked",
    "tardiness_mins",
    "undertime_mins",
    "overtime_hours",
    "night_diff_hours",
    "attendance_status",
    "remarks",
)


def _to_dtr(r: dict) -> DailyTimeRecord:
    return DailyTimeRecord(
        dtr_id=int(r["dtr_id"]),
        employee_id=int(r["employee_id"]),
        attendance_date=r["attendance_date"],
        attendance_status=AttendanceStatus(r["attendance_status"]),
        actual_time_in=r.get("actual_time_in"),
        actual_time_out=r.get("actual_time_out"),
        hours_worked=Decimal(str(r.get("hours_worked") or 0)),
        tardiness_mins=int(r.get("tardiness_mins") or 0),
        undertime_mins=int(r.get("undertime_mins") or 0),
        overtime_hours=Decimal(str(r.get("overtime_hours") or 0)),
        night_diff_hours=Decimal(str(r.get("night_diff_hours") or 0)),
        remarks=r.get("remarks"),
    )


def _db_value(value: Any) -> Any:
    if isinstance(value, AttendanceStatus):
        return value.value
    return value


class MySQLDtrRepository(DtrRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_for_employee_and_date(self, employee_id: int, attendance_date: date) -> Optional[DailyTimeRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_DTR_COLUMNS} FROM dtr_records WHERE employee_id=%s AND attendance_date=%s",
                (int(employee_id), attendance_date),
            )
            r = fetchone(cur)
            return _to_dtr(r) if r else None

    def upsert(self, *, employee_id: int, attendance_date: date, fields: Mapping[str, Any], updated_by: int) -> int:
        cols = [c for c in _WRITABLE if c in fields]
        values = [_db_value(fields[c]) for c in cols]
        updates = ", ".join(f"{c}=VALUES({c})" for c in cols + ["updated_by"])
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                INSERT INTO dtr_records (employee_id, attendance_date, {', '.join(cols)}, updated_by)
                VALUES (%s, %s, {in_clause(cols)}, %s)
                ON DUPLICATE KEY UPDATE {updates}, dtr_id=LAST_INSERT_ID(dtr_id)
                """,
                tuple([int(employee_id), attendance_date] + values + [int(updated_by)]),
            )
            return int(cur.lastrowid)

    def list_for_employees(self, *, employee_ids: Sequence[int], start: date, end: date) -> Sequence[DailyTimeRecord]:
        if not employee_ids:
            return []
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_DTR_COLUMNS}
                FROM dtr_records
                WHERE employee_id IN ({in_clause(employee_ids)}) AND attendance_date BETWEEN %s AND %s
                ORDER BY employee_id, attendance_date
                """,
                tuple([int(e) for e in employee_ids] + [start, end]),
            )
            return [_to_dtr(r) for r in fetchall(cur)]

    def list_export_rows(self, *, company_id: int, start: date, end: date) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT r.attendance_date, e.employee_number, e.first_name, e.last_name,
                       d.name AS department_name, r.actual_time_in, r.actual_time_out,
                       r.hours_worked, r.tardiness_mins, r.undertime_mins, r.overtime_hours,
                       r.night_diff_hours, r.attendance_status, r.remarks
                FROM dtr_records r
                JOIN employees e ON e.employee_id = r.employee_id
                LEFT JOIN departments d ON d.department_id = e.department_id
                WHERE e.company_id=%s AND e.deleted_at IS NULL AND r.attendance_date BETWEEN %s AND %s
                ORDER BY r.attendance_date, e.last_name, e.first_name
                """,
                (int(company_id), start, end),
            )
            return fetchall(cur)


class MySQLWorkScheduleRepository(WorkScheduleRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    @staticmethod
    def _to_schedule(r: dict) -> WorkSchedule:
        return WorkSchedule(
            schedule_id=int(r["schedule_id"]),
            company_id=int(r["company_id"]),
            name=r["name"],
            work_start_time=normalize_mysql_time(r["work_start_time"]),
            work_end_time=normalize_mysql_time(r["work_end_time"]),
            break_minutes=int(r.get("break_minutes") or 0),
            grace_minutes=int(r.get("grace_minutes") or 0),
            rest_days=parse_rest_days(r.get("rest_days")),
        )

    def get_by_id(self, schedule_id: int) -> Optional[WorkSchedule]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT schedule_id, company_id, name, work_start_time, work_end_time,
                       break_minutes, grace_minutes, rest_days
                FROM work_schedules WHERE schedule_id=%s
                """,
                (int(schedule_id),),
            )
            r = fetchone(cur)
            return self._to_schedule(r) if r else None

    def list_all(self, company_id: int) -> Sequence[WorkSchedule]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT schedule_id, company_id, name, work_start_time, work_end_time,
                       break_minutes, grace_minutes, rest_days
                FROM work_schedules WHERE company_id=%s ORDER BY name
                """,
                (int(company_id),),
            )
            return [self._to_schedule(r) for r in fetchall(cur)]
