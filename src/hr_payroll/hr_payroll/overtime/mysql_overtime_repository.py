from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from ..core.enums import RequestStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, in_clause, normalize_mysql_time
from .model import OvertimeRequest
from .repository import OvertimeRequestRepository

_COLUMNS = """
    r.request_id, r.company_id, r.request_number, r.employee_id, r.overtime_date, r.start_time, r.end_time,
    r.hours, r.status, r.reason, r.supervisor_approver_id, r.supervisor_decided_at, r.supervisor_remarks,
    r.hr_decided_by, r.hr_decided_at, r.hr_remarks, r.rejection_reason, r.cancellation_reason, r.cancelled_at,
    r.cto_converted_hours, r.created_at
"""
_WRITABLE = (
    "overtime_date",
    "start_time",
    "end_time",
    "hours",
    "status",
    "reason",
    "supervisor_decided_at",
    "supervisor_remarks",
    "hr_decided_by",
    "hr_decided_at",
    "hr_remarks",
    "rejection_reason",
    "cancellation_reason",
    "cancelled_at",
    "cto_converted_hours",
)


def _to_request(r: dict) -> OvertimeRequest:
    cto = r.get("cto_converted_hours")
    return OvertimeRequest(
        request_id=int(r["request_id"]),
        company_id=int(r["company_id"]),
        request_number=r["request_number"],
        employee_id=int(r["employee_id"]),
        overtime_date=r["overtime_date"],
        start_time=normalize_mysql_time(r["start_time"]),
        end_time=normalize_mysql_time(r["end_time"]),
        hours=Decimal(str(r["hours"])),
        status=RequestStatus(r["status"]),
        reason=r.get("reason"),
        supervisor_approver_id=r.get("supervisor_approver_id"),
        supervisor_decided_at=r.get("supervisor_decided_at"),
        supervisor_remarks=r.get("supervisor_remarks"),
        hr_decided_by=r.get("hr_decided_by"),
        hr_decided_at=r.get("hr_decided_at"),
        hr_remarks=r.get("hr_remarks"),
        rejection_reason=r.get("rejection_reason"),
        cancellation_reason=r.get("cancellation_reason"),
        cancelled_at=r.get("cancelled_at"),
        cto_converted_hours=Decimal(str(cto)) if cto is not None else None,
        created_at=r.get("created_at"),
    )


def _request_ui(r: dict) -> dict:
    start = normalize_mysql_time(r["start_time"])
    end = normalize_mysql_time(r["end_time"])
    return {
        "request_id": int(r["request_id"]),
        "request_number": r["request_number"],
        "employee_name": f"{r['last_name']}, {r['first_name']}",
        "employee_number": r["employee_number"],
        "overtime_date": r["overtime_date"].strftime("%Y-%m-%d"),
        "start_time": start.strftime("%H:%M") if start else "",
        "end_time": end.strftime("%H:%M") if end else "",
        "hours": Decimal(str(r["hours"])),
        "reason": r.get("reason") or "",
        "status": r["status"],
        "rejection_reason": r.get("rejection_reason"),
        "cto_converted_hours": r.get("cto_converted_hours"),
        "created_at": r["created_at"].strftime("%Y-%m-%d %H:%M") if r.get("created_at") else "-",
    }


class MySQLOvertimeRequestRepository(OvertimeRequestRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def number_exists(self, request_number: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT 1 AS found FROM overtime_requests WHERE request_number=%s", (request_number,))
            return fetchone(cur) is not None

    def create(self, request: OvertimeRequest) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO overtime_requests (
                    company_id, request_number, employee_id, overtime_date, start_time, end_time,
                    hours, reason, status, supervisor_approver_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    request.company_id,
                    request.request_number,
                    request.employee_id,
                    request.overtime_date,
                    request.start_time,
                    request.end_time,
                    request.hours,
                    request.reason,
                    request.status.value,
                    request.supervisor_approver_id,
                ),
            )
            return int(cur.lastrowid)

    def get_by_id(self, *, company_id: int, request_id: int) -> Optional[OvertimeRequest]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_COLUMNS} FROM overtime_requests r WHERE r.company_id=%s AND r.request_id=%s",
                (int(company_id), int(request_id)),
            )
            r = fetchone(cur)
            return _to_request(r) if r else None

    def update(self, *, request_id: int, fields: Mapping[str, Any]) -> None:
        cols = [c for c in _WRITABLE if c in fields]
        if not cols:
            return
        values = [fields[c].value if isinstance(fields[c], RequestStatus) else fields[c] for c in cols]
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE overtime_requests SET {', '.join(f'{c}=%s' for c in cols)} WHERE request_id=%s",
                tuple(values + [int(request_id)]),
            )

    _UI_SELECT = """
        SELECT r.request_id, r.request_number, r.overtime_date, r.start_time, r.end_time, r.hours, r.reason,
               r.status, r.rejection_reason, r.cto_converted_hours, r.created_at,
               e.employee_number, e.first_name, e.last_name
        FROM overtime_requests r
        JOIN employees e ON e.employee_id = r.employee_id
    """

    def list_for_employee(self, employee_id: int, *, limit: int = 200) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                self._UI_SELECT + " WHERE r.employee_id=%s ORDER BY r.created_at DESC LIMIT %s",
                (int(employee_id), int(limit)),
            )
            return [_request_ui(r) for r in fetchall(cur)]

    def list_queue(
        self,
        *,
        company_id: int,
        status: RequestStatus,
        supervisor_id: Optional[int] = None,
        limit: int = 200,
    ) -> Sequence[dict]:
        sql = self._UI_SELECT + " WHERE r.company_id=%s AND r.status=%s"
        params: list[object] = [int(company_id), status.value]
        if supervisor_id is not None:
            sql += " AND r.supervisor_approver_id=%s"
            params.append(int(supervisor_id))
        sql += " ORDER BY r.created_at ASC LIMIT %s"
        params.append(int(limit))
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(sql, tuple(params))
            return [_request_ui(r) for r in fetchall(cur)]

    def list_approved_in_range(self, *, employee_ids: Sequence[int], start: date, end: date) -> Sequence[OvertimeRequest]:
        if not employee_ids:
            return []
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM overtime_requests r
                WHERE r.employee_id IN ({in_clause(employee_ids)}) AND r.status=%s
                  AND r.overtime_date BETWEEN %s AND %s
                """,
                tuple([int(e) for e in employee_ids] + [RequestStatus.APPROVED.value, start, end]),
            )
            return [_to_request(r) for r in fetchall(cur)]

    def count_pending_in_range(self, *, company_id: int, start: date, end: date) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT COUNT(*) AS cnt FROM overtime_requests
                WHERE company_id=%s AND status IN (%s, %s) AND overtime_date BETWEEN %s AND %s
                """,
                (
                    int(company_id),
                    RequestStatus.PENDING.value,
                    RequestStatus.SUPERVISOR_APPROVED.value,
                    start,
                    end,
                ),
            )
            row = fetchone(cur)
            return int(row["cnt"]) if row else 0
