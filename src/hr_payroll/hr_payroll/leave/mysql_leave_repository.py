from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence, Set, Tuple

from ..core.enums import LeaveTransactionType, ProrationMethod, RequestStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, in_clause
from .model import LeaveBalance, LeaveBalanceTransaction, LeaveRequest, LeaveType, LeaveTypePolicy
from .repository import LeaveBalanceRepository, LeaveRequestRepository, LeaveTypeRepository


def _dec(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0))


def _to_leave_type(r: dict) -> LeaveType:
    return LeaveType(
        leave_type_id=int(r["leave_type_id"]),
        company_id=r.get("company_id"),
        code=r["code"],
        name=r["name"],
        is_paid=bool(r["is_paid"]),
        is_carried_over=bool(r["is_carried_over"]),
        max_carry_over_days=_dec(r["max_carry_over_days"]) if r.get("max_carry_over_days") is not None else None,
        is_active=bool(r["is_active"]),
    )


class MySQLLeaveTypeRepository(LeaveTypeRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def list_for_company(self, company_id: int, *, active_only: bool = True) -> Sequence[LeaveType]:
        active_clause = "AND is_active=1" if active_only else ""
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT leave_type_id, company_id, code, name, is_paid, is_carried_over, max_carry_over_days, is_active
                FROM leave_types
                WHERE (company_id=%s OR company_id IS NULL) {active_clause}
                ORDER BY name
                """,
                (int(company_id),),
            )
            return [_to_leave_type(r) for r in fetchall(cur)]

    def get_by_id(self, *, company_id: int, leave_type_id: int) -> Optional[LeaveType]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT leave_type_id, company_id, code, name, is_paid, is_carried_over, max_carry_over_days, is_active
                FROM leave_types
                WHERE leave_type_id=%s AND (company_id=%s OR company_id IS NULL)
                """,
                (int(leave_type_id), int(company_id)),
            )
            r = fetchone(cur)
            return _to_leave_type(r) if r else None

    def list_policies(self, leave_type_ids: Sequence[int]) -> Sequence[LeaveTypePolicy]:
        if not leave_type_ids:
            return []
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT leave_type_id, employment_status, annual_entitlement, proration_method
                FROM leave_type_policies
                WHERE leave_type_id IN ({in_clause(leave_type_ids)})
                """,
                tuple(int(i) for i in leave_type_ids),
            )
            return [
                LeaveTypePolicy(
                    leave_type_id=int(r["leave_type_id"]),
                    employment_status=r["employment_status"],
                    annual_entitlement=_dec(r["annual_entitlement"]),
                    proration_method=ProrationMethod(r["proration_method"]),
                )
                for r in fetchall(cur)
            ]


_BALANCE_COLUMNS = """
    b.balance_id, b.employee_id, b.leave_type_id, b.year, b.opening_balance, b.credits_earned,
    b.credits_used, b.credits_carried_over, b.current_balance, b.pending_requests, b.available_balance
"""


def _to_balance(r: dict) -> LeaveBalance:
    return LeaveBalance(
        balance_id=int(r["balance_id"]),
        employee_id=int(r["employee_id"]),
        leave_type_id=int(r["leave_type_id"]),
        year=int(r["year"]),
        opening_balance=_dec(r["opening_balance"]),
        credits_earned=_dec(r["credits_earned"]),
        credits_used=_dec(r["credits_used"]),
        credits_carried_over=_dec(r["credits_carried_over"]),
        current_balance=_dec(r["current_balance"]),
        pending_requests=_dec(r["pending_requests"]),
        available_balance=_dec(r["available_balance"]),
    )


_TRANSACTION_COLUMNS = (
    "transaction_id, balance_id, transaction_type, amount, running_balance, "
    "reference_type, reference_id, remarks, processed_by, created_at"
)


def _to_transaction(r: dict) -> LeaveBalanceTransaction:
    return LeaveBalanceTransaction(
        transaction_id=int(r["transaction_id"]),
        balance_id=int(r["balance_id"]),
        transaction_type=LeaveTransactionType(r["transaction_type"]),
        amount=_dec(r["amount"]),
        running_balance=_dec(r["running_balance"]),
        reference_type=r.get("reference_type"),
        reference_id=r.get("reference_id"),
        remarks=r.get("remarks"),
        processed_by=r.get("processed_by"),
        created_at=r.get("created_at"),
    )


class MySQLLeaveBalanceRepository(LeaveBalanceRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get(self, *, employee_id: int, leave_type_id: int, year: int) -> Optional[LeaveBalance]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_BALANCE_COLUMNS} FROM leave_balances b
                WHERE b.employee_id=%s AND b.leave_type_id=%s AND b.year=%s
                FOR UPDATE
                """,
                (int(employee_id), int(leave_type_id), int(year)),
            )
            r = fetchone(cur)
            return _to_balance(r) if r else None

    def get_by_id(self, balance_id: int) -> Optional[LeaveBalance]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_BALANCE_COLUMNS} FROM leave_balances b WHERE b.balance_id=%s", (int(balance_id),))
            r = fetchone(cur)
            return _to_balance(r) if r else None

    def create(self, balance: LeaveBalance) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO leave_balances (
                    employee_id, leave_type_id, year, opening_balance, credits_earned, credits_used,
                    credits_carried_over, current_balance, pending_requests, available_balance
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    balance.employee_id,
                    balance.leave_type_id,
                    balance.year,
                    balance.opening_balance,
                    balance.credits_earned,
                    balance.credits_used,
                    balance.credits_carried_over,
                    balance.current_balance,
                    balance.pending_requests,
                    balance.available_balance,
                ),
            )
            return int(cur.lastrowid)

    def save_amounts(self, balance: LeaveBalance) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE leave_balances
                SET credits_earned=%s, credits_used=%s, current_balance=%s,
                    pending_requests=%s, available_balance=%s
                WHERE balance_id=%s
                """,
                (
                    balance.credits_earned,
                    balance.credits_used,
                    balance.current_balance,
                    balance.pending_requests,
                    balance.available_balance,
                    balance.balance_id,
                ),
            )

    def add_transaction(self, tx: LeaveBalanceTransaction) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO leave_balance_transactions (
                    balance_id, transaction_type, amount, running_balance,
                    reference_type, reference_id, remarks, processed_by
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    tx.balance_id,
                    tx.transaction_type.value,
                    tx.amount,
                    tx.running_balance,
                    tx.reference_type,
                    tx.reference_id,
                    tx.remarks,
                    tx.processed_by,
                ),
            )
            return int(cur.lastrowid)

    def list_transactions(self, balance_id: int) -> Sequence[LeaveBalanceTransaction]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_TRANSACTION_COLUMNS}
                FROM leave_balance_transactions
                WHERE balance_id=%s
                ORDER BY created_at DESC, transaction_id DESC
                """,
                (int(balance_id),),
            )
            return [_to_transaction(r) for r in fetchall(cur)]

    def latest_transaction_for(self, *, reference_type: str, reference_id: str) -> Optional[LeaveBalanceTransaction]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_TRANSACTION_COLUMNS}
                FROM leave_balance_transactions
                WHERE reference_type=%s AND reference_id=%s
                ORDER BY created_at DESC, transaction_id DESC
                LIMIT 1
                """,
                (reference_type, str(reference_id)),
            )
            r = fetchone(cur)
            return _to_transaction(r) if r else None

    def list_for_employee(self, *, employee_id: int, year: int) -> Sequence[LeaveBalance]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_BALANCE_COLUMNS} FROM leave_balances b WHERE b.employee_id=%s AND b.year=%s",
                (int(employee_id), int(year)),
            )
            return [_to_balance(r) for r in fetchall(cur)]

    def list_for_company_year(self, *, company_id: int, year: int) -> Sequence[LeaveBalance]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_BALANCE_COLUMNS}
                FROM leave_balances b
                JOIN employees e ON e.employee_id = b.employee_id
                WHERE e.company_id=%s AND e.deleted_at IS NULL AND b.year=%s
                """,
                (int(company_id), int(year)),
            )
            return [_to_balance(r) for r in fetchall(cur)]

    def existing_keys(self, *, year: int, employee_ids: Sequence[int]) -> Set[Tuple[int, int]]:
        if not employee_ids:
            return set()
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT employee_id, leave_type_id FROM leave_balances
                WHERE year=%s AND employee_id IN ({in_clause(employee_ids)})
                """,
                tuple([int(year)] + [int(e) for e in employee_ids]),
            )
            return {(int(r["employee_id"]), int(r["leave_type_id"])) for r in fetchall(cur)}


_REQUEST_COLUMNS = """
    r.request_id, r.company_id, r.request_number, r.employee_id, r.leave_type_id, r.start_date, r.end_date,
    r.number_of_days, r.status, r.is_half_day, r.half_day_period, r.reason, r.supervisor_approver_id,
    r.supervisor_decided_at, r.supervisor_remarks, r.hr_decided_by, r.hr_decided_at, r.hr_remarks,
    r.rejection_reason, r.cancellation_reason, r.cancelled_at, r.created_at
"""
_REQUEST_WRITABLE = (
    "leave_type_id",
    "start_date",
    "end_date",
    "number_of_days",
    "status",
    "is_half_day",
    "half_day_period",
    "reason",
    "supervisor_decided_at",
    "supervisor_remarks",
    "hr_decided_by",
    "hr_decided_at",
    "hr_remarks",
    "rejection_reason",
    "cancellation_reason",
    "cancelled_at",
)


def _to_request(r: dict) -> LeaveRequest:
    return LeaveRequest(
        request_id=int(r["request_id"]),
        company_id=int(r["company_id"]),
        request_number=r["request_number"],
        employee_id=int(r["employee_id"]),
        leave_type_id=int(r["leave_type_id"]),
        start_date=r["start_date"],
        end_date=r["end_date"],
        number_of_days=_dec(r["number_of_days"]),
        status=RequestStatus(r["status"]),
        is_half_day=bool(r["is_half_day"]),
        half_day_period=r.get("half_day_period"),
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
        created_at=r.get("created_at"),
    )


def _request_ui(r: dict) -> dict:
    return {
        "request_id": int(r["request_id"]),
        "request_number": r["request_number"],
        "employee_name": f"{r['last_name']}, {r['first_name']}",
        "employee_number": r["employee_number"],
        "leave_type": r["leave_type_name"],
        "start_date": r["start_date"].strftime("%Y-%m-%d"),
        "end_date": r["end_date"].strftime("%Y-%m-%d"),
        "number_of_days": _dec(r["number_of_days"]),
        "is_half_day": bool(r["is_half_day"]),
        "half_day_period": r.get("half_day_period"),
        "reason": r.get("reason") or "",
        "status": r["status"],
        "rejection_reason": r.get("rejection_reason"),
        "created_at": r["created_at"].strftime("%Y-%m-%d %H:%M") if r.get("created_at") else "-",
    }


class MySQLLeaveRequestRepository(LeaveRequestRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def number_exists(self, request_number: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT 1 AS found FROM leave_requests WHERE request_number=%s", (request_number,))
            return fetchone(cur) is not None

    def create(self, request: LeaveRequest) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO leave_requests (
                    company_id, request_number, employee_id, leave_type_id, start_date, end_date,
                    is_half_day, half_day_period, number_of_days, reason, status, supervisor_approver_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    request.company_id,
                    request.request_number,
                    request.employee_id,
                    request.leave_type_id,
                    request.start_date,
                    request.end_date,
                    1 if request.is_half_day else 0,
                    request.half_day_period,
                    request.number_of_days,
                    request.reason,
                    request.status.value,
                    request.supervisor_approver_id,
                ),
            )
            return int(cur.lastrowid)

    def get_by_id(self, *, company_id: int, request_id: int) -> Optional[LeaveRequest]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM leave_requests r WHERE r.company_id=%s AND r.request_id=%s",
                (int(company_id), int(request_id)),
            )
            r = fetchone(cur)
            return _to_request(r) if r else None

    def update(self, *, request_id: int, fields: Mapping[str, Any]) -> None:
        cols = [c for c in _REQUEST_WRITABLE if c in fields]
        if not cols:
            return
        values = []
        for c in cols:
            v = fields[c]
            if isinstance(v, RequestStatus):
                v = v.value
            elif isinstance(v, bool):
                v = 1 if v else 0
            values.append(v)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE leave_requests SET {', '.join(f'{c}=%s' for c in cols)} WHERE request_id=%s",
                tuple(values + [int(request_id)]),
            )

    _UI_SELECT = """
        SELECT r.request_id, r.request_number, r.start_date, r.end_date, r.number_of_days, r.is_half_day,
               r.half_day_period, r.reason, r.status, r.rejection_reason, r.created_at,
               e.employee_number, e.first_name, e.last_name, t.name AS leave_type_name
        FROM leave_requests r
        JOIN employees e ON e.employee_id = r.employee_id
        JOIN leave_types t ON t.leave_type_id = r.leave_type_id
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

    def list_approved_in_range(self, *, employee_ids: Sequence[int], start: date, end: date) -> Sequence[LeaveRequest]:
        if not employee_ids:
            return []
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_REQUEST_COLUMNS}
                FROM leave_requests r
                WHERE r.employee_id IN ({in_clause(employee_ids)}) AND r.status=%s
                  AND r.start_date <= %s AND r.end_date >= %s
                """,
                tuple([int(e) for e in employee_ids] + [RequestStatus.APPROVED.value, end, start]),
            )
            return [_to_request(r) for r in fetchall(cur)]

    def count_pending_in_range(self, *, company_id: int, start: date, end: date) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT COUNT(*) AS cnt FROM leave_requests
                WHERE company_id=%s AND status IN (%s, %s) AND start_date <= %s AND end_date >= %s
                """,
                (
                    int(company_id),
                    RequestStatus.PENDING.value,
                    RequestStatus.SUPERVISOR_APPROVED.value,
                    end,
                    start,
                ),
            )
            row = fetchone(cur)
            return int(row["cnt"]) if row else 0
