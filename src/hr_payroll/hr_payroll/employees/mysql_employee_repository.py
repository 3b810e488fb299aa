from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence, Tuple

from ..core.enums import PayFrequency
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, in_clause
from .model import UPDATABLE_FIELDS, Department, Employee
from .repository import DepartmentRepository, EmployeeRepository

_EMPLOYEE_COLUMNS = """
    e.employee_id, e.company_id, e.employee_number, e.first_name, e.last_name, e.middle_name,
    e.email, e.department_id, e.position, e.employment_status, e.hire_date, e.separation_date,
    e.reporting_manager_id, e.work_schedule_id, e.monthly_salary, e.pay_frequency,
    e.is_overtime_eligible, e.is_night_diff_eligible, e.is_active, e.deleted_at
"""

_BOOL_FIELDS = {"is_overtime_eligible", "is_night_diff_eligible", "is_active"}


def _to_employee(r: dict) -> Employee:
    return Employee(
        employee_id=int(r["employee_id"]),
        company_id=int(r["company_id"]),
        employee_number=r["employee_number"],
        first_name=r["first_name"],
        last_name=r["last_name"],
        middle_name=r.get("middle_name"),
        email=r.get("email"),
        department_id=r.get("department_id"),
        position=r.get("position"),
        employment_status=r.get("employment_status") or "REGULAR",
        hire_date=r["hire_date"],
        separation_date=r.get("separation_date"),
        reporting_manager_id=r.get("reporting_manager_id"),
        work_schedule_id=r.get("work_schedule_id"),
        monthly_salary=Decimal(str(r["monthly_salary"])) if r.get("monthly_salary") is not None else None,
        pay_frequency=PayFrequency(r.get("pay_frequency") or PayFrequency.SEMI_MONTHLY.value),
        is_overtime_eligible=bool(r.get("is_overtime_eligible", 1)),
        is_night_diff_eligible=bool(r.get("is_night_diff_eligible", 1)),
        is_active=bool(r.get("is_active", 1)),
        deleted_at=r.get("deleted_at"),
    )


def _db_value(field: str, value: Any) -> Any:
    if field in _BOOL_FIELDS:
        return 1 if value else 0
    if isinstance(value, PayFrequency):
        return value.value
    return value


class MySQLEmployeeRepository(EmployeeRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_id(self, *, company_id: int, employee_id: int, include_deleted: bool = False) -> Optional[Employee]:
        deleted_clause = "" if include_deleted else "AND e.deleted_at IS NULL"
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EMPLOYEE_COLUMNS} FROM employees e WHERE e.company_id=%s AND e.employee_id=%s {deleted_clause}",
                (int(company_id), int(employee_id)),
            )
            row = fetchone(cur)
            return _to_employee(row) if row else None

    def get_by_number(self, *, company_id: int, employee_number: str) -> Optional[Employee]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EMPLOYEE_COLUMNS} FROM employees e WHERE e.company_id=%s AND e.employee_number=%s",
                (int(company_id), employee_number),
            )
            row = fetchone(cur)
            return _to_employee(row) if row else None

    def create(self, *, company_id: int, fields: Mapping[str, Any]) -> int:
        cols = [f for f in UPDATABLE_FIELDS if f in fields]
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"INSERT INTO employees (company_id, {', '.join(cols)}) VALUES (%s, {in_clause(cols)})",
                tuple([int(company_id)] + [_db_value(c, fields[c]) for c in cols]),
            )
            return int(cur.lastrowid)

    def update(self, *, employee_id: int, fields: Mapping[str, Any]) -> bool:
        cols = [f for f in UPDATABLE_FIELDS if f in fields]
        if not cols:
            return True
        assignments = ", ".join(f"{c}=%s" for c in cols)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE employees SET {assignments} WHERE employee_id=%s",
                tuple([_db_value(c, fields[c]) for c in cols] + [int(employee_id)]),
            )
            return cur.rowcount >= 0

    def soft_delete(self, *, employee_id: int, deleted_by: int, deleted_at: datetime) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE employees
                SET is_active=0, deleted_at=%s, deleted_by=%s
                WHERE employee_id=%s AND deleted_at IS NULL
                """,
                (deleted_at, int(deleted_by), int(employee_id)),
            )
            return cur.rowcount > 0

    def restore(self, *, employee_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE employees
                SET is_active=1, deleted_at=NULL, deleted_by=NULL
                WHERE employee_id=%s AND deleted_at IS NOT NULL
                """,
                (int(employee_id),),
            )
            return cur.rowcount > 0

    def count_active_direct_reports(self, *, manager_id: int) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT COUNT(*) AS cnt FROM employees
                WHERE reporting_manager_id=%s AND is_active=1 AND deleted_at IS NULL
                """,
                (int(manager_id),),
            )
            row = fetchone(cur)
            return int(row["cnt"]) if row else 0

    def list_active(
        self,
        *,
        company_id: int,
        department_ids: Sequence[int] = (),
        employee_ids: Sequence[int] = (),
    ) -> Sequence[Employee]:
        clauses = ["e.company_id=%s", "e.is_active=1", "e.deleted_at IS NULL"]
        params: list[object] = [int(company_id)]
        if department_ids:
            clauses.append(f"e.department_id IN ({in_clause(department_ids)})")
            params.extend(int(d) for d in department_ids)
        if employee_ids:
            clauses.append(f"e.employee_id IN ({in_clause(employee_ids)})")
            params.extend(int(e) for e in employee_ids)

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EMPLOYEE_COLUMNS} FROM employees e WHERE {' AND '.join(clauses)} ORDER BY e.last_name, e.first_name",
                tuple(params),
            )
            return [_to_employee(r) for r in fetchall(cur)]

    def list_masterlist(
        self,
        *,
        company_id: int,
        search: str = "",
        department_id: Optional[int] = None,
        include_inactive: bool = False,
        page: int = 1,
        page_size: int = 25,
    ) -> Tuple[Sequence[dict], int]:
        clauses = ["e.company_id=%s", "e.deleted_at IS NULL"]
        params: list[object] = [int(company_id)]
        if not include_inactive:
            clauses.append("e.is_active=1")
        if department_id is not None:
            clauses.append("e.department_id=%s")
            params.append(int(department_id))
        if search:
            like = f"%{search}%"
            clauses.append("(e.employee_number LIKE %s OR e.first_name LIKE %s OR e.last_name LIKE %s)")
            params.extend([like, like, like])

        where = " AND ".join(clauses)
        offset = (max(page, 1) - 1) * page_size

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT COUNT(*) AS cnt FROM employees e WHERE {where}", tuple(params))
            total_row = fetchone(cur)
            total = int(total_row["cnt"]) if total_row else 0

            cur.execute(
                f"""
                SELECT e.employee_id, e.employee_number, e.first_name, e.last_name, e.position,
                       e.employment_status, e.hire_date, e.is_active, d.name AS department_name,
                       CONCAT(m.last_name, ', ', m.first_name) AS manager_name
                FROM employees e
                LEFT JOIN departments d ON d.department_id = e.department_id
                LEFT JOIN employees m ON m.employee_id = e.reporting_manager_id
                WHERE {where}
                ORDER BY e.last_name, e.first_name, e.employee_number
                LIMIT %s OFFSET %s
                """,
                tuple(params + [int(page_size), int(offset)]),
            )
            rows = [
                {
                    "employee_id": int(r["employee_id"]),
                    "employee_number": r["employee_number"],
                    "employee_name": f"{r['last_name']}, {r['first_name']}",
                    "position": r.get("position") or "-",
                    "employment_status": r["employment_status"],
                    "hire_date": r["hire_date"].strftime("%Y-%m-%d"),
                    "department_name": r.get("department_name") or "-",
                    "manager_name": r.get("manager_name") or "-",
                    "is_active": bool(r["is_active"]),
                }
                for r in fetchall(cur)
            ]
            return rows, total


class MySQLDepartmentRepository(DepartmentRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def list_all(self, company_id: int) -> Sequence[Department]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT department_id, company_id, code, name FROM departments WHERE company_id=%s ORDER BY name",
                (int(company_id),),
            )
            return [
                Department(
                    department_id=int(r["department_id"]),
                    company_id=int(r["company_id"]),
                    code=r["code"],
                    name=r["name"],
                )
                for r in fetchall(cur)
            ]

    def get_by_id(self, *, company_id: int, department_id: int) -> Optional[Department]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT department_id, company_id, code, name FROM departments WHERE company_id=%s AND department_id=%s",
                (int(company_id), int(department_id)),
            )
            r = fetchone(cur)
            if not r:
                return None
            return Department(department_id=int(r["department_id"]), company_id=int(r["company_id"]), code=r["code"], name=r["name"])
