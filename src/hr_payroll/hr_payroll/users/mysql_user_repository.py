from __future__ import annotations

from typing import Optional, Sequence

from ..core.enums import CompanyRole
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone
from .model import User
from .repository import UserRepository

_USER_COLUMNS = "user_id, company_id, employee_id, username, full_name, password_hash, company_role, is_active"


def _to_user(row: dict) -> User:
    return User(
        user_id=int(row["user_id"]),
        company_id=int(row["company_id"]),
        username=row["username"],
        full_name=row["full_name"],
        password_hash=row["password_hash"],
        company_role=CompanyRole(row["company_role"]),
        employee_id=int(row["employee_id"]) if row.get("employee_id") is not None else None,
        is_active=bool(row.get("is_active", True)),
    )


class MySQLUserRepository(UserRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def _get_one(self, where: str, value: object) -> Optional[User]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE {where}=%s", (value,))
            row = fetchone(cur)
            return _to_user(row) if row else None

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self._get_one("user_id", int(user_id))

    def get_by_username(self, username: str) -> Optional[User]:
        return self._get_one("username", username)

    def get_by_employee_id(self, employee_id: int) -> Optional[User]:
        return self._get_one("employee_id", int(employee_id))

    def create_user(
        self,
        *,
        company_id: int,
        username: str,
        full_name: str,
        password_hash: str,
        company_role: CompanyRole,
        employee_id: Optional[int],
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO users (company_id, employee_id, username, full_name, password_hash, company_role)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (int(company_id), employee_id, username, full_name, password_hash, company_role.value),
            )
            return int(cur.lastrowid)

    def set_active(self, user_id: int, *, is_active: bool) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("UPDATE users SET is_active=%s WHERE user_id=%s", (1 if is_active else 0, int(user_id)))
            return cur.rowcount > 0

    def list_admin_view(self, company_id: int) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT u.user_id, u.username, u.full_name, u.company_role, u.is_active,
                       e.employee_number, d.name AS department_name
                FROM users u
                LEFT JOIN employees e ON e.employee_id = u.employee_id
                LEFT JOIN departments d ON d.department_id = e.department_id
                WHERE u.company_id=%s
                ORDER BY u.full_name
                """,
                (int(company_id),),
            )
            return [
                {
                    "user_id": int(r["user_id"]),
                    "username": r["username"],
                    "full_name": r["full_name"],
                    "company_role": r["company_role"],
                    "is_active": bool(r["is_active"]),
                    "employee_number": r.get("employee_number") or "-",
                    "department_name": r.get("department_name") or "-",
                }
                for r in fetchall(cur)
            ]
