from __future__ import annotations

from typing import Optional, Sequence

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall
from .model import AuditRow
from .repository import AuditRepository


class MySQLAuditRepository(AuditRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def insert_rows(self, rows: Sequence[AuditRow]) -> None:
        if not rows:
            return
        with db_cursor(self._conn_factory) as (_, cur):
            cur.executemany(
                """
                INSERT INTO audit_logs(
                    company_id, table_name, record_id, action, user_id, reason,
                    field_name, old_value, new_value, ip_address, user_agent
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                [
                    (
                        r.company_id,
                        r.table_name,
                        r.record_id,
                        r.action.value,
                        r.user_id,
                        r.reason,
                        r.field_name,
                        r.old_value,
                        r.new_value,
                        r.ip_address,
                        (r.user_agent or "")[:255] or None,
                    )
                    for r in rows
                ],
            )

    def list_logs(
        self,
        *,
        company_id: int,
        table_name: Optional[str] = None,
        record_id: Optional[str] = None,
        limit: int = 200,
    ) -> Sequence[dict]:
        clauses = ["a.company_id=%s"]
        params: list[object] = [int(company_id)]
        if table_name:
            clauses.append("a.table_name=%s")
            params.append(table_name)
        if record_id:
            clauses.append("a.record_id=%s")
            params.append(str(record_id))

        where = " AND ".join(clauses)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT a.audit_id, a.table_name, a.record_id, a.action, a.reason,
                       a.field_name, a.old_value, a.new_value, a.created_at,
                       u.username, u.full_name
                FROM audit_logs a
                LEFT JOIN users u ON u.user_id = a.user_id
                WHERE {where}
                ORDER BY a.created_at DESC, a.audit_id DESC
                LIMIT %s
                """,
                tuple(params + [int(limit)]),
            )
            return [
                {
                    "audit_id": int(r["audit_id"]),
                    "table_name": r["table_name"],
                    "record_id": r["record_id"],
                    "action": r["action"],
                    "reason": r.get("reason"),
                    "field_name": r.get("field_name"),
                    "old_value": r.get("old_value"),
                    "new_value": r.get("new_value"),
                    "created_at": r["created_at"].strftime("%Y-%m-%d %H:%M:%S"),
                    "username": r.get("username") or "-",
                    "full_name": r.get("full_name") or "-",
                }
                for r in fetchall(cur)
            ]
