from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import mysql.connector
from werkzeug.security import generate_password_hash

logger = logging.getLogger(__name__)

DEMO_COMPANY_CODE = "DEMO"

# username, password, full name, company role, employee number
DEMO_USERS = (
    ("admin", "admin123", "Company Admin", "COMPANY_ADMIN", None),
    ("hr", "hradmin123", "HR Admin", "HR_ADMIN", "EMP-0002"),
    ("payroll", "payroll123", "Payroll Admin", "PAYROLL_ADMIN", "EMP-0003"),
    ("employee", "employee123", "Demo Employee", "EMPLOYEE", "EMP-0004"),
)


@dataclass(frozen=True)
class DBTarget:
    host: str
    port: int
    user: str
    password: str
    database: str


def _as_target(db_config: dict) -> DBTarget:
    return DBTarget(
        host=str(db_config.get("host", "localhost")),
        port=int(db_config.get("port", 3306)),
        user=str(db_config.get("user", "root")),
        password=str(db_config.get("password", "")),
        database=str(db_config.get("database", "hr_payroll_db")),
    )


def _connect(target: DBTarget, *, with_database: bool = True):
    kwargs = dict(host=target.host, port=target.port, user=target.user, password=target.password, use_pure=True)
    if with_database:
        kwargs["database"] = target.database
    return mysql.connector.connect(**kwargs)


def _strip_create_db_and_use(sql: str) -> str:
    # Keep schema.sql usable regardless of the configured database name.
    sql = re.sub(r"(?im)^\s*CREATE\s+DATABASE\b.*?;\s*$", "", sql)
    sql = re.sub(r"(?im)^\s*USE\b.*?;\s*$", "", sql)
    return sql


def _strip_line_comments(sql: str) -> str:
    return re.sub(r"(?m)^\s*--.*$", "", sql)


def iter_sql_statements(sql: str) -> Iterable[str]:
    """Split a script on ``;`` outside quoted strings."""

    buf: list[str] = []
    in_single = False
    in_double = False
    escape = False

    for ch in sql:
        if escape:
            buf.append(ch)
            escape = False
            continue

        if ch == "\\":
            buf.append(ch)
            escape = True
            continue

        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif ch == ";" and not in_single and not in_double:
            stmt = "".join(buf).strip()
            buf.clear()
            if stmt:
                yield stmt
            continue

        buf.append(ch)

    tail = "".join(buf).strip()
    if tail:
        yield tail


def _run_script(db_config: dict, path: Path) -> int:
    sql = _strip_line_comments(_strip_create_db_and_use(path.read_text(encoding="utf-8")))
    conn = _connect(_as_target(db_config))
    count = 0
    try:
        cur = conn.cursor()
        for stmt in iter_sql_statements(sql):
            cur.execute(stmt)
            count += 1
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return count


def ensure_database_exists(db_config: dict) -> None:
    target = _as_target(db_config)
    conn = _connect(target, with_database=False)
    try:
        cur = conn.cursor()
        cur.execute(
            f"CREATE DATABASE IF NOT EXISTS `{target.database}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        conn.commit()
    finally:
        conn.close()


def apply_schema(db_config: dict, *, schema_path: str | Path) -> None:
    ensure_database_exists(db_config)
    count = _run_script(db_config, Path(schema_path))
    logger.info("Applied %d schema statements from %s", count, schema_path)


def apply_seed_sql(db_config: dict, *, seed_path: str | Path) -> None:
    count = _run_script(db_config, Path(seed_path))
    logger.info("Applied %d seed statements from %s", count, seed_path)


def ensure_demo_users(db_config: dict) -> None:
    """Create or refresh the demo logins with real password hashes."""

    conn = _connect(_as_target(db_config))
    try:
        cur = conn.cursor(dictionary=True)
        cur.execute("SELECT company_id FROM companies WHERE code=%s", (DEMO_COMPANY_CODE,))
        row = cur.fetchone()
        if not row:
            raise RuntimeError(f"Missing demo company {DEMO_COMPANY_CODE}; apply seed.sql first.")
        company_id = int(row["company_id"])

        def employee_id_for(number: Optional[str]) -> Optional[int]:
            if not number:
                return None
            cur.execute(
                "SELECT employee_id FROM employees WHERE company_id=%s AND employee_number=%s",
                (company_id, number),
            )
            found = cur.fetchone()
            if not found:
                raise RuntimeError(f"Missing employees row for employee_number={number}")
            return int(found["employee_id"])

        for username, password, full_name, role, number in DEMO_USERS:
            password_hash = generate_password_hash(password)
            employee_id = employee_id_for(number)
            cur.execute("SELECT user_id FROM users WHERE username=%s", (username,))
            if cur.fetchone():
                cur.execute(
                    """
                    UPDATE users
                    SET company_id=%s, employee_id=%s, full_name=%s, password_hash=%s, company_role=%s, is_active=1
                    WHERE username=%s
                    """,
                    (company_id, employee_id, full_name, password_hash, role, username),
                )
            else:
                cur.execute(
                    """
                    INSERT INTO users (company_id, employee_id, username, full_name, password_hash, company_role)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (company_id, employee_id, username, full_name, password_hash, role),
                )

        conn.commit()
    finally:
        conn.close()


def list_tables(db_config: dict) -> list[str]:
    conn = _connect(_as_target(db_config))
    try:
        cur = conn.cursor()
        cur.execute("SHOW TABLES")
        return [row[0] for row in cur.fetchall()]
    finally:
        conn.close()
