from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..core.enums import (
    ACTIVE_RUN_STATUSES,
    DeductionBasis,
    DeductionTiming,
    HolidayType,
    LineCategory,
    PayFrequency,
    PayPeriodStatus,
    PayrollRunStatus,
    PayrollRunType,
    ProcessStepName,
    ProcessStepStatus,
)
from ..core.money import to_decimal
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, in_clause
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
    SssBracket,
    StatutoryTables,
    TaxBracket,
)
from .repository import PayPeriodRepository, PayrollRunRepository, PayrollSettingsRepository, PayslipRepository

_RUN_WRITABLE = (
    "status",
    "current_step",
    "total_employees",
    "total_gross_pay",
    "total_deductions",
    "total_net_pay",
    "total_employer_contributions",
    "processed_at",
    "approved_at",
    "approved_by",
    "paid_at",
    "paid_by",
)
_STEP_WRITABLE = ("status", "is_completed", "completed_at", "notes")
_PAYSLIP_AMOUNTS = (
    "basic_pay",
    "gross_pay",
    "total_deductions",
    "net_pay",
    "sss_employee",
    "sss_employer",
    "philhealth_employee",
    "philhealth_employer",
    "pagibig_employee",
    "pagibig_employer",
    "withholding_tax",
    "late_mins",
    "undertime_mins",
    "overtime_hours",
    "overtime_pay",
    "tardiness_deduction",
    "working_days",
    "payable_days",
)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _to_period(r: dict) -> PayPeriod:
    return PayPeriod(
        period_id=int(r["period_id"]),
        company_id=int(r["company_id"]),
        year=int(r["year"]),
        period_number=int(r["period_number"]),
        period_half=r.get("period_half"),
        pay_frequency=PayFrequency(r["pay_frequency"]),
        cutoff_start=r["cutoff_start"],
        cutoff_end=r["cutoff_end"],
        status=PayPeriodStatus(r["status"]),
        locked_at=r.get("locked_at"),
        locked_by=r.get("locked_by"),
    )


def _to_run(r: dict) -> PayrollRun:
    return PayrollRun(
        run_id=int(r["run_id"]),
        company_id=int(r["company_id"]),
        period_id=int(r["period_id"]),
        run_number=r["run_number"],
        run_type=PayrollRunType(r["run_type"]),
        status=PayrollRunStatus(r["status"]),
        current_step=int(r["current_step"]),
        created_by=int(r["created_by"]),
        total_employees=int(r.get("total_employees") or 0),
        total_gross_pay=to_decimal(r.get("total_gross_pay")),
        total_deductions=to_decimal(r.get("total_deductions")),
        total_net_pay=to_decimal(r.get("total_net_pay")),
        total_employer_contributions=to_decimal(r.get("total_employer_contributions")),
        filters_json=r.get("filters_json"),
        processed_at=r.get("processed_at"),
        approved_at=r.get("approved_at"),
        approved_by=r.get("approved_by"),
        paid_at=r.get("paid_at"),
        paid_by=r.get("paid_by"),
        created_at=r.get("created_at"),
    )


def _to_step(r: dict) -> ProcessStep:
    return ProcessStep(
        run_id=int(r["run_id"]),
        step_number=int(r["step_number"]),
        step_name=ProcessStepName(r["step_name"]),
        status=ProcessStepStatus(r["status"]),
        is_completed=bool(r["is_completed"]),
        completed_at=r.get("completed_at"),
        notes=r.get("notes"),
    )


def _to_line(r: dict) -> PayslipLine:
    return PayslipLine(
        line_id=int(r["line_id"]),
        category=LineCategory(r["category"]),
        code=r["code"],
        name=r["name"],
        description=r.get("description"),
        amount=to_decimal(r["amount"]),
        is_taxable=bool(r["is_taxable"]),
        is_manual=bool(r["is_manual"]),
    )


def _to_payslip(r: dict, lines: Sequence[PayslipLine] = ()) -> Payslip:
    amounts = {k: to_decimal(r.get(k)) for k in _PAYSLIP_AMOUNTS}
    amounts["late_mins"] = int(r.get("late_mins") or 0)
    amounts["undertime_mins"] = int(r.get("undertime_mins") or 0)
    return Payslip(
        payslip_id=int(r["payslip_id"]),
        run_id=int(r["run_id"]),
        employee_id=int(r["employee_id"]),
        payslip_number=r["payslip_number"],
        generated_at=r.get("generated_at"),
        lines=tuple(lines),
        **amounts,
    )


class MySQLPayPeriodRepository(PayPeriodRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_id(self, *, company_id: int, period_id: int) -> Optional[PayPeriod]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT * FROM pay_periods WHERE company_id=%s AND period_id=%s", (int(company_id), int(period_id)))
            r = fetchone(cur)
            return _to_period(r) if r else None

    def list_for_year(self, *, company_id: int, year: int) -> Sequence[PayPeriod]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT * FROM pay_periods WHERE company_id=%s AND year=%s ORDER BY cutoff_start, period_number",
                (int(company_id), int(year)),
            )
            return [_to_period(r) for r in fetchall(cur)]

    def set_status(self, *, period_id: int, status: str, actor_user_id: Optional[int], at: Optional[datetime]) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE pay_periods SET status=%s, locked_by=%s, locked_at=%s WHERE period_id=%s",
                (status, actor_user_id, at, int(period_id)),
            )


class MySQLPayrollSettingsRepository(PayrollSettingsRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_policy(self, company_id: int) -> PayrollPolicy:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT * FROM payroll_policies WHERE company_id=%s", (int(company_id),))
            r = fetchone(cur)
        if not r:
            return PayrollPolicy(company_id=int(company_id))
        return PayrollPolicy(
            company_id=int(company_id),
            working_days_per_year=int(r["working_days_per_year"]),
            sss_timing=DeductionTiming(r["sss_timing"]),
            philhealth_timing=DeductionTiming(r["philhealth_timing"]),
            pagibig_timing=DeductionTiming(r["pagibig_timing"]),
            withholding_tax_timing=DeductionTiming(r["withholding_tax_timing"]),
            thirteenth_month_formula=r["thirteenth_month_formula"],
            night_diff_rate=to_decimal(r["night_diff_rate"]),
        )

    def list_holidays(self, *, company_id: int, start: date, end: date) -> Sequence[Holiday]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT holiday_date, name, holiday_type, pay_multiplier
                FROM holidays
                WHERE (company_id IS NULL OR company_id=%s) AND holiday_date BETWEEN %s AND %s
                ORDER BY holiday_date, company_id IS NULL
                """,
                (int(company_id), start, end),
            )
            rows = fetchall(cur)
        by_day: Dict[date, Holiday] = {}
        # Company rows sort first and win over national ones on the same day.
        for r in rows:
            by_day.setdefault(
                r["holiday_date"],
                Holiday(
                    holiday_date=r["holiday_date"],
                    name=r["name"],
                    holiday_type=HolidayType(r["holiday_type"]),
                    pay_multiplier=to_decimal(r["pay_multiplier"]),
                ),
            )
        return list(by_day.values())

    def overtime_rates(self, company_id: int) -> Mapping[str, Decimal]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT overtime_type, multiplier FROM overtime_rates WHERE company_id=%s", (int(company_id),))
            return {r["overtime_type"]: to_decimal(r["multiplier"]) for r in fetchall(cur)}

    def attendance_rules(self, company_id: int) -> Sequence[AttendanceRule]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT rule_type, calculation_basis, threshold_mins FROM attendance_deduction_rules WHERE company_id=%s",
                (int(company_id),),
            )
            return [
                AttendanceRule(r["rule_type"], DeductionBasis(r["calculation_basis"]), int(r["threshold_mins"] or 0))
                for r in fetchall(cur)
            ]

    def statutory_tables(self) -> StatutoryTables:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT * FROM sss_contribution_brackets ORDER BY salary_from")
            sss = tuple(
                SssBracket(
                    salary_from=to_decimal(r["salary_from"]),
                    salary_to=to_decimal(r["salary_to"]),
                    employee_share=to_decimal(r["employee_share"]),
                    employer_share=to_decimal(r["employer_share"]),
                )
                for r in fetchall(cur)
            )
            cur.execute("SELECT * FROM tax_brackets ORDER BY bracket_over")
            tax = tuple(
                TaxBracket(
                    bracket_over=to_decimal(r["bracket_over"]),
                    bracket_not_over=to_decimal(r["bracket_not_over"]),
                    base_tax=to_decimal(r["base_tax"]),
                    tax_rate=to_decimal(r["tax_rate"]),
                    excess_over=to_decimal(r["excess_over"]),
                )
                for r in fetchall(cur)
            )
            cur.execute("SELECT setting_key, setting_value FROM statutory_settings")
            settings = {r["setting_key"]: to_decimal(r["setting_value"]) for r in fetchall(cur)}
        return StatutoryTables(sss=sss, tax=tax, settings=settings)

    def recurring_deductions(self, employee_ids: Sequence[int]) -> Sequence[RecurringDeduction]:
        if not employee_ids:
            return []
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT * FROM recurring_deductions WHERE is_active=1 AND employee_id IN ({in_clause(employee_ids)})",
                tuple(int(i) for i in employee_ids),
            )
            return [
                RecurringDeduction(
                    recurring_id=int(r["recurring_id"]),
                    employee_id=int(r["employee_id"]),
                    code=r["code"],
                    description=r["description"],
                    amount=to_decimal(r["amount"]),
                    timing=DeductionTiming(r["timing"]),
                    is_active=bool(r["is_active"]),
                )
                for r in fetchall(cur)
            ]


class MySQLPayrollRunRepository(PayrollRunRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def latest_run_number(self, prefix: str) -> Optional[str]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT run_number FROM payroll_runs WHERE run_number LIKE %s ORDER BY run_number DESC LIMIT 1 FOR UPDATE",
                (f"{prefix}%",),
            )
            r = fetchone(cur)
            return r["run_number"] if r else None

    def run_number_exists(self, run_number: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT 1 AS found FROM payroll_runs WHERE run_number=%s LIMIT 1", (run_number,))
            return fetchone(cur) is not None

    def find_active_run(self, *, period_id: int) -> Optional[PayrollRun]:
        statuses = sorted(s.value for s in ACTIVE_RUN_STATUSES)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT * FROM payroll_runs
                WHERE period_id=%s AND status IN ({in_clause(statuses)})
                ORDER BY run_id DESC LIMIT 1
                """,
                (int(period_id), *statuses),
            )
            r = fetchone(cur)
            return _to_run(r) if r else None

    def create(self, run: PayrollRun) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO payroll_runs (
                    company_id, period_id, run_number, run_type, status, current_step,
                    total_employees, filters_json, created_by
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    run.company_id,
                    run.period_id,
                    run.run_number,
                    run.run_type.value,
                    run.status.value,
                    run.current_step,
                    run.total_employees,
                    run.filters_json,
                    run.created_by,
                ),
            )
            return int(cur.lastrowid)

    def get(self, *, company_id: int, run_id: int) -> Optional[PayrollRun]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT * FROM payroll_runs WHERE company_id=%s AND run_id=%s", (int(company_id), int(run_id)))
            r = fetchone(cur)
            return _to_run(r) if r else None

    def update(self, *, run_id: int, fields: Mapping[str, Any]) -> None:
        cols = [c for c in _RUN_WRITABLE if c in fields]
        if not cols:
            return
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE payroll_runs SET {', '.join(f'{c}=%s' for c in cols)} WHERE run_id=%s",
                tuple([_plain(fields[c]) for c in cols] + [int(run_id)]),
            )

    def list_runs(self, *, company_id: int, limit: int = 200) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT r.run_id, r.run_number, r.run_type, r.status, r.current_step, r.total_employees,
                       r.total_gross_pay, r.total_deductions, r.total_net_pay, r.created_at,
                       p.year, p.period_number, p.cutoff_start, p.cutoff_end
                FROM payroll_runs r
                JOIN pay_periods p ON p.period_id = r.period_id
                WHERE r.company_id=%s
                ORDER BY r.run_id DESC
                LIMIT %s
                """,
                (int(company_id), int(limit)),
            )
            return fetchall(cur)

    def create_steps(self, steps: Sequence[ProcessStep]) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.executemany(
                """
                INSERT INTO payroll_process_steps (run_id, step_number, step_name, status, is_completed, completed_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                [
                    (s.run_id, s.step_number, s.step_name.value, s.status.value, 1 if s.is_completed else 0, s.completed_at)
                    for s in steps
                ],
            )

    def list_steps(self, run_id: int) -> Sequence[ProcessStep]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT * FROM payroll_process_steps WHERE run_id=%s ORDER BY step_number", (int(run_id),))
            return [_to_step(r) for r in fetchall(cur)]

    def update_step(self, *, run_id: int, step_number: int, fields: Mapping[str, Any]) -> None:
        cols = [c for c in _STEP_WRITABLE if c in fields]
        if not cols:
            return
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE payroll_process_steps SET {', '.join(f'{c}=%s' for c in cols)} WHERE run_id=%s AND step_number=%s",
                tuple([_plain(fields[c]) for c in cols] + [int(run_id), int(step_number)]),
            )


class MySQLPayslipRepository(PayslipRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def _insert_line(self, cur, payslip_id: int, line: PayslipLine) -> int:
        cur.execute(
            """
            INSERT INTO payslip_lines (payslip_id, category, code, name, description, amount, is_taxable, is_manual)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                payslip_id,
                line.category.value,
                line.code,
                line.name,
                line.description,
                line.amount,
                1 if line.is_taxable else 0,
                1 if line.is_manual else 0,
            ),
        )
        return int(cur.lastrowid)

    def _lines_for(self, cur, payslip_ids: Sequence[int]) -> Dict[int, List[PayslipLine]]:
        if not payslip_ids:
            return {}
        cur.execute(
            f"SELECT * FROM payslip_lines WHERE payslip_id IN ({in_clause(payslip_ids)}) ORDER BY line_id",
            tuple(payslip_ids),
        )
        grouped: Dict[int, List[PayslipLine]] = {}
        for r in fetchall(cur):
            grouped.setdefault(int(r["payslip_id"]), []).append(_to_line(r))
        return grouped

    def replace_for_run(self, run_id: int, payslips: Sequence[Payslip]) -> None:
        columns = ("run_id", "employee_id", "payslip_number") + _PAYSLIP_AMOUNTS
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM payslips WHERE run_id=%s", (int(run_id),))
            for p in payslips:
                cur.execute(
                    f"INSERT INTO payslips ({', '.join(columns)}) VALUES ({in_clause(columns)})",
                    (int(run_id), p.employee_id, p.payslip_number) + tuple(getattr(p, k) for k in _PAYSLIP_AMOUNTS),
                )
                payslip_id = int(cur.lastrowid)
                for line in p.lines:
                    self._insert_line(cur, payslip_id, line)

    def list_for_run(self, run_id: int) -> Sequence[Payslip]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT * FROM payslips WHERE run_id=%s ORDER BY payslip_id", (int(run_id),))
            rows = fetchall(cur)
            lines = self._lines_for(cur, [int(r["payslip_id"]) for r in rows])
        return [_to_payslip(r, lines.get(int(r["payslip_id"]), ())) for r in rows]

    def count_for_run(self, run_id: int) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT COUNT(*) AS total FROM payslips WHERE run_id=%s", (int(run_id),))
            r = fetchone(cur)
            return int(r["total"]) if r else 0

    def _get_where(self, where: str, params: Tuple[Any, ...]) -> Optional[Payslip]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT * FROM payslips WHERE {where}", params)
            r = fetchone(cur)
            if not r:
                return None
            lines = self._lines_for(cur, [int(r["payslip_id"])])
        return _to_payslip(r, lines.get(int(r["payslip_id"]), ()))

    def get(self, *, run_id: int, payslip_id: int) -> Optional[Payslip]:
        return self._get_where("run_id=%s AND payslip_id=%s", (int(run_id), int(payslip_id)))

    def get_for_employee(self, *, employee_id: int, payslip_id: int) -> Optional[Payslip]:
        return self._get_where("employee_id=%s AND payslip_id=%s", (int(employee_id), int(payslip_id)))

    def add_line(self, payslip_id: int, line: PayslipLine) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            return self._insert_line(cur, int(payslip_id), line)

    def delete_line(self, *, payslip_id: int, line_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM payslip_lines WHERE payslip_id=%s AND line_id=%s", (int(payslip_id), int(line_id)))
            return cur.rowcount > 0

    def save_totals(self, payslip: Payslip) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE payslips SET gross_pay=%s, total_deductions=%s, net_pay=%s WHERE payslip_id=%s",
                (payslip.gross_pay, payslip.total_deductions, payslip.net_pay, payslip.payslip_id),
            )

    def mark_generated(self, *, run_id: int, generated_at: datetime) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("UPDATE payslips SET generated_at=%s WHERE run_id=%s", (generated_at, int(run_id)))

    def list_generated_for_employee(self, employee_id: int, *, limit: int = 200) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT s.payslip_id, s.payslip_number, s.gross_pay, s.total_deductions, s.net_pay, s.generated_at,
                       r.run_number, r.run_type, p.cutoff_start, p.cutoff_end
                FROM payslips s
                JOIN payroll_runs r ON r.run_id = s.run_id
                JOIN pay_periods p ON p.period_id = r.period_id
                WHERE s.employee_id=%s AND s.generated_at IS NOT NULL AND r.run_type <> 'TRIAL_RUN'
                ORDER BY p.cutoff_end DESC, s.payslip_id DESC
                LIMIT %s
                """,
                (int(employee_id), int(limit)),
            )
            return fetchall(cur)

    def ytd_earnings(self, *, company_id: int, year: int, employee_ids: Sequence[int]) -> Mapping[int, Tuple[Decimal, Decimal]]:
        if not employee_ids:
            return {}
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT s.employee_id, SUM(s.basic_pay) AS basic, SUM(s.gross_pay) AS gross
                FROM payslips s
                JOIN payroll_runs r ON r.run_id = s.run_id
                JOIN pay_periods p ON p.period_id = r.period_id
                WHERE r.company_id=%s AND r.run_type='REGULAR' AND r.status='PAID' AND p.year=%s
                  AND s.employee_id IN ({in_clause(employee_ids)})
                GROUP BY s.employee_id
                """,
                (int(company_id), int(year), *[int(i) for i in employee_ids]),
            )
            return {int(r["employee_id"]): (to_decimal(r["basic"]), to_decimal(r["gross"])) for r in fetchall(cur)}

    def register_rows(self, run_id: int) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT s.payslip_id, e.employee_number,
                       CONCAT(e.last_name, ', ', e.first_name) AS employee_name,
                       d.name AS department_name, p.cutoff_start, p.cutoff_end
                FROM payslips s
                JOIN payroll_runs r ON r.run_id = s.run_id
                JOIN pay_periods p ON p.period_id = r.period_id
                JOIN employees e ON e.employee_id = s.employee_id
                LEFT JOIN departments d ON d.department_id = e.department_id
                WHERE s.run_id=%s
                """,
                (int(run_id),),
            )
            return fetchall(cur)

    def report_rows(self, *, company_id: int, start: date, end: date) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT s.employee_id, e.employee_number,
                       CONCAT(e.last_name, ', ', e.first_name) AS employee_name,
                       e.department_id, d.name AS department_name,
                       r.period_id, r.run_number, r.run_type, r.created_at AS run_created_at,
                       s.late_mins, s.overtime_hours, s.overtime_pay, s.tardiness_deduction
                FROM payslips s
                JOIN payroll_runs r ON r.run_id = s.run_id
                JOIN pay_periods p ON p.period_id = r.period_id
                JOIN employees e ON e.employee_id = s.employee_id
                LEFT JOIN departments d ON d.department_id = e.department_id
                WHERE r.company_id=%s AND r.status='PAID' AND r.run_type IN ('REGULAR', 'TRIAL_RUN')
                  AND p.cutoff_end BETWEEN %s AND %s
                """,
                (int(company_id), start, end),
            )
            return fetchall(cur)
