"""Payroll register: one row per payslip grouped by department, exported as CSV."""
from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.enums import LineCategory
from ..core.money import ZERO, currency_text, round_currency
from .model import PayslipLine

CORE_EARNING_CODES = frozenset({"BASIC_PAY", "THIRTEENTH_MONTH"})
CORE_DEDUCTION_CODES = frozenset({"SSS", "PHILHEALTH", "PAGIBIG", "WTAX"})
MANUAL_ADJUSTMENT_CODE = "ADJUSTMENT"
UNASSIGNED_DEPARTMENT = "UNASSIGNED"

FIXED_COLUMNS = ("basic_pay", "sss", "philhealth", "pagibig", "tax", "sss_loan", "absent", "late", "undertime")
FIXED_HEADERS = ("BAS", "SSS", "PHI", "HDMF", "TAX", "SSSL", "ABS", "LTE", "UT")


@dataclass(frozen=True)
class RegisterInputRow:
    employee_number: str
    employee_name: str
    department_name: Optional[str]
    period_start: date
    period_end: date
    basic_pay: Decimal
    sss: Decimal
    philhealth: Decimal
    pagibig: Decimal
    tax: Decimal
    net_pay: Decimal
    lines: Sequence[PayslipLine] = ()


@dataclass(frozen=True)
class RegisterColumn:
    key: str
    code: str
    label: str
    header_label: str
    category: LineCategory


@dataclass
class RegisterTotals:
    amounts: Dict[str, Decimal] = field(default_factory=lambda: {name: ZERO for name in FIXED_COLUMNS})
    dynamic: Dict[str, Decimal] = field(default_factory=dict)
    earnings_total: Decimal = ZERO
    deductions_total: Decimal = ZERO
    net_pay: Decimal = ZERO

    def add(self, other: "RegisterTotals") -> None:
        for name, value in other.amounts.items():
            self.amounts[name] = self.amounts.get(name, ZERO) + value
        for key, value in other.dynamic.items():
            self.dynamic[key] = self.dynamic.get(key, ZERO) + value
        self.earnings_total += other.earnings_total
        self.deductions_total += other.deductions_total
        self.net_pay += other.net_pay


@dataclass(frozen=True)
class RegisterRow:
    employee_number: str
    employee_name: str
    department_name: str
    period_start: date
    period_end: date
    totals: RegisterTotals


@dataclass(frozen=True)
class DepartmentGroup:
    name: str
    rows: Tuple[RegisterRow, ...]
    subtotal: RegisterTotals


@dataclass(frozen=True)
class RegisterReport:
    columns: Tuple[RegisterColumn, ...]
    departments: Tuple[DepartmentGroup, ...]
    grand_total: RegisterTotals
    headcount: int


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def column_code(value: Optional[str]) -> str:
    code = re.sub(r"[^A-Z0-9]+", "_", _normalize(value)).strip("_")
    return re.sub(r"_{2,}", "_", code) or "UNMAPPED"


def _line_text(line: PayslipLine) -> str:
    return f"{_normalize(line.name)} {_normalize(line.description)}"


def is_core_earning(line: PayslipLine) -> bool:
    return _normalize(line.code) in CORE_EARNING_CODES or "BASIC PAY" in _line_text(line)


def deduction_bucket(line: PayslipLine) -> str:
    """CORE, a fixed column name, or DYNAMIC."""

    code = _normalize(line.code)
    if code in CORE_DEDUCTION_CODES:
        return "CORE"
    text = _line_text(line)
    if code in ("SSS_LOAN", "SSSL") or re.search(r"SSS\s*(SALARY\s*)?LOAN", text):
        return "sss_loan"
    if code in ("ABSENT", "ABSENCE") or re.search(r"ABSENT|ABSENCE", text):
        return "absent"
    if code == "TARDINESS" or re.search(r"TARDINESS|LATE", text):
        return "late"
    if code == "UNDERTIME" or "UNDERTIME" in text:
        return "undertime"
    return "DYNAMIC"


def column_for(line: PayslipLine) -> RegisterColumn:
    code = column_code(line.code)
    label = (line.description or line.name or code).strip()
    if _normalize(line.code) == MANUAL_ADJUSTMENT_CODE and label:
        adjustment_code = f"ADJ_{column_code(label)}"
        return RegisterColumn(f"{line.category.value}:{adjustment_code}", adjustment_code, label, label, line.category)
    return RegisterColumn(f"{line.category.value}:{code}", code, label or code, code, line.category)


def _build_row(row: RegisterInputRow, columns: Dict[str, RegisterColumn]) -> RegisterRow:
    totals = RegisterTotals()
    totals.amounts.update(
        basic_pay=round_currency(row.basic_pay),
        sss=round_currency(row.sss),
        philhealth=round_currency(row.philhealth),
        pagibig=round_currency(row.pagibig),
        tax=round_currency(row.tax),
    )
    totals.net_pay = round_currency(row.net_pay)

    for line in row.lines:
        if line.category == LineCategory.EARNING:
            if is_core_earning(line):
                continue
            totals.earnings_total += line.amount
        else:
            bucket = deduction_bucket(line)
            if bucket == "CORE":
                continue
            if bucket != "DYNAMIC":
                totals.amounts[bucket] += line.amount
                continue
            totals.deductions_total += line.amount
        column = column_for(line)
        columns[column.key] = column
        totals.dynamic[column.key] = totals.dynamic.get(column.key, ZERO) + line.amount

    return RegisterRow(
        employee_number=row.employee_number,
        employee_name=row.employee_name,
        department_name=row.department_name or UNASSIGNED_DEPARTMENT,
        period_start=row.period_start,
        period_end=row.period_end,
        totals=totals,
    )


def _sum(rows: Sequence[RegisterRow]) -> RegisterTotals:
    total = RegisterTotals()
    for row in rows:
        total.add(row.totals)
    return total


def build_register(rows: Sequence[RegisterInputRow]) -> RegisterReport:
    column_map: Dict[str, RegisterColumn] = {}
    register_rows = [_build_row(row, column_map) for row in rows]
    columns = sorted(
        column_map.values(),
        key=lambda c: (0 if c.category == LineCategory.EARNING else 1, c.code, c.label),
    )

    grouped: Dict[str, List[RegisterRow]] = {}
    for row in register_rows:
        grouped.setdefault(row.department_name, []).append(row)
    departments = []
    for name in sorted(grouped):
        members = tuple(sorted(grouped[name], key=lambda r: (r.employee_name, r.employee_number)))
        departments.append(DepartmentGroup(name=name, rows=members, subtotal=_sum(members)))

    return RegisterReport(
        columns=tuple(columns),
        departments=tuple(departments),
        grand_total=_sum(register_rows),
        headcount=len(register_rows),
    )


def format_period(start: date, end: date) -> str:
    return f"{start:%m/%d/%Y}-{end:%m/%d/%Y}"


def _amount_cells(totals: RegisterTotals, earning_cols: Sequence[RegisterColumn], deduction_cols: Sequence[RegisterColumn]) -> List[str]:
    cells = [currency_text(totals.amounts[name]) for name in FIXED_COLUMNS]
    cells += [currency_text(totals.dynamic.get(c.key, ZERO)) for c in earning_cols]
    cells.append(currency_text(totals.earnings_total))
    cells += [currency_text(totals.dynamic.get(c.key, ZERO)) for c in deduction_cols]
    cells.append(currency_text(totals.deductions_total))
    cells.append(currency_text(totals.net_pay))
    return cells


def build_register_csv(rows: Sequence[RegisterInputRow]) -> str:
    report = build_register(rows)
    earning_cols = [c for c in report.columns if c.category == LineCategory.EARNING]
    deduction_cols = [c for c in report.columns if c.category == LineCategory.DEDUCTION]

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(
        ["Emp ID", "Employee Name", "Period Date", *FIXED_HEADERS]
        + [f"+ {c.header_label}" for c in earning_cols]
        + ["+ EARN TOTAL"]
        + [f"- {c.header_label}" for c in deduction_cols]
        + ["- DED TOTAL", "NET"]
    )

    for group in report.departments:
        writer.writerow([f"DEPARTMENT: {group.name}"])
        for row in group.rows:
            writer.writerow(
                [row.employee_number, row.employee_name, format_period(row.period_start, row.period_end)]
                + _amount_cells(row.totals, earning_cols, deduction_cols)
            )
        writer.writerow(
            [f"SUB-TOTAL: {group.name}", "", f"HC:{len(group.rows)}"]
            + _amount_cells(group.subtotal, earning_cols, deduction_cols)
        )

    writer.writerow(["GRAND TOTAL", "", f"HC:{report.headcount}"] + _amount_cells(report.grand_total, earning_cols, deduction_cols))
    return buf.getvalue()
