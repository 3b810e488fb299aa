"""Late / overtime aggregation over payslips of closed payroll runs."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..core.enums import PayrollRunType
from ..core.money import ZERO, round_currency, round_hours, to_decimal

UNASSIGNED_DEPARTMENT = "UNASSIGNED"


@dataclass(frozen=True)
class SourceRow:
    employee_id: int
    employee_number: str
    employee_name: str
    department_id: Optional[int]
    department_name: Optional[str]
    period_id: int
    run_number: str
    run_created_at: datetime
    run_type: PayrollRunType
    late_mins: int = 0
    overtime_hours: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    tardiness_deduction: Decimal = ZERO


@dataclass(frozen=True)
class Figures:
    late_mins: int = 0
    overtime_hours: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    tardiness_deduction: Decimal = ZERO

    def plus(self, row: "SourceRow") -> "Figures":
        return Figures(
            late_mins=self.late_mins + row.late_mins,
            overtime_hours=self.overtime_hours + row.overtime_hours,
            overtime_pay=self.overtime_pay + row.overtime_pay,
            tardiness_deduction=self.tardiness_deduction + row.tardiness_deduction,
        )

    def rounded(self) -> "Figures":
        return Figures(
            late_mins=self.late_mins,
            overtime_hours=round_hours(self.overtime_hours),
            overtime_pay=round_currency(self.overtime_pay),
            tardiness_deduction=round_currency(self.tardiness_deduction),
        )


@dataclass(frozen=True)
class EmployeeAggregate:
    employee_id: int
    employee_number: str
    employee_name: str
    department_name: Optional[str]
    figures: Figures


@dataclass(frozen=True)
class DepartmentAggregate:
    department_id: Optional[int]
    department_name: str
    employee_count: int
    figures: Figures


def source_row(r: Mapping) -> SourceRow:
    return SourceRow(
        employee_id=int(r["employee_id"]),
        employee_number=r["employee_number"],
        employee_name=r["employee_name"],
        department_id=int(r["department_id"]) if r.get("department_id") is not None else None,
        department_name=r.get("department_name"),
        period_id=int(r["period_id"]),
        run_number=r["run_number"],
        run_created_at=r["run_created_at"],
        run_type=PayrollRunType(r["run_type"]),
        late_mins=int(r.get("late_mins") or 0),
        overtime_hours=to_decimal(r.get("overtime_hours")),
        overtime_pay=to_decimal(r.get("overtime_pay")),
        tardiness_deduction=to_decimal(r.get("tardiness_deduction")),
    )


def select_rows(rows: Sequence[SourceRow], include_trial_runs: bool) -> List[SourceRow]:
    """Regular-run rows, plus rows of the latest trial run of each period when asked."""

    regular = [r for r in rows if r.run_type == PayrollRunType.REGULAR]
    if not include_trial_runs:
        return regular

    latest: Dict[int, Tuple[datetime, str]] = {}
    for r in rows:
        if r.run_type != PayrollRunType.TRIAL_RUN:
            continue
        key = (r.run_created_at, r.run_number)
        if r.period_id not in latest or key > latest[r.period_id]:
            latest[r.period_id] = key
    trial = [
        r for r in rows
        if r.run_type == PayrollRunType.TRIAL_RUN and latest.get(r.period_id) == (r.run_created_at, r.run_number)
    ]
    return regular + trial


def summarize(rows: Sequence[SourceRow]) -> Figures:
    total = Figures()
    for r in rows:
        total = total.plus(r)
    return total.rounded()


def aggregate_employees(rows: Sequence[SourceRow]) -> List[EmployeeAggregate]:
    grouped: Dict[int, EmployeeAggregate] = {}
    for r in rows:
        current = grouped.get(r.employee_id)
        if current is None:
            current = EmployeeAggregate(r.employee_id, r.employee_number, r.employee_name, r.department_name, Figures())
        grouped[r.employee_id] = replace(current, figures=current.figures.plus(r))
    return [replace(a, figures=a.figures.rounded()) for a in grouped.values()]


def aggregate_departments(rows: Sequence[SourceRow]) -> List[DepartmentAggregate]:
    figures: Dict[Optional[int], Figures] = {}
    names: Dict[Optional[int], str] = {}
    members: Dict[Optional[int], Set[int]] = {}
    for r in rows:
        key = r.department_id
        names.setdefault(key, r.department_name or UNASSIGNED_DEPARTMENT)
        members.setdefault(key, set()).add(r.employee_id)
        figures[key] = figures.get(key, Figures()).plus(r)
    result = [
        DepartmentAggregate(key, names[key], len(members[key]), figures[key].rounded())
        for key in figures
    ]
    return sorted(result, key=lambda d: d.department_name)


def top_by_late(rows: Sequence[EmployeeAggregate], limit: int) -> List[EmployeeAggregate]:
    ranked = sorted(
        (r for r in rows if r.figures.late_mins > 0),
        key=lambda r: (-r.figures.late_mins, -r.figures.tardiness_deduction, r.employee_name),
    )
    return ranked[:limit]


def top_by_overtime(rows: Sequence[EmployeeAggregate], limit: int) -> List[EmployeeAggregate]:
    ranked = sorted(
        (r for r in rows if r.figures.overtime_hours > 0),
        key=lambda r: (-r.figures.overtime_hours, -r.figures.overtime_pay, r.employee_name),
    )
    return ranked[:limit]


@dataclass(frozen=True)
class LateOvertimeReport:
    totals: Figures
    employees: Tuple[EmployeeAggregate, ...] = ()
    departments: Tuple[DepartmentAggregate, ...] = ()
    top_late: Tuple[EmployeeAggregate, ...] = ()
    top_overtime: Tuple[EmployeeAggregate, ...] = ()
    include_trial_runs: bool = False


def build_report(rows: Sequence[SourceRow], *, include_trial_runs: bool, top: int = 10) -> LateOvertimeReport:
    selected = select_rows(rows, include_trial_runs)
    employees = sorted(aggregate_employees(selected), key=lambda a: (a.employee_name, a.employee_number))
    return LateOvertimeReport(
        totals=summarize(selected),
        employees=tuple(employees),
        departments=tuple(aggregate_departments(selected)),
        top_late=tuple(top_by_late(employees, top)),
        top_overtime=tuple(top_by_overtime(employees, top)),
        include_trial_runs=include_trial_runs,
    )
