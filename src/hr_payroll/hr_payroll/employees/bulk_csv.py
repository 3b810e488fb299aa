"""Masterlist bulk update from an uploaded CSV file."""
from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..core.constants import EMPLOYEE_BULK_CLEAR_TOKEN, EMPLOYEE_BULK_MAX_ROWS
from ..core.context import Actor
from ..core.enums import EMPLOYEE_MANAGER_ROLES
from ..core.exceptions import ValidationError
from .repository import DepartmentRepository, EmployeeRepository
from .service import EmployeeService

logger = logging.getLogger(__name__)

# CSV header -> employees column
HEADER_FIELDS: Dict[str, str] = {
    "employeeNumber": "employee_number",
    "firstName": "first_name",
    "lastName": "last_name",
    "middleName": "middle_name",
    "email": "email",
    "hireDate": "hire_date",
    "separationDate": "separation_date",
    "employmentStatus": "employment_status",
    "department": "department_id",
    "position": "position",
    "reportingManagerEmployeeNumber": "reporting_manager_id",
    "monthlyRate": "monthly_salary",
    "payPeriodPattern": "pay_frequency",
    "isOvertimeEligible": "is_overtime_eligible",
    "isNightDiffEligible": "is_night_diff_eligible",
}
TEMPLATE_HEADERS: Tuple[str, ...] = tuple(HEADER_FIELDS)
REQUIRED_HEADERS: Tuple[str, ...] = ("employeeNumber",)
CLEARABLE_FIELDS = frozenset(
    {"middle_name", "email", "position", "separation_date", "department_id", "reporting_manager_id", "monthly_salary"}
)


def normalize_key(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip()).lower()


def normalize_header_key(value: str) -> str:
    key = normalize_key(value)
    for marker in ("[required]", "(required)", "*"):
        key = key.replace(marker, "")
    return key.strip()


def is_clear_token(value: str) -> bool:
    return normalize_key(value) == normalize_key(EMPLOYEE_BULK_CLEAR_TOKEN)


def build_template_csv(rows: Iterable[Mapping[str, str]] = (), *, required_headers: Sequence[str] = REQUIRED_HEADERS) -> str:
    required = set(required_headers)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([f"{h} *" if h in required else h for h in TEMPLATE_HEADERS])
    for row in rows:
        writer.writerow([row.get(h, "") for h in TEMPLATE_HEADERS])
    return buf.getvalue()


def parse_csv_rows(content: str) -> List[Tuple[int, List[str]]]:
    """Return ``(line_number, cells)`` pairs; line numbers point at the row's first physical line."""

    text = content.lstrip("\ufeff")
    reader = csv.reader(io.StringIO(text), strict=True)
    rows: List[Tuple[int, List[str]]] = []
    start_line = 1
    try:
        for cells in reader:
            rows.append((start_line, cells))
            start_line = reader.line_num + 1
    except csv.Error as e:
        raise ValidationError(f"Invalid CSV format: {e}.")
    return rows


@dataclass
class BulkRowError:
    line_number: int
    employee_number: str
    error: str


@dataclass
class BulkUpdateResult:
    processed_rows: int = 0
    updated_rows: int = 0
    unchanged_rows: int = 0
    errors: List[BulkRowError] = field(default_factory=list)


class EmployeeBulkUpdateService:
    """Applies valid CSV rows through ``EmployeeService.update`` and collects per-row errors."""

    def __init__(self, employees: EmployeeRepository, departments: DepartmentRepository, employee_service: EmployeeService):
        self._employees = employees
        self._departments = departments
        self._employee_service = employee_service

    def template(self) -> str:
        return build_template_csv()

    def apply(self, *, actor: Actor, content: str) -> BulkUpdateResult:
        actor.require_role(EMPLOYEE_MANAGER_ROLES, "Only Company Admin or HR Admin can manage employees.")

        if not (content or "").strip():
            raise ValidationError("CSV file is empty.")

        rows = parse_csv_rows(content)
        header_line, header_cells = rows[0]
        known = {normalize_header_key(h): h for h in TEMPLATE_HEADERS}
        columns: Dict[int, str] = {}
        for index, cell in enumerate(header_cells):
            header = known.get(normalize_header_key(cell))
            if header:
                columns[index] = header

        missing = [h for h in REQUIRED_HEADERS if h not in columns.values()]
        if missing:
            raise ValidationError(f"CSV is missing required column(s): {', '.join(missing)}.")

        data_rows = [(line, cells) for line, cells in rows[1:] if any(c.strip() for c in cells)]
        if not data_rows:
            raise ValidationError("No data rows found. Add at least one employee row.")
        if len(data_rows) > EMPLOYEE_BULK_MAX_ROWS:
            raise ValidationError(f"CSV has too many rows. Maximum allowed is {EMPLOYEE_BULK_MAX_ROWS}.")

        departments = self._department_lookup(actor.company_id)
        result = BulkUpdateResult()
        for line, cells in data_rows:
            values = {header: (cells[i] if i < len(cells) else "") for i, header in columns.items()}
            employee_number = values.get("employeeNumber", "").strip()
            result.processed_rows += 1
            try:
                changed = self._apply_row(actor, employee_number, values, departments)
            except ValidationError as e:
                result.errors.append(BulkRowError(line_number=line, employee_number=employee_number, error=str(e)))
                continue
            if changed:
                result.updated_rows += 1
            else:
                result.unchanged_rows += 1

        logger.info(
            "Bulk employee update by user_id=%s: updated=%d unchanged=%d errors=%d",
            actor.user_id,
            result.updated_rows,
            result.unchanged_rows,
            len(result.errors),
        )
        return result

    def _department_lookup(self, company_id: int) -> Dict[str, int]:
        lookup: Dict[str, int] = {}
        for d in self._departments.list_all(company_id):
            lookup[normalize_key(d.code)] = d.department_id
            lookup[normalize_key(d.name)] = d.department_id
        return lookup

    def _resolve(self, actor: Actor, header: str, value: str, departments: Mapping[str, int]) -> Optional[object]:
        if header == "department":
            department_id = departments.get(normalize_key(value))
            if department_id is None:
                raise ValidationError(f'Unknown department "{value}".')
            return department_id
        if header == "reportingManagerEmployeeNumber":
            manager = self._employees.get_by_number(company_id=actor.company_id, employee_number=value.strip())
            if not manager or manager.deleted_at is not None:
                raise ValidationError(f'Unknown reporting manager "{value}".')
            return manager.employee_id
        return value

    def _apply_row(self, actor: Actor, employee_number: str, values: Mapping[str, str], departments: Mapping[str, int]) -> int:
        if not employee_number:
            raise ValidationError("employeeNumber is required.")
        employee = self._employees.get_by_number(company_id=actor.company_id, employee_number=employee_number)
        if not employee or employee.deleted_at is not None:
            raise ValidationError(f'Unknown employee number "{employee_number}".')

        data: Dict[str, object] = {}
        for header, raw in values.items():
            if header == "employeeNumber" or not raw.strip():
                continue
            column = HEADER_FIELDS[header]
            if is_clear_token(raw):
                if column not in CLEARABLE_FIELDS:
                    raise ValidationError(f"{header} cannot be cleared.")
                data[column] = ""
                continue
            data[column] = self._resolve(actor, header, raw, departments)

        if not data:
            return 0
        return self._employee_service.update(
            actor=actor, employee_id=employee.employee_id, data=data, reason="Bulk CSV update"
        )
