from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Optional, Protocol, Sequence

from .model import DailyTimeRecord, WorkSchedule


class DtrRepository(Protocol):
    def get_for_employee_and_date(self, employee_id: int, attendance_date: date) -> Optional[DailyTimeRecord]:
        raise NotImplementedError

    def upsert(self, *, employee_id: int, attendance_date: date, fields: Mapping[str, Any], updated_by: int) -> int:
        raise NotImplementedError

    def list_for_employees(self, *, employee_ids: Sequence[int], start: date, end: date) -> Sequence[DailyTimeRecord]:
        raise NotImplementedError

    def list_export_rows(self, *, company_id: int, start: date, end: date) -> Sequence[dict]:
        """Company DTR rows joined with employee number, name and department."""

        raise NotImplementedError


class WorkScheduleRepository(Protocol):
    def get_by_id(self, schedule_id: int) -> Optional[WorkSchedule]:
        raise NotImplementedError

    def list_all(self, company_id: int) -> Sequence[WorkSchedule]:
        raise NotImplementedError
