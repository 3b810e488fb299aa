from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, Sequence, Tuple

from .model import Department, Employee


class EmployeeRepository(Protocol):
    def get_by_id(self, *, company_id: int, employee_id: int, include_deleted: bool = False) -> Optional[Employee]:
        raise NotImplementedError

    def get_by_number(self, *, company_id: int, employee_number: str) -> Optional[Employee]:
        raise NotImplementedError

    def create(self, *, company_id: int, fields: Mapping[str, Any]) -> int:
        raise NotImplementedError

    def update(self, *, employee_id: int, fields: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def soft_delete(self, *, employee_id: int, deleted_by: int, deleted_at: datetime) -> bool:
        raise NotImplementedError

    def restore(self, *, employee_id: int) -> bool:
        raise NotImplementedError

    def count_active_direct_reports(self, *, manager_id: int) -> int:
        raise NotImplementedError

    def list_active(
        self,
        *,
        company_id: int,
        department_ids: Sequence[int] = (),
        employee_ids: Sequence[int] = (),
    ) -> Sequence[Employee]:
        raise NotImplementedError

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
        """Return one page of UI rows (joined with department) and the total count."""

        raise NotImplementedError


class DepartmentRepository(Protocol):
    def list_all(self, company_id: int) -> Sequence[Department]:
        raise NotImplementedError

    def get_by_id(self, *, company_id: int, department_id: int) -> Optional[Department]:
        raise NotImplementedError
