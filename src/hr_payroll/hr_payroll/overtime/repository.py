from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Optional, Protocol, Sequence

from ..core.enums import RequestStatus
from .model import OvertimeRequest


class OvertimeRequestRepository(Protocol):
    def number_exists(self, request_number: str) -> bool:
        raise NotImplementedError

    def create(self, request: OvertimeRequest) -> int:
        raise NotImplementedError

    def get_by_id(self, *, company_id: int, request_id: int) -> Optional[OvertimeRequest]:
        raise NotImplementedError

    def update(self, *, request_id: int, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def list_for_employee(self, employee_id: int, *, limit: int = 200) -> Sequence[dict]:
        raise NotImplementedError

    def list_queue(
        self,
        *,
        company_id: int,
        status: RequestStatus,
        supervisor_id: Optional[int] = None,
        limit: int = 200,
    ) -> Sequence[dict]:
        raise NotImplementedError

    def list_approved_in_range(self, *, employee_ids: Sequence[int], start: date, end: date) -> Sequence[OvertimeRequest]:
        raise NotImplementedError

    def count_pending_in_range(self, *, company_id: int, start: date, end: date) -> int:
        raise NotImplementedError
