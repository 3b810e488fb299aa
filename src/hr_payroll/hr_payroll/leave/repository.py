from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Optional, Protocol, Sequence, Set, Tuple

from ..core.enums import RequestStatus
from .model import LeaveBalance, LeaveBalanceTransaction, LeaveRequest, LeaveType, LeaveTypePolicy


class LeaveTypeRepository(Protocol):
    def list_for_company(self, company_id: int, *, active_only: bool = True) -> Sequence[LeaveType]:
        """Company-scoped types plus global ones (company_id NULL)."""

        raise NotImplementedError

    def get_by_id(self, *, company_id: int, leave_type_id: int) -> Optional[LeaveType]:
        raise NotImplementedError

    def list_policies(self, leave_type_ids: Sequence[int]) -> Sequence[LeaveTypePolicy]:
        raise NotImplementedError


class LeaveBalanceRepository(Protocol):
    def get(self, *, employee_id: int, leave_type_id: int, year: int) -> Optional[LeaveBalance]:
        raise NotImplementedError

    def get_by_id(self, balance_id: int) -> Optional[LeaveBalance]:
        raise NotImplementedError

    def create(self, balance: LeaveBalance) -> int:
        raise NotImplementedError

    def save_amounts(self, balance: LeaveBalance) -> None:
        raise NotImplementedError

    def add_transaction(self, tx: LeaveBalanceTransaction) -> int:
        raise NotImplementedError

    def list_transactions(self, balance_id: int) -> Sequence[LeaveBalanceTransaction]:
        """Newest first."""

        raise NotImplementedError

    def latest_transaction_for(self, *, reference_type: str, reference_id: str) -> Optional[LeaveBalanceTransaction]:
        raise NotImplementedError

    def list_for_employee(self, *, employee_id: int, year: int) -> Sequence[LeaveBalance]:
        raise NotImplementedError

    def list_for_company_year(self, *, company_id: int, year: int) -> Sequence[LeaveBalance]:
        raise NotImplementedError

    def existing_keys(self, *, year: int, employee_ids: Sequence[int]) -> Set[Tuple[int, int]]:
        """``(employee_id, leave_type_id)`` pairs that already have a row for ``year``."""

        raise NotImplementedError


class LeaveRequestRepository(Protocol):
    def number_exists(self, request_number: str) -> bool:
        raise NotImplementedError

    def create(self, request: LeaveRequest) -> int:
        raise NotImplementedError

    def get_by_id(self, *, company_id: int, request_id: int) -> Optional[LeaveRequest]:
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

    def list_approved_in_range(self, *, employee_ids: Sequence[int], start: date, end: date) -> Sequence[LeaveRequest]:
        raise NotImplementedError

    def count_pending_in_range(self, *, company_id: int, start: date, end: date) -> int:
        raise NotImplementedError
