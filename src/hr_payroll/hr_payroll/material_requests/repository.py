from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from ..core.enums import PostingStatus, ProcessingStatus, StepStatus
from .calculations import NormalizedItem
from .model import ApprovalFlow, FlowApprover, MaterialRequest


class ApprovalFlowRepository(Protocol):
    def get_for_department(self, *, company_id: int, department_id: int) -> Optional[ApprovalFlow]:
        raise NotImplementedError

    def list_for_company(self, company_id: int) -> Sequence[ApprovalFlow]:
        raise NotImplementedError

    def upsert(
        self,
        *,
        company_id: int,
        department_id: int,
        required_steps: int,
        is_active: bool,
        approvers: Sequence[FlowApprover],
    ) -> int:
        """Create or replace the department's flow and its approver rows."""

        raise NotImplementedError

    def delete(self, flow_id: int) -> None:
        raise NotImplementedError


class MaterialRequestRepository(Protocol):
    def latest_number(self, *, company_id: int, prefix: str) -> Optional[str]:
        raise NotImplementedError

    def number_exists(self, request_number: str) -> bool:
        raise NotImplementedError

    def create(self, *, request: MaterialRequest, items: Sequence[NormalizedItem]) -> int:
        raise NotImplementedError

    def get(self, *, company_id: int, request_id: int, for_update: bool = False) -> Optional[MaterialRequest]:
        """Load the request with its items and approval steps."""

        raise NotImplementedError

    def update(self, *, request_id: int, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def replace_items(self, *, request_id: int, items: Sequence[NormalizedItem]) -> None:
        raise NotImplementedError

    def delete(self, request_id: int) -> None:
        raise NotImplementedError

    def create_steps(self, *, request_id: int, approvers: Iterable[FlowApprover]) -> None:
        raise NotImplementedError

    def decide_step(self, *, step_id: int, status: StepStatus, acted_at: datetime, remarks: Optional[str]) -> bool:
        """Move one PENDING step to `status`; False when it was no longer pending."""

        raise NotImplementedError

    def skip_pending_steps(
        self,
        *,
        request_id: int,
        acted_at: datetime,
        remarks: str,
        step_number: Optional[int] = None,
        from_step: Optional[int] = None,
    ) -> int:
        raise NotImplementedError

    def record_serve_batch(
        self,
        *,
        request_id: int,
        purchase_order_number: str,
        supplier_name: str,
        served_by: int,
        served_at: datetime,
        notes: Optional[str],
        quantities: Mapping[int, Decimal],
    ) -> int:
        """Insert a serve batch and add its quantities to the items' served totals."""

        raise NotImplementedError

    def list_for_requester(self, *, company_id: int, user_id: int, limit: int = 200) -> Sequence[dict]:
        raise NotImplementedError

    def list_pending_for_approver(self, *, company_id: int, user_id: int, limit: int = 200) -> Sequence[dict]:
        raise NotImplementedError

    def list_processing(
        self, *, company_id: int, statuses: Sequence[ProcessingStatus], limit: int = 200
    ) -> Sequence[dict]:
        raise NotImplementedError

    def list_posting(self, *, company_id: int, status: PostingStatus, limit: int = 200) -> Sequence[dict]:
        raise NotImplementedError
