from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple

from ..core.enums import MaterialRequestStatus, PostingStatus, ProcessingStatus, StepStatus

SERIES = ("PO", "JO", "OTHERS")
REQUEST_TYPES = ("ITEM", "SERVICE")


@dataclass(frozen=True)
class ItemInput:
    """One requested line as entered on the draft form."""

    description: str
    uom: str
    quantity: Decimal
    unit_price: Optional[Decimal] = None
    item_code: Optional[str] = None
    remarks: Optional[str] = None


@dataclass(frozen=True)
class MaterialRequestItem:
    item_id: int
    request_id: int
    line_number: int
    description: str
    uom: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    served_quantity: Decimal = Decimal("0")
    item_code: Optional[str] = None
    remarks: Optional[str] = None

    @property
    def remaining_quantity(self) -> Decimal:
        return max(Decimal("0"), self.quantity - self.served_quantity)


@dataclass(frozen=True)
class ApprovalStep:
    step_id: int
    request_id: int
    step_number: int
    step_name: str
    approver_user_id: int
    status: StepStatus
    acted_at: Optional[datetime] = None
    remarks: Optional[str] = None


@dataclass(frozen=True)
class FlowApprover:
    step_number: int
    step_name: str
    approver_user_id: int


@dataclass(frozen=True)
class ApprovalFlow:
    """Department approval chain: 1..4 steps, each with one or more approvers."""

    flow_id: int
    company_id: int
    department_id: int
    required_steps: int
    is_active: bool
    approvers: Tuple[FlowApprover, ...] = ()

    def approvers_for(self, step_number: int) -> Tuple[FlowApprover, ...]:
        return tuple(a for a in self.approvers if a.step_number == step_number)

    def step_name(self, step_number: int) -> str:
        for a in self.approvers_for(step_number):
            if a.step_name.strip():
                return a.step_name.strip()
        return f"Step {step_number}"


@dataclass(frozen=True)
class MaterialRequest:
    request_id: int
    company_id: int
    request_number: str
    series: str
    request_type: str
    requester_employee_id: int
    requester_user_id: int
    department_id: int
    date_prepared: date
    date_required: date
    status: MaterialRequestStatus
    freight: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    grand_total: Decimal = Decimal("0")
    purpose: Optional[str] = None
    remarks: Optional[str] = None
    selected_approvers: Tuple[Optional[int], ...] = (None, None, None, None)
    current_step: Optional[int] = None
    required_steps: Optional[int] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    processing_status: Optional[ProcessingStatus] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    processing_remarks: Optional[str] = None
    purchase_order_number: Optional[str] = None
    supplier_name: Optional[str] = None
    processed_by: Optional[int] = None
    posting_status: Optional[PostingStatus] = None
    posting_reference: Optional[str] = None
    posting_remarks: Optional[str] = None
    posted_at: Optional[datetime] = None
    posted_by: Optional[int] = None
    items: Tuple[MaterialRequestItem, ...] = field(default_factory=tuple)
    steps: Tuple[ApprovalStep, ...] = field(default_factory=tuple)

    def selected_approver(self, step_number: int) -> Optional[int]:
        if 1 <= step_number <= len(self.selected_approvers):
            return self.selected_approvers[step_number - 1]
        return None


@dataclass(frozen=True)
class MaterialRequestDraft:
    """Editable header and lines of a draft request."""

    series: str
    request_type: str
    date_prepared: date
    date_required: date
    items: Tuple[ItemInput, ...]
    department_id: Optional[int] = None
    selected_approvers: Tuple[Optional[int], ...] = (None, None, None, None)
    purpose: Optional[str] = None
    remarks: Optional[str] = None
    freight: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
