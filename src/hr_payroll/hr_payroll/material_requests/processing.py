"""Purchaser processing (serve batches) and posting of approved material requests."""
from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import replace
from decimal import Decimal
from typing import Any, Callable, ContextManager, Dict, Mapping, Optional, Sequence, Tuple

from ..audit.model import AuditChange
from ..audit.service import AuditService
from ..common.datetime_utils import now_local
from ..common.validators import optional_text
from ..core.context import Actor
from ..core.enums import PURCHASER_ROLES, AuditAction, MaterialRequestStatus, PostingStatus, ProcessingStatus
from ..core.exceptions import NotFoundError, ValidationError
from .calculations import apply_served_quantities, has_remaining_quantity
from .model import MaterialRequest
from .repository import MaterialRequestRepository

logger = logging.getLogger(__name__)

PROCESSING_FILTERS = {
    "OPEN": (ProcessingStatus.PENDING_PURCHASER, ProcessingStatus.IN_PROGRESS),
    "ALL": tuple(ProcessingStatus),
    "PENDING_PURCHASER": (ProcessingStatus.PENDING_PURCHASER,),
    "IN_PROGRESS": (ProcessingStatus.IN_PROGRESS,),
    "COMPLETED": (ProcessingStatus.COMPLETED,),
}


class MaterialRequestProcessingService:
    def __init__(
        self,
        requests: MaterialRequestRepository,
        audit: AuditService,
        *,
        transaction: Callable[[], ContextManager[Any]] = nullcontext,
    ):
        self._requests = requests
        self._audit = audit
        self._transaction = transaction

    def processing_queue(self, *, actor: Actor, status: str = "OPEN") -> Sequence[dict]:
        actor.require_role(PURCHASER_ROLES, "You are not allowed to process material requests.")
        statuses = PROCESSING_FILTERS.get((status or "OPEN").upper())
        if statuses is None:
            raise ValidationError("Unknown processing status filter.")
        return self._requests.list_processing(company_id=actor.company_id, statuses=statuses)

    def posting_queue(self, *, actor: Actor, status: PostingStatus = PostingStatus.PENDING_POSTING) -> Sequence[dict]:
        actor.require_role(PURCHASER_ROLES, "You are not allowed to post material requests.")
        return self._requests.list_posting(company_id=actor.company_id, status=status)

    def update_processing_status(
        self,
        *,
        actor: Actor,
        request_id: int,
        status: ProcessingStatus,
        served: Optional[Mapping[int, Decimal]] = None,
        purchase_order_number: Optional[str] = None,
        supplier_name: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> Tuple[MaterialRequest, str]:
        """Serve line quantities (IN_PROGRESS) or close out processing (COMPLETED)."""

        actor.require_role(PURCHASER_ROLES, "You are not allowed to process material requests.")
        if status not in (ProcessingStatus.IN_PROGRESS, ProcessingStatus.COMPLETED):
            raise ValidationError("Processing status must be IN_PROGRESS or COMPLETED.")
        served = dict(served or {})
        po_number = optional_text(purchase_order_number)
        supplier = optional_text(supplier_name)
        if status == ProcessingStatus.IN_PROGRESS:
            if not po_number:
                raise ValidationError("PO # is required when marking request as served.")
            if not supplier:
                raise ValidationError("Supplier is required when marking request as served.")
            if not served:
                raise ValidationError("At least one line item quantity is required when marking request as served.")

        with self._transaction():
            req = self._requests.get(company_id=actor.company_id, request_id=int(request_id), for_update=True)
            if not req or req.status != MaterialRequestStatus.APPROVED:
                raise NotFoundError("Approved material request not found.")
            previous = req.processing_status or ProcessingStatus.PENDING_PURCHASER

            if status == ProcessingStatus.IN_PROGRESS:
                if req.posting_status == PostingStatus.POSTED:
                    raise ValidationError("Posted requests can no longer be processed.")
                if previous == ProcessingStatus.COMPLETED:
                    raise ValidationError("Completed requests cannot be moved back to in progress.")
            else:
                if req.posting_status == PostingStatus.POSTED:
                    raise ValidationError("This request is already posted.")
                if previous == ProcessingStatus.PENDING_PURCHASER:
                    raise ValidationError("Start processing the request before marking it completed.")
                if previous == ProcessingStatus.COMPLETED:
                    return req, f"Material request {req.request_number} is already completed."

            items = apply_served_quantities(req.items, served)
            if status == ProcessingStatus.COMPLETED and has_remaining_quantity(items):
                raise ValidationError(
                    "Cannot mark request as completed while there are remaining item quantities to serve."
                )

            po_number = po_number or req.purchase_order_number
            supplier = supplier or req.supplier_name
            if served and (not po_number or not supplier):
                raise ValidationError("PO # and supplier are required to mark request as served.")

            acted_at = now_local()
            note = optional_text(remarks) or req.processing_remarks
            fields: Dict[str, Any] = {
                "processing_status": status,
                "processing_started_at": req.processing_started_at or acted_at,
                "processing_remarks": note,
                "purchase_order_number": po_number,
                "supplier_name": supplier,
                "processed_by": actor.user_id,
                "posting_reference": None,
                "posting_remarks": None,
                "posted_at": None,
                "posted_by": None,
            }
            if status == ProcessingStatus.COMPLETED:
                fields.update(processing_completed_at=acted_at, posting_status=PostingStatus.PENDING_POSTING)
            else:
                fields.update(processing_completed_at=None, posting_status=None)

            self._requests.update(request_id=req.request_id, fields=fields)
            if served:
                self._requests.record_serve_batch(
                    request_id=req.request_id,
                    purchase_order_number=po_number,
                    supplier_name=supplier,
                    served_by=actor.user_id,
                    served_at=acted_at,
                    notes=note,
                    quantities=served,
                )
            changes = [
                AuditChange("processing_status", previous, status),
                AuditChange("processing_remarks", req.processing_remarks, note),
            ]
            if served:
                changes += [
                    AuditChange("purchase_order_number", req.purchase_order_number, po_number),
                    AuditChange("supplier_name", req.supplier_name, supplier),
                    AuditChange("served_lines", None, len(served)),
                ]
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason="Material request processing status updated",
                changes=changes,
            )

        logger.info("Material request %s processing %s -> %s", req.request_number, previous.value, status.value)
        message = (
            f"Material request {req.request_number} marked as completed."
            if status == ProcessingStatus.COMPLETED
            else f"Served quantities recorded for material request {req.request_number}."
        )
        return replace(req, items=tuple(items), **fields), message

    def post(
        self,
        *,
        actor: Actor,
        request_id: int,
        posting_reference: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> Tuple[MaterialRequest, str]:
        actor.require_role(PURCHASER_ROLES, "You are not allowed to post material requests.")
        with self._transaction():
            req = self._requests.get(company_id=actor.company_id, request_id=int(request_id), for_update=True)
            if (
                not req
                or req.status != MaterialRequestStatus.APPROVED
                or req.processing_status != ProcessingStatus.COMPLETED
            ):
                raise NotFoundError("Completed material request not found.")
            if req.posting_status == PostingStatus.POSTED:
                return req, f"Material request {req.request_number} is already posted."
            if has_remaining_quantity(req.items):
                raise ValidationError("Cannot post request while item quantities are not fully served.")

            acted_at = now_local()
            fields = {
                "posting_status": PostingStatus.POSTED,
                "posting_reference": optional_text(posting_reference),
                "posting_remarks": optional_text(remarks),
                "posted_at": acted_at,
                "posted_by": actor.user_id,
            }
            self._requests.update(request_id=req.request_id, fields=fields)
            self._audit.record(
                actor=actor,
                table_name="material_requests",
                record_id=req.request_id,
                action=AuditAction.UPDATE,
                reason="Material request posted",
                changes=[
                    AuditChange("posting_status", req.posting_status or PostingStatus.PENDING_POSTING, PostingStatus.POSTED),
                    AuditChange("posting_reference", req.posting_reference, fields["posting_reference"]),
                    AuditChange("posting_remarks", req.posting_remarks, fields["posting_remarks"]),
                    AuditChange("posted_at", req.posted_at, acted_at),
                ],
            )
        logger.info("Material request %s posted by user_id=%s", req.request_number, actor.user_id)
        return replace(req, **fields), f"Material request {req.request_number} posted successfully."
