from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Dict

from flask import Flask, request

from ..common.datetime_utils import parse_date_field
from ..common.http import current_actor, handle_domain_errors, login_required, ok, request_data
from ..core.enums import ProcessingStatus
from ..core.exceptions import ValidationError
from ..core.money import to_decimal
from ..container import Container
from .calculations import parse_item
from .flow import parse_flow_approvers
from .model import MaterialRequestDraft


def _optional_int(value):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("Identifiers must be numbers.")


def _money(data: dict, key: str) -> Decimal:
    try:
        value = to_decimal(data.get(key) or 0)
    except InvalidOperation:
        raise ValidationError(f"{key.capitalize()} must be a number.")
    if not value.is_finite():
        raise ValidationError(f"{key.capitalize()} must be a number.")
    return value


def _draft_payload(data: dict) -> MaterialRequestDraft:
    items = data.get("items")
    if not isinstance(items, list):
        raise ValidationError("At least one item is required.")
    selected = data.get("selected_approvers") or []
    if not isinstance(selected, list):
        raise ValidationError("Selected approvers must be a list.")
    return MaterialRequestDraft(
        series=str(data.get("series") or "").strip().upper(),
        request_type=str(data.get("request_type") or "ITEM").strip().upper(),
        date_prepared=parse_date_field(data.get("date_prepared"), "Prepared date"),
        date_required=parse_date_field(data.get("date_required"), "Required date"),
        items=tuple(parse_item(i) for i in items if isinstance(i, dict)),
        department_id=_optional_int(data.get("department_id")),
        selected_approvers=tuple(_optional_int(v) for v in selected),
        purpose=data.get("purpose"),
        remarks=data.get("remarks"),
        freight=_money(data, "freight"),
        discount=_money(data, "discount"),
    )


def _served_payload(data: dict) -> Dict[int, Decimal]:
    served: Dict[int, Decimal] = {}
    for row in data.get("served_items") or []:
        item_id = _optional_int(row.get("item_id"))
        if item_id is None:
            raise ValidationError("Served items need an item id.")
        if item_id in served:
            raise ValidationError("Each request item can only appear once per serve action.")
        try:
            served[item_id] = to_decimal(row.get("quantity_served"))
        except InvalidOperation:
            raise ValidationError("Served quantity must be a number.")
    return served


def register(app: Flask, container: Container) -> None:
    @app.route("/material-requests", methods=["GET"], endpoint="my_material_requests")
    @login_required
    @handle_domain_errors
    def my_material_requests():
        return ok(requests=container.material_request_service.my_requests(actor=current_actor()))

    @app.route("/material-requests", methods=["POST"], endpoint="create_material_request")
    @login_required
    @handle_domain_errors
    def create_material_request():
        created = container.material_request_service.create_draft(
            actor=current_actor(), draft=_draft_payload(request_data())
        )
        return ok(f"Material request {created.request_number} saved as draft.", 201, request=created)

    @app.route("/material-requests/<int:request_id>", methods=["GET"], endpoint="material_request_detail")
    @login_required
    @handle_domain_errors
    def material_request_detail(request_id: int):
        return ok(request=container.material_request_service.get_detail(actor=current_actor(), request_id=request_id))

    @app.route("/material-requests/<int:request_id>", methods=["POST"], endpoint="update_material_request")
    @login_required
    @handle_domain_errors
    def update_material_request(request_id: int):
        updated = container.material_request_service.update_draft(
            actor=current_actor(), request_id=request_id, draft=_draft_payload(request_data())
        )
        return ok(f"Material request {updated.request_number} draft updated.")

    @app.route("/material-requests/<int:request_id>/delete", methods=["POST"], endpoint="delete_material_request")
    @login_required
    @handle_domain_errors
    def delete_material_request(request_id: int):
        return ok(container.material_request_service.delete_draft(actor=current_actor(), request_id=request_id))

    @app.route("/material-requests/<int:request_id>/submit", methods=["POST"], endpoint="submit_material_request")
    @login_required
    @handle_domain_errors
    def submit_material_request(request_id: int):
        req = container.material_request_service.submit(actor=current_actor(), request_id=request_id)
        return ok(f"Material request {req.request_number} submitted for approval.")

    @app.route("/material-requests/<int:request_id>/cancel", methods=["POST"], endpoint="cancel_material_request")
    @login_required
    @handle_domain_errors
    def cancel_material_request(request_id: int):
        req = container.material_request_service.cancel(
            actor=current_actor(), request_id=request_id, reason=request_data().get("reason")
        )
        return ok(f"Material request {req.request_number} cancelled.")

    @app.route("/material-requests/approvals", methods=["GET"], endpoint="material_request_approvals")
    @login_required
    @handle_domain_errors
    def material_request_approvals():
        return ok(requests=container.material_request_service.approval_queue(actor=current_actor()))

    @app.route("/material-requests/<int:request_id>/approve", methods=["POST"], endpoint="approve_material_request")
    @login_required
    @handle_domain_errors
    def approve_material_request(request_id: int):
        req = container.material_request_service.approve(
            actor=current_actor(), request_id=request_id, remarks=request_data().get("remarks")
        )
        return ok(
            f"Material request {req.request_number} approved.",
            request_status=req.status,
            current_step=req.current_step,
        )

    @app.route("/material-requests/<int:request_id>/reject", methods=["POST"], endpoint="reject_material_request")
    @login_required
    @handle_domain_errors
    def reject_material_request(request_id: int):
        req = container.material_request_service.reject(
            actor=current_actor(), request_id=request_id, remarks=request_data().get("remarks")
        )
        return ok(f"Material request {req.request_number} rejected.")

    @app.route("/material-requests/processing", methods=["GET"], endpoint="material_request_processing_queue")
    @login_required
    @handle_domain_errors
    def material_request_processing_queue():
        return ok(
            requests=container.material_request_processing_service.processing_queue(
                actor=current_actor(), status=request.args.get("status", "OPEN")
            )
        )

    @app.route(
        "/material-requests/<int:request_id>/processing", methods=["POST"], endpoint="update_material_request_processing"
    )
    @login_required
    @handle_domain_errors
    def update_material_request_processing(request_id: int):
        data = request_data()
        try:
            status = ProcessingStatus(str(data.get("status") or "").upper())
        except ValueError:
            raise ValidationError("Processing status must be IN_PROGRESS or COMPLETED.")
        _, message = container.material_request_processing_service.update_processing_status(
            actor=current_actor(),
            request_id=request_id,
            status=status,
            served=_served_payload(data),
            purchase_order_number=data.get("purchase_order_number"),
            supplier_name=data.get("supplier_name"),
            remarks=data.get("remarks"),
        )
        return ok(message)

    @app.route("/material-requests/posting", methods=["GET"], endpoint="material_request_posting_queue")
    @login_required
    @handle_domain_errors
    def material_request_posting_queue():
        return ok(requests=container.material_request_processing_service.posting_queue(actor=current_actor()))

    @app.route("/material-requests/<int:request_id>/post", methods=["POST"], endpoint="post_material_request")
    @login_required
    @handle_domain_errors
    def post_material_request(request_id: int):
        data = request_data()
        _, message = container.material_request_processing_service.post(
            actor=current_actor(),
            request_id=request_id,
            posting_reference=data.get("posting_reference"),
            remarks=data.get("remarks"),
        )
        return ok(message)

    @app.route("/material-requests/approval-flows", methods=["GET"], endpoint="material_request_flows")
    @login_required
    @handle_domain_errors
    def material_request_flows():
        department_id = request.args.get("department_id", type=int)
        return ok(flows=container.approval_flow_service.list_flows(actor=current_actor(), department_id=department_id))

    @app.route(
        "/material-requests/approval-flows/<int:department_id>", methods=["POST"], endpoint="save_material_request_flow"
    )
    @login_required
    @handle_domain_errors
    def save_material_request_flow(department_id: int):
        data = request_data()
        try:
            required_steps = int(data.get("required_steps"))
        except (TypeError, ValueError):
            raise ValidationError("Required steps must be a number.")
        message = container.approval_flow_service.upsert(
            actor=current_actor(),
            department_id=department_id,
            required_steps=required_steps,
            approvers=parse_flow_approvers(data.get("steps") or []),
            is_active=bool(data.get("is_active", True)),
        )
        return ok(message)

    @app.route(
        "/material-requests/approval-flows/<int:department_id>/delete",
        methods=["POST"],
        endpoint="delete_material_request_flow",
    )
    @login_required
    @handle_domain_errors
    def delete_material_request_flow(department_id: int):
        return ok(container.approval_flow_service.delete(actor=current_actor(), department_id=department_id))
