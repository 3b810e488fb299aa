from __future__ import annotations

from flask import Flask

from ..common.datetime_utils import parse_date_field, parse_time_field
from ..common.http import current_actor, fail, handle_domain_errors, login_required, ok, request_data
from ..core.exceptions import ValidationError
from ..container import Container


def _overtime_payload(data: dict) -> dict:
    start_time = parse_time_field(data.get("start_time"), "Start time")
    end_time = parse_time_field(data.get("end_time"), "End time")
    if start_time is None or end_time is None:
        raise ValidationError("Start time and end time are required.")
    return dict(
        overtime_date=parse_date_field(data.get("overtime_date"), "Overtime date"),
        start_time=start_time,
        end_time=end_time,
        reason=data.get("reason"),
    )


def register(app: Flask, container: Container) -> None:
    @app.route("/overtime/requests", methods=["GET"], endpoint="my_overtime_requests")
    @login_required
    @handle_domain_errors
    def my_overtime_requests():
        return ok(requests=container.overtime_service.my_requests(actor=current_actor()))

    @app.route("/overtime/requests", methods=["POST"], endpoint="submit_overtime_request")
    @login_required
    @handle_domain_errors
    def submit_overtime_request():
        created = container.overtime_service.submit(actor=current_actor(), **_overtime_payload(request_data()))
        return ok(f"Overtime request {created.request_number} submitted.", 201, request=created)

    @app.route("/overtime/requests/<int:request_id>", methods=["POST"], endpoint="update_overtime_request")
    @login_required
    @handle_domain_errors
    def update_overtime_request(request_id: int):
        updated = container.overtime_service.update(
            actor=current_actor(), request_id=request_id, **_overtime_payload(request_data())
        )
        return ok(f"Overtime request {updated.request_number} updated.")

    @app.route("/overtime/requests/<int:request_id>/cancel", methods=["POST"], endpoint="cancel_overtime_request")
    @login_required
    @handle_domain_errors
    def cancel_overtime_request(request_id: int):
        req = container.overtime_service.cancel(
            actor=current_actor(), request_id=request_id, reason=request_data().get("reason")
        )
        return ok(f"Overtime request {req.request_number} cancelled.")

    @app.route("/overtime/approvals/supervisor", methods=["GET"], endpoint="overtime_supervisor_queue")
    @login_required
    @handle_domain_errors
    def overtime_supervisor_queue():
        return ok(requests=container.overtime_service.supervisor_queue(actor=current_actor()))

    @app.route("/overtime/approvals/hr", methods=["GET"], endpoint="overtime_hr_queue")
    @login_required
    @handle_domain_errors
    def overtime_hr_queue():
        return ok(requests=container.overtime_service.hr_queue(actor=current_actor()))

    @app.route(
        "/overtime/requests/<int:request_id>/<stage>/<decision>", methods=["POST"], endpoint="decide_overtime_request"
    )
    @login_required
    @handle_domain_errors
    def decide_overtime_request(request_id: int, stage: str, decision: str):
        service = container.overtime_service
        actions = {
            ("supervisor", "approve"): service.supervisor_approve,
            ("supervisor", "reject"): service.supervisor_reject,
            ("hr", "approve"): service.hr_approve,
            ("hr", "reject"): service.hr_reject,
            ("override", "approve"): service.hr_override_approve,
            ("override", "reject"): service.hr_override_reject,
        }
        action = actions.get((stage, decision))
        if action is None:
            return fail("Unknown approval action.", 404)
        result = action(actor=current_actor(), request_id=request_id, remarks=request_data().get("remarks"))
        if decision == "reject":
            return ok("Overtime request rejected.")
        if result.cto_converted_hours is not None:
            return ok(f"Overtime request approved. {result.cto_converted_hours} hour(s) credited as CTO.")
        return ok("Overtime request approved.")
