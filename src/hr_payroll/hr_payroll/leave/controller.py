from __future__ import annotations

from flask import Flask, request

from ..common.datetime_utils import now_local, parse_date_field
from ..common.http import current_actor, fail, handle_domain_errors, login_required, ok, request_data, roles_required
from ..core.enums import CompanyRole
from ..core.exceptions import ValidationError
from ..container import Container


def _truthy(value) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _leave_payload(data: dict) -> dict:
    try:
        leave_type_id = int(data.get("leave_type_id"))
    except (TypeError, ValueError):
        raise ValidationError("Leave type is required.")
    return dict(
        leave_type_id=leave_type_id,
        start_date=parse_date_field(data.get("start_date"), "Start date"),
        end_date=parse_date_field(data.get("end_date"), "End date"),
        is_half_day=_truthy(data.get("is_half_day", False)),
        half_day_period=data.get("half_day_period"),
        reason=data.get("reason"),
    )


def register(app: Flask, container: Container) -> None:
    @app.route("/leave/requests", methods=["GET"], endpoint="my_leave_requests")
    @login_required
    @handle_domain_errors
    def my_leave_requests():
        return ok(requests=container.leave_request_service.my_requests(actor=current_actor()))

    @app.route("/leave/requests", methods=["POST"], endpoint="submit_leave_request")
    @login_required
    @handle_domain_errors
    def submit_leave_request():
        created = container.leave_request_service.submit(actor=current_actor(), **_leave_payload(request_data()))
        return ok(f"Leave request {created.request_number} submitted.", 201, request=created)

    @app.route("/leave/requests/<int:request_id>", methods=["POST"], endpoint="update_leave_request")
    @login_required
    @handle_domain_errors
    def update_leave_request(request_id: int):
        updated = container.leave_request_service.update(
            actor=current_actor(), request_id=request_id, **_leave_payload(request_data())
        )
        return ok(f"Leave request {updated.request_number} updated.")

    @app.route("/leave/requests/<int:request_id>/cancel", methods=["POST"], endpoint="cancel_leave_request")
    @login_required
    @handle_domain_errors
    def cancel_leave_request(request_id: int):
        req = container.leave_request_service.cancel(
            actor=current_actor(), request_id=request_id, reason=request_data().get("reason")
        )
        return ok(f"Leave request {req.request_number} cancelled.")

    @app.route("/leave/approvals/supervisor", methods=["GET"], endpoint="leave_supervisor_queue")
    @login_required
    @handle_domain_errors
    def leave_supervisor_queue():
        return ok(requests=container.leave_request_service.supervisor_queue(actor=current_actor()))

    @app.route("/leave/approvals/hr", methods=["GET"], endpoint="leave_hr_queue")
    @login_required
    @handle_domain_errors
    def leave_hr_queue():
        return ok(requests=container.leave_request_service.hr_queue(actor=current_actor()))

    @app.route("/leave/requests/<int:request_id>/<stage>/<decision>", methods=["POST"], endpoint="decide_leave_request")
    @login_required
    @handle_domain_errors
    def decide_leave_request(request_id: int, stage: str, decision: str):
        actions = {
            ("supervisor", "approve"): container.leave_request_service.supervisor_approve,
            ("supervisor", "reject"): container.leave_request_service.supervisor_reject,
            ("hr", "approve"): container.leave_request_service.hr_approve,
            ("hr", "reject"): container.leave_request_service.hr_reject,
            ("override", "approve"): container.leave_request_service.hr_override_approve,
            ("override", "reject"): container.leave_request_service.hr_override_reject,
        }
        action = actions.get((stage, decision))
        if action is None:
            return fail("Unknown approval action.", 404)
        action(actor=current_actor(), request_id=request_id, remarks=request_data().get("remarks"))
        return ok("Leave request approved." if decision == "approve" else "Leave request rejected.")

    @app.route("/leave/balances", methods=["GET"], endpoint="my_leave_balances")
    @login_required
    @handle_domain_errors
    def my_leave_balances():
        year = request.args.get("year", now_local().year, type=int)
        return ok(balances=container.leave_balance_service.my_balances(actor=current_actor(), year=year))

    @app.route("/leave/balances/<int:balance_id>/history", methods=["GET"], endpoint="leave_balance_history")
    @login_required
    @handle_domain_errors
    def leave_balance_history(balance_id: int):
        return ok(transactions=container.leave_balance_service.balance_history(actor=current_actor(), balance_id=balance_id))

    @app.route("/leave/balances/initialize", methods=["POST"], endpoint="initialize_leave_balances")
    @roles_required(CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN)
    @handle_domain_errors
    def initialize_leave_balances():
        try:
            year = int(request_data().get("year", now_local().year))
        except (TypeError, ValueError):
            raise ValidationError("Year must be a number.")
        stats, message = container.leave_balance_service.initialize_year(actor=current_actor(), year=year)
        return ok(message, stats=stats)

    @app.route("/leave/balances/report", methods=["GET"], endpoint="leave_summary_report")
    @login_required
    @handle_domain_errors
    def leave_summary_report():
        year = request.args.get("year", now_local().year, type=int)
        return ok(report=container.leave_balance_service.summary_report(actor=current_actor(), year=year))
