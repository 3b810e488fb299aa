from __future__ import annotations

from typing import List

from flask import Flask, Response, request

from ..common.datetime_utils import now_local
from ..common.http import current_actor, fail, handle_domain_errors, login_required, ok, request_data
from ..core.enums import LineCategory, PayrollRunType
from ..core.exceptions import ValidationError
from ..container import Container


def _id_list(value) -> List[int]:
    if value in (None, ""):
        return []
    if isinstance(value, str):
        value = [v for v in value.split(",") if v.strip()]
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError):
        raise ValidationError("Identifiers must be numbers.")


def _enum(enum_cls, value, message: str):
    try:
        return enum_cls(str(value or "").strip().upper())
    except ValueError:
        raise ValidationError(message)


def register(app: Flask, container: Container) -> None:
    @app.route("/payroll/periods", methods=["GET"], endpoint="payroll_periods")
    @login_required
    @handle_domain_errors
    def payroll_periods():
        year = request.args.get("year", type=int) or now_local().year
        return ok(periods=container.payroll_service.list_periods(actor=current_actor(), year=year))

    @app.route("/payroll/runs", methods=["GET"], endpoint="payroll_runs")
    @login_required
    @handle_domain_errors
    def payroll_runs():
        return ok(runs=container.payroll_service.list_runs(actor=current_actor()))

    @app.route("/payroll/runs", methods=["POST"], endpoint="create_payroll_run")
    @login_required
    @handle_domain_errors
    def create_payroll_run():
        data = request_data()
        period_ids = _id_list([data.get("period_id")] if data.get("period_id") else [])
        if not period_ids:
            return fail("Pay period is required.", 400)
        run, message = container.payroll_service.create_run(
            actor=current_actor(),
            period_id=period_ids[0],
            run_type=_enum(PayrollRunType, data.get("run_type") or "REGULAR", "Unknown payroll run type."),
            department_ids=_id_list(data.get("department_ids")),
            employee_ids=_id_list(data.get("employee_ids")),
        )
        return ok(message, 201, run=run)

    @app.route("/payroll/runs/<int:run_id>", methods=["GET"], endpoint="payroll_run_detail")
    @login_required
    @handle_domain_errors
    def payroll_run_detail(run_id: int):
        run, steps, payslips = container.payroll_service.run_detail(actor=current_actor(), run_id=run_id)
        return ok(run=run, steps=steps, payslips=payslips)

    @app.route("/payroll/runs/<int:run_id>/<action>", methods=["POST"], endpoint="payroll_run_action")
    @login_required
    @handle_domain_errors
    def payroll_run_action(run_id: int, action: str):
        service = container.payroll_service
        actions = {
            "proceed-to-calculate": service.proceed_to_calculate,
            "calculate": service.calculate,
            "proceed-to-review": service.proceed_to_review,
            "complete-review": service.complete_review,
            "generate-payslips": service.generate_payslips,
            "proceed-to-close": service.proceed_to_close,
            "close": service.close,
            "reopen": service.reopen,
        }
        actor = current_actor()
        if action == "validate":
            run, message, warnings = service.validate(actor=actor, run_id=run_id)
            return ok(message, run=run, warnings=warnings)
        handler = actions.get(action)
        if handler is None:
            return fail("Unknown payroll action.", 404)
        run, message = handler(actor=actor, run_id=run_id)
        return ok(message, run=run)

    @app.route(
        "/payroll/runs/<int:run_id>/payslips/<int:payslip_id>/adjustments",
        methods=["POST"],
        endpoint="add_payroll_adjustment",
    )
    @login_required
    @handle_domain_errors
    def add_payroll_adjustment(run_id: int, payslip_id: int):
        data = request_data()
        payslip, message = container.payroll_service.add_adjustment(
            actor=current_actor(),
            run_id=run_id,
            payslip_id=payslip_id,
            category=_enum(LineCategory, data.get("category"), "Adjustment type must be EARNING or DEDUCTION."),
            name=data.get("name"),
            amount=data.get("amount"),
            description=data.get("description"),
            is_taxable=str(data.get("is_taxable") or "").lower() in ("1", "true", "on", "yes"),
        )
        return ok(message, payslip=payslip)

    @app.route(
        "/payroll/runs/<int:run_id>/payslips/<int:payslip_id>/adjustments/<int:line_id>/delete",
        methods=["POST"],
        endpoint="remove_payroll_adjustment",
    )
    @login_required
    @handle_domain_errors
    def remove_payroll_adjustment(run_id: int, payslip_id: int, line_id: int):
        payslip, message = container.payroll_service.remove_adjustment(
            actor=current_actor(), run_id=run_id, payslip_id=payslip_id, line_id=line_id
        )
        return ok(message, payslip=payslip)

    @app.route("/payroll/runs/<int:run_id>/register.csv", methods=["GET"], endpoint="payroll_register_csv")
    @login_required
    @handle_domain_errors
    def payroll_register_csv(run_id: int):
        filename, content = container.payroll_service.register_csv(actor=current_actor(), run_id=run_id)
        return Response(content, mimetype="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})

    @app.route("/payroll/my-payslips", methods=["GET"], endpoint="my_payslips")
    @login_required
    @handle_domain_errors
    def my_payslips():
        return ok(payslips=container.payroll_service.my_payslips(actor=current_actor()))

    @app.route("/payroll/my-payslips/<int:payslip_id>", methods=["GET"], endpoint="my_payslip_detail")
    @login_required
    @handle_domain_errors
    def my_payslip_detail(payslip_id: int):
        return ok(payslip=container.payroll_service.my_payslip(actor=current_actor(), payslip_id=payslip_id))
