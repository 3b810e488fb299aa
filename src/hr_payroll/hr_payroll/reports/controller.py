from __future__ import annotations

from flask import Flask, Response, request

from ..common.datetime_utils import parse_date_field
from ..common.http import current_actor, handle_domain_errors, login_required, ok
from ..container import Container


def _flag(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "on", "yes")


def register(app: Flask, container: Container) -> None:
    @app.route("/reports/late-overtime", methods=["GET"], endpoint="late_overtime_report")
    @login_required
    @handle_domain_errors
    def late_overtime_report():
        report = container.report_service.late_overtime(
            actor=current_actor(),
            start=parse_date_field(request.args.get("start"), "Start date"),
            end=parse_date_field(request.args.get("end"), "End date"),
            include_trial_runs=_flag(request.args.get("include_trial_runs")),
            top=request.args.get("top", default=10, type=int),
        )
        return ok(report=report)

    @app.route("/reports/late-overtime.csv", methods=["GET"], endpoint="late_overtime_report_csv")
    @login_required
    @handle_domain_errors
    def late_overtime_report_csv():
        start = parse_date_field(request.args.get("start"), "Start date")
        end = parse_date_field(request.args.get("end"), "End date")
        content = container.report_service.late_overtime_csv(
            actor=current_actor(), start=start, end=end, include_trial_runs=_flag(request.args.get("include_trial_runs"))
        )
        filename = f"late-overtime-{start.isoformat()}-to-{end.isoformat()}.csv"
        return Response(content, mimetype="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
