from __future__ import annotations

from flask import Flask, Response

from ..common.datetime_utils import parse_date_field
from ..common.http import current_actor, handle_domain_errors, login_required, ok, query_date, request_data, roles_required
from ..core.enums import CompanyRole
from ..core.exceptions import ValidationError
from ..container import Container


def _required_range():
    start = query_date("start")
    end = query_date("end")
    if not start or not end:
        raise ValidationError("start and end dates are required.")
    return start, end


def register(app: Flask, container: Container) -> None:
    @app.route("/attendance/dtr", methods=["POST"], endpoint="dtr_update")
    @roles_required(CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN)
    @handle_domain_errors
    def dtr_update():
        data = request_data()
        try:
            employee_id = int(data.get("employee_id"))
        except (TypeError, ValueError):
            raise ValidationError("Employee is required.")

        created = container.attendance_service.update_dtr(
            actor=current_actor(),
            employee_id=employee_id,
            attendance_date=parse_date_field(data.get("attendance_date"), "Attendance date"),
            attendance_status=data.get("attendance_status", ""),
            time_in=data.get("time_in"),
            time_out=data.get("time_out"),
            remarks=data.get("remarks"),
            leave_type_id=data.get("leave_type_id"),
            day_fraction=data.get("day_fraction"),
        )
        return ok("DTR record created." if created else "DTR record updated.")

    @app.route("/attendance/dtr/<int:employee_id>", methods=["GET"], endpoint="dtr_logs")
    @login_required
    @handle_domain_errors
    def dtr_logs(employee_id: int):
        start, end = _required_range()
        rows = container.attendance_service.get_logs(actor=current_actor(), employee_id=employee_id, start=start, end=end)
        return ok(rows=rows)

    @app.route("/attendance/dtr/export", methods=["GET"], endpoint="dtr_export")
    @roles_required(CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN)
    @handle_domain_errors
    def dtr_export():
        start, end = _required_range()
        content = container.attendance_service.export_csv(actor=current_actor(), start=start, end=end)
        filename = f"dtr-{start.isoformat()}-to-{end.isoformat()}.csv"
        return Response(content, mimetype="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})

    @app.route("/attendance/schedules", methods=["GET"], endpoint="work_schedules")
    @login_required
    @handle_domain_errors
    def work_schedules():
        return ok(schedules=container.attendance_service.list_schedules(actor=current_actor()))
