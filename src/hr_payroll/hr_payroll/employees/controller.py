from __future__ import annotations

from flask import Flask, Response, request

from ..common.http import current_actor, handle_domain_errors, login_required, ok, request_data, roles_required
from ..core.enums import CompanyRole
from ..core.exceptions import ValidationError
from ..container import Container

_MANAGERS = (CompanyRole.COMPANY_ADMIN, CompanyRole.HR_ADMIN)


def register(app: Flask, container: Container) -> None:
    @app.route("/employees", methods=["GET"], endpoint="employee_masterlist")
    @roles_required(*_MANAGERS)
    @handle_domain_errors
    def employee_masterlist():
        department_id = request.args.get("department_id", type=int)
        result = container.employee_service.masterlist(
            actor=current_actor(),
            search=request.args.get("q", ""),
            department_id=department_id,
            include_inactive=request.args.get("include_inactive", "0") in {"1", "true", "yes"},
            page=request.args.get("page", 1, type=int),
            page_size=request.args.get("page_size", 25, type=int),
        )
        return ok(**result)

    @app.route("/employees", methods=["POST"], endpoint="employee_create")
    @roles_required(*_MANAGERS)
    @handle_domain_errors
    def employee_create():
        employee_id = container.employee_service.create(actor=current_actor(), data=request_data())
        return ok("Employee created successfully.", 201, employee_id=employee_id)

    @app.route("/employees/<int:employee_id>", methods=["GET"], endpoint="employee_profile")
    @login_required
    @handle_domain_errors
    def employee_profile(employee_id: int):
        return ok(employee=container.employee_service.get_profile(actor=current_actor(), employee_id=employee_id))

    @app.route("/employees/<int:employee_id>", methods=["POST"], endpoint="employee_update")
    @roles_required(*_MANAGERS)
    @handle_domain_errors
    def employee_update(employee_id: int):
        data = request_data()
        reason = data.pop("reason", None)
        changed = container.employee_service.update(
            actor=current_actor(), employee_id=employee_id, data=data, reason=reason
        )
        if not changed:
            return ok("No changes to save.", changed_fields=0)
        return ok("Employee profile updated.", changed_fields=changed)

    @app.route("/employees/<int:employee_id>/delete", methods=["POST"], endpoint="employee_delete")
    @login_required
    @handle_domain_errors
    def employee_delete(employee_id: int):
        container.employee_service.delete(actor=current_actor(), employee_id=employee_id)
        return ok("Employee deleted successfully.")

    @app.route("/employees/<int:employee_id>/restore", methods=["POST"], endpoint="employee_restore")
    @login_required
    @handle_domain_errors
    def employee_restore(employee_id: int):
        container.employee_service.restore(actor=current_actor(), employee_id=employee_id)
        return ok("Employee restored successfully.")

    @app.route("/departments", methods=["GET"], endpoint="department_list")
    @login_required
    @handle_domain_errors
    def department_list():
        return ok(departments=container.employee_service.list_departments(actor=current_actor()))

    @app.route("/employees/bulk-update/template", methods=["GET"], endpoint="employee_bulk_template")
    @roles_required(*_MANAGERS)
    def employee_bulk_template():
        return Response(
            container.employee_bulk_service.template(),
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=employee-bulk-update-template.csv"},
        )

    @app.route("/employees/bulk-update", methods=["POST"], endpoint="employee_bulk_update")
    @roles_required(*_MANAGERS)
    @handle_domain_errors
    def employee_bulk_update():
        upload = request.files.get("file")
        if upload is not None:
            content = upload.read().decode("utf-8-sig", errors="replace")
        else:
            content = request_data().get("csv", "")
        if not isinstance(content, str):
            raise ValidationError("CSV content must be text.")

        result = container.employee_bulk_service.apply(actor=current_actor(), content=content)
        message = f"Updated {result.updated_rows} employee(s)."
        if result.errors:
            message += f" {len(result.errors)} row(s) had errors."
        return ok(message, result=result)
