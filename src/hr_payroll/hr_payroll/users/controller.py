from __future__ import annotations

from datetime import timedelta

from flask import Flask, request, session

from ..common.http import current_actor, fail, handle_domain_errors, login_required, ok, request_data, roles_required
from ..core.enums import CompanyRole
from ..core.exceptions import AuthenticationError, ValidationError
from ..container import Container


def register(app: Flask, container: Container) -> None:
    @app.route("/auth/login", methods=["POST"], endpoint="login")
    def login():
        data = request_data()
        try:
            s_user = container.auth_service.authenticate(data.get("username", ""), data.get("password", ""))
        except AuthenticationError as e:
            return fail(str(e), 401)

        session.clear()
        session.permanent = bool(data.get("remember_me"))
        app.permanent_session_lifetime = timedelta(days=int(app.config.get("SESSION_DAYS", 7)))

        session["user_id"] = s_user.user_id
        session["company_id"] = s_user.company_id
        session["company_role"] = s_user.company_role.value
        session["employee_id"] = s_user.employee_id
        session["name"] = s_user.full_name
        return ok("Signed in.", user=s_user)

    @app.route("/auth/logout", methods=["POST"], endpoint="logout")
    def logout():
        session.clear()
        return ok("Signed out.")

    @app.route("/auth/me", methods=["GET"], endpoint="me")
    @login_required
    def me():
        return ok(
            user={
                "user_id": session["user_id"],
                "company_id": session["company_id"],
                "company_role": session["company_role"],
                "employee_id": session.get("employee_id"),
                "full_name": session.get("name"),
            }
        )

    @app.route("/admin/users", methods=["GET"], endpoint="admin_users")
    @roles_required(CompanyRole.COMPANY_ADMIN)
    @handle_domain_errors
    def admin_users():
        return ok(users=container.user_service.list_admin_view(actor=current_actor()))

    @app.route("/admin/users", methods=["POST"], endpoint="add_user")
    @roles_required(CompanyRole.COMPANY_ADMIN)
    @handle_domain_errors
    def add_user():
        data = request_data()
        try:
            role = CompanyRole(str(data.get("company_role", CompanyRole.EMPLOYEE.value)))
        except ValueError:
            raise ValidationError("Invalid company role.")

        employee_id = data.get("employee_id")
        user_id = container.user_service.create_account(
            actor=current_actor(),
            full_name=data.get("full_name", ""),
            username=data.get("username", ""),
            password=data.get("password", ""),
            company_role=role,
            employee_id=int(employee_id) if employee_id not in (None, "") else None,
        )
        return ok("User account created.", 201, user_id=user_id)

    @app.route("/admin/users/<int:user_id>/active", methods=["POST"], endpoint="set_user_active")
    @roles_required(CompanyRole.COMPANY_ADMIN)
    @handle_domain_errors
    def set_user_active(user_id: int):
        is_active = str(request_data().get("is_active", "true")).lower() in {"1", "true", "yes", "on"}
        container.user_service.set_active(actor=current_actor(), user_id=user_id, is_active=is_active)
        return ok("User access updated.")
