from __future__ import annotations

from flask import Flask, request

from ..common.http import current_actor, handle_domain_errors, login_required, ok
from ..core.constants import DEFAULT_LIST_LIMIT
from ..container import Container


def register(app: Flask, container: Container) -> None:
    @app.route("/admin/audit-logs", methods=["GET"], endpoint="audit_logs")
    @login_required
    @handle_domain_errors
    def audit_logs():
        logs = container.audit_service.list_logs(
            actor=current_actor(),
            table_name=(request.args.get("table_name") or "").strip() or None,
            record_id=(request.args.get("record_id") or "").strip() or None,
            limit=min(request.args.get("limit", default=DEFAULT_LIST_LIMIT, type=int), 1000),
        )
        return ok(logs=logs)
