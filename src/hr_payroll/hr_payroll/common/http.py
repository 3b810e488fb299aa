"""Shared controller helpers: session guards, actor resolution and result payloads."""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from functools import wraps
from typing import Any, Optional

from flask import jsonify, request, session

from ..core.context import Actor
from ..core.enums import CompanyRole
from ..core.exceptions import AuthenticationError, AuthorizationError, DomainError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if hasattr(value, "__dataclass_fields__"):
        return {k: to_jsonable(getattr(value, k)) for k in value.__dataclass_fields__}
    return value


def ok(message: Optional[str] = None, status: int = 200, **data: Any):
    payload: dict[str, Any] = {"ok": True}
    if message is not None:
        payload["message"] = message
    payload.update({k: to_jsonable(v) for k, v in data.items()})
    return jsonify(payload), status


def fail(error: str, status: int = 400):
    return jsonify({"ok": False, "error": error}), status


def error_status(exc: DomainError) -> int:
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, AuthorizationError):
        return 403
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    return 400


def handle_domain_errors(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except DomainError as e:
            logger.info("Action %s rejected: %s", request.endpoint, e)
            return fail(str(e), error_status(e))

    return wrapper


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if "user_id" not in session:
            return fail("Please sign in to continue.", 401)
        return view(*args, **kwargs)

    return wrapper


def roles_required(*roles: CompanyRole):
    allowed = {r.value for r in roles}

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if "user_id" not in session:
                return fail("Please sign in to continue.", 401)
            if session.get("company_role") not in allowed:
                return fail("You do not have permission to perform this action.", 403)
            return view(*args, **kwargs)

        return wrapper

    return decorator


def current_actor() -> Actor:
    ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
    if ip and "," in ip:
        ip = ip.split(",", 1)[0].strip()

    employee_id = session.get("employee_id")
    return Actor(
        user_id=int(session["user_id"]),
        company_id=int(session["company_id"]),
        company_role=CompanyRole(session["company_role"]),
        employee_id=int(employee_id) if employee_id is not None else None,
        ip_address=ip or None,
        user_agent=request.headers.get("User-Agent"),
    )


def request_data() -> dict:
    """JSON body, falling back to form fields."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def query_date(name: str) -> Optional[date]:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{name} must be a valid date (YYYY-MM-DD).")
