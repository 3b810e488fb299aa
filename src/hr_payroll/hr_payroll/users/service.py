from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from ..common.validators import require_min_length, require_non_empty
from ..core.context import Actor
from ..core.enums import CompanyRole
from ..core.exceptions import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from .repository import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionUser:
    """What we store into Flask session after login."""

    user_id: int
    company_id: int
    full_name: str
    company_role: CompanyRole
    employee_id: Optional[int]


class AuthService:
    """Use case: authenticate user (login)."""

    def __init__(self, users: UserRepository):
        self._users = users

    def authenticate(self, username: str, password: str) -> SessionUser:
        user = self._users.get_by_username((username or "").strip())
        if not user or not user.is_active:
            raise AuthenticationError("Invalid username or password.")

        try:
            ok = check_password_hash(user.password_hash, password or "")
        except ValueError:
            # placeholder hashes like 'CHANGE_ME' in seed data
            ok = False

        if not ok:
            logger.info("Failed login for username=%s", user.username)
            raise AuthenticationError("Invalid username or password.")

        return SessionUser(
            user_id=user.user_id,
            company_id=user.company_id,
            full_name=user.full_name,
            company_role=user.company_role,
            employee_id=user.employee_id,
        )


class UserService:
    """Use case: manage user access (company admin)."""

    def __init__(self, users: UserRepository):
        self._users = users

    def create_account(
        self,
        *,
        actor: Actor,
        full_name: str,
        username: str,
        password: str,
        company_role: CompanyRole,
        employee_id: Optional[int] = None,
    ) -> int:
        actor.require_role({CompanyRole.COMPANY_ADMIN}, "Only Company Admin can manage user access.")
        full_name = require_non_empty(full_name, "Full name")
        username = require_non_empty(username, "Username")
        require_min_length(password, "Password", 8)

        if self._users.get_by_username(username):
            raise ValidationError("Username already exists.")
        if employee_id is not None and self._users.get_by_employee_id(int(employee_id)):
            raise ValidationError("This employee already has a user account.")

        user_id = self._users.create_user(
            company_id=actor.company_id,
            username=username,
            full_name=full_name,
            password_hash=generate_password_hash(password),
            company_role=company_role,
            employee_id=int(employee_id) if employee_id is not None else None,
        )
        logger.info("User %s created by user_id=%s role=%s", username, actor.user_id, company_role.value)
        return user_id

    def list_admin_view(self, *, actor: Actor):
        actor.require_role({CompanyRole.COMPANY_ADMIN}, "Only Company Admin can manage user access.")
        return self._users.list_admin_view(actor.company_id)

    def set_active(self, *, actor: Actor, user_id: int, is_active: bool) -> None:
        actor.require_role({CompanyRole.COMPANY_ADMIN}, "Only Company Admin can manage user access.")
        user = self._users.get_by_id(int(user_id))
        if not user or user.company_id != actor.company_id:
            raise NotFoundError("User not found.")
        if user.user_id == actor.user_id and not is_active:
            raise AuthorizationError("You cannot deactivate your own account.")
        if not self._users.set_active(user.user_id, is_active=is_active):
            raise ValidationError("Failed to update user access.")
