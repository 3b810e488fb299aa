from __future__ import annotations

from dataclasses import replace

import pytest
from werkzeug.security import generate_password_hash

from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import CompanyRole
from src.hr_payroll.hr_payroll.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from src.hr_payroll.hr_payroll.users.model import User
from src.hr_payroll.hr_payroll.users.service import AuthService, UserService


class InMemoryUsers:
    def __init__(self, *users):
        self.rows = {u.user_id: u for u in users}

    def get_by_id(self, user_id):
        return self.rows.get(user_id)

    def get_by_username(self, username):
        return next((u for u in self.rows.values() if u.username == username), None)

    def get_by_employee_id(self, employee_id):
        return next((u for u in self.rows.values() if u.employee_id == employee_id), None)

    def create_user(self, *, company_id, username, full_name, password_hash, company_role, employee_id):
        user_id = max(self.rows, default=0) + 1
        self.rows[user_id] = User(user_id, company_id, username, full_name, password_hash, company_role, employee_id)
        return user_id

    def set_active(self, user_id, *, is_active):
        self.rows[user_id] = replace(self.rows[user_id], is_active=is_active)
        return True

    def list_admin_view(self, company_id):
        return [{"user_id": u.user_id} for u in self.rows.values() if u.company_id == company_id]


ADMIN = Actor(user_id=1, company_id=1, company_role=CompanyRole.COMPANY_ADMIN)
HR = Actor(user_id=2, company_id=1, company_role=CompanyRole.HR_ADMIN)


@pytest.fixture
def users():
    return InMemoryUsers(
        User(1, 1, "admin", "Company Admin", generate_password_hash("admin-pass"), CompanyRole.COMPANY_ADMIN),
        User(2, 1, "hr", "HR Admin", generate_password_hash("hr-pass-1"), CompanyRole.HR_ADMIN, employee_id=2),
        User(3, 1, "seed", "Seeded", "CHANGE_ME", CompanyRole.EMPLOYEE),
        User(4, 2, "other", "Other Company", generate_password_hash("x" * 8), CompanyRole.EMPLOYEE),
    )


def test_authenticate_returns_session_user(users):
    s_user = AuthService(users).authenticate(" hr ", "hr-pass-1")
    assert (s_user.user_id, s_user.company_role, s_user.employee_id) == (2, CompanyRole.HR_ADMIN, 2)


@pytest.mark.parametrize("username, password", [("hr", "wrong"), ("ghost", "x"), ("seed", "CHANGE_ME")])
def test_authenticate_rejects_bad_credentials(users, username, password):
    with pytest.raises(AuthenticationError, match="Invalid username or password"):
        AuthService(users).authenticate(username, password)


def test_authenticate_rejects_inactive_user(users):
    users.set_active(2, is_active=False)
    with pytest.raises(AuthenticationError):
        AuthService(users).authenticate("hr", "hr-pass-1")


def test_create_account(users):
    service = UserService(users)
    user_id = service.create_account(
        actor=ADMIN, full_name="Ana Cruz", username="ana", password="secret-123", company_role=CompanyRole.EMPLOYEE, employee_id=3
    )
    assert users.rows[user_id].employee_id == 3
    assert users.rows[user_id].password_hash != "secret-123"

    with pytest.raises(ValidationError, match="Username already exists"):
        service.create_account(actor=ADMIN, full_name="A", username="ana", password="secret-123", company_role=CompanyRole.EMPLOYEE)
    with pytest.raises(ValidationError, match="already has a user account"):
        service.create_account(
            actor=ADMIN, full_name="A", username="ana2", password="secret-123", company_role=CompanyRole.EMPLOYEE, employee_id=3
        )
    with pytest.raises(ValidationError, match="at least 8"):
        service.create_account(actor=ADMIN, full_name="A", username="ana3", password="short", company_role=CompanyRole.EMPLOYEE)
    with pytest.raises(AuthorizationError):
        service.create_account(actor=HR, full_name="A", username="ana4", password="secret-123", company_role=CompanyRole.EMPLOYEE)


def test_set_active(users):
    service = UserService(users)
    service.set_active(actor=ADMIN, user_id=2, is_active=False)
    assert users.rows[2].is_active is False

    with pytest.raises(AuthorizationError, match="your own account"):
        service.set_active(actor=ADMIN, user_id=1, is_active=False)
    with pytest.raises(NotFoundError):
        service.set_active(actor=ADMIN, user_id=4, is_active=False)
    assert [row["user_id"] for row in service.list_admin_view(actor=ADMIN)] == [1, 2, 3]
