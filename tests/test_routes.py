from __future__ import annotations

from types import SimpleNamespace

import pytest

from src.hr_payroll.hr_payroll.core.enums import CompanyRole
from src.hr_payroll.hr_payroll.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from src.hr_payroll.hr_payroll.employees.bulk_csv import BulkRowError, BulkUpdateResult
from src.hr_payroll.hr_payroll.main import create_app
from src.hr_payroll.hr_payroll.users.service import SessionUser


class FakeAuth:
    def authenticate(self, username, password):
        if password != "correct-horse":
            raise AuthenticationError("Invalid username or password.")
        return SessionUser(user_id=5, company_id=1, full_name="Ana Cruz", company_role=CompanyRole.HR_ADMIN, employee_id=3)


class FakeEmployees:
    def __init__(self):
        self.calls = []

    def get_profile(self, *, actor, employee_id):
        self.calls.append(actor)
        raise NotFoundError("Employee record was not found in the selected company.")

    def update(self, *, actor, employee_id, data, reason=None):
        if "hire_date" in data:
            raise ValidationError("Hire date must be a valid date (YYYY-MM-DD).")
        return 0


class FakeBulk:
    def apply(self, *, actor, content):
        return BulkUpdateResult(
            processed_rows=2,
            updated_rows=1,
            errors=[BulkRowError(line_number=3, employee_number="EMP-0404", error='Unknown employee number "EMP-0404".')],
        )


class FakePayroll:
    def register_csv(self, *, actor, run_id):
        return f"payroll-register-RUN-2026-{run_id:05d}.csv", "Employee No.,Net Pay\nGRAND TOTAL,100.00\n"


@pytest.fixture
def container():
    return SimpleNamespace(
        auth_service=FakeAuth(),
        employee_service=FakeEmployees(),
        employee_bulk_service=FakeBulk(),
        payroll_service=FakePayroll(),
    )


@pytest.fixture
def client(monkeypatch, container):
    monkeypatch.setenv("APP_ENV", "testing")
    app = create_app(container)
    return app.test_client()


def sign_in(client, role=CompanyRole.HR_ADMIN, employee_id=3):
    with client.session_transaction() as session:
        session["user_id"] = 5
        session["company_id"] = 1
        session["company_role"] = role.value
        session["employee_id"] = employee_id


def test_login_and_me(client):
    resp = client.post("/auth/login", json={"username": "ana", "password": "nope"})
    assert resp.status_code == 401
    assert resp.get_json() == {"ok": False, "error": "Invalid username or password."}

    resp = client.post("/auth/login", json={"username": "ana", "password": "correct-horse"})
    assert resp.status_code == 200
    assert resp.get_json()["user"]["company_role"] == "HR_ADMIN"

    me = client.get("/auth/me").get_json()["user"]
    assert (me["user_id"], me["employee_id"], me["full_name"]) == (5, 3, "Ana Cruz")

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_guards_return_json_errors(client):
    assert client.get("/employees/3").get_json()["error"] == "Please sign in to continue."

    sign_in(client, role=CompanyRole.EMPLOYEE)
    resp = client.post("/employees/3", json={"position": "Lead"})
    assert resp.status_code == 403

    resp = client.get("/no-such-page")
    assert resp.status_code == 404
    assert resp.get_json()["ok"] is False


def test_domain_errors_map_to_status_codes(client, container):
    sign_in(client)
    resp = client.get("/employees/9", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest"})
    assert resp.status_code == 404
    assert "X-Request-ID" in resp.headers
    actor = container.employee_service.calls[0]
    assert (actor.ip_address, actor.user_agent, actor.employee_id) == ("203.0.113.9", "pytest", 3)

    resp = client.post("/employees/3", json={"hire_date": "yesterday"})
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Hire date must be a valid date")

    resp = client.post("/employees/3", json={"position": "Lead"})
    assert resp.get_json() == {"ok": True, "message": "No changes to save.", "changed_fields": 0}


def test_bulk_update_reports_row_errors(client):
    sign_in(client)
    resp = client.post("/employees/bulk-update", json={"csv": "employeeNumber\nEMP-0001\n"})
    body = resp.get_json()
    assert body["message"] == "Updated 1 employee(s). 1 row(s) had errors."
    assert body["result"]["errors"][0]["line_number"] == 3


def test_payroll_register_download(client):
    sign_in(client, role=CompanyRole.PAYROLL_ADMIN)
    resp = client.get("/payroll/runs/12/register.csv")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    assert resp.headers["Content-Disposition"] == "attachment; filename=payroll-register-RUN-2026-00012.csv"
    assert "GRAND TOTAL" in resp.get_data(as_text=True)
