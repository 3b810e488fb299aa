from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.audit.model import AuditChange
from src.hr_payroll.hr_payroll.audit.service import AuditService, stringify_audit_value
from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import AuditAction, CompanyRole, PayFrequency
from src.hr_payroll.hr_payroll.core.exceptions import AuthorizationError


class InMemoryAudit:
    def __init__(self):
        self.rows = []

    def insert_rows(self, rows):
        self.rows.extend(rows)

    def list_logs(self, *, company_id, table_name=None, record_id=None, limit=200):
        rows = [r for r in self.rows if r.company_id == company_id and (table_name is None or r.table_name == table_name)]
        return rows[:limit]


ADMIN = Actor(user_id=1, company_id=1, company_role=CompanyRole.COMPANY_ADMIN, ip_address="10.0.0.5", user_agent="pytest")


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        (True, "true"),
        (PayFrequency.MONTHLY, "MONTHLY"),
        (Decimal("12.50"), "12.50"),
        (7, "7"),
        (date(2026, 10, 1), "2026-10-01"),
        ({"b": 1, "a": [2]}, '{"a": [2], "b": 1}'),
    ],
)
def test_stringify_audit_value(value, expected):
    assert stringify_audit_value(value) == expected


def test_record_writes_one_row_per_change():
    repo = InMemoryAudit()
    count = AuditService(repo).record(
        actor=ADMIN,
        table_name="employees",
        record_id=7,
        action=AuditAction.UPDATE,
        reason="Promotion",
        changes=[AuditChange("position", "Clerk", "Lead"), AuditChange("monthly_salary", Decimal("20000"), Decimal("25000"))],
    )
    assert count == 2
    assert [(r.field_name, r.old_value, r.new_value) for r in repo.rows] == [
        ("position", "Clerk", "Lead"),
        ("monthly_salary", "20000", "25000"),
    ]
    assert {(r.record_id, r.ip_address, r.user_agent) for r in repo.rows} == {("7", "10.0.0.5", "pytest")}


def test_record_without_changes_writes_marker_row():
    repo = InMemoryAudit()
    AuditService(repo).record(actor=ADMIN, table_name="payroll_runs", record_id=3, action=AuditAction.DELETE)
    assert len(repo.rows) == 1
    assert repo.rows[0].field_name is None


def test_list_logs_requires_company_admin():
    repo = InMemoryAudit()
    service = AuditService(repo)
    service.record(actor=ADMIN, table_name="employees", record_id=1, action=AuditAction.CREATE)
    assert len(service.list_logs(actor=ADMIN, table_name="employees")) == 1
    with pytest.raises(AuthorizationError):
        service.list_logs(actor=Actor(user_id=2, company_id=1, company_role=CompanyRole.HR_ADMIN))
