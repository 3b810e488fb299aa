from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.audit.service import AuditService
from src.hr_payroll.hr_payroll.core.context import Actor
from src.hr_payroll.hr_payroll.core.enums import CompanyRole, RequestStatus
from src.hr_payroll.hr_payroll.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from src.hr_payroll.hr_payroll.employees.model import Employee
from src.hr_payroll.hr_payroll.leave.ledger import LeaveLedger
from src.hr_payroll.hr_payroll.leave.model import LeaveBalance, LeaveType
from src.hr_payroll.hr_payroll.leave.service import LeaveRequestService

D = Decimal

VL = LeaveType(leave_type_id=1, company_id=1, code="VL", name="Vacation Leave")
EL = LeaveType(leave_type_id=2, company_id=1, code="EL", name="Emergency Leave")
LWOP = LeaveType(leave_type_id=3, company_id=None, code="LWOP", name="Leave Without Pay", is_paid=False)
RETIRED = LeaveType(leave_type_id=4, company_id=1, code="OLD", name="Old Leave", is_active=False)


class InMemoryLeaveTypes:
    def __init__(self, *types):
        self.types = {t.leave_type_id: t for t in types}

    def list_for_company(self, company_id, *, active_only=True):
        return [t for t in self.types.values() if t.is_active or not active_only]

    def get_by_id(self, *, company_id, leave_type_id):
        return self.types.get(leave_type_id)


class InMemoryBalances:
    def __init__(self, *balances):
        self.balances = {(b.employee_id, b.leave_type_id, b.year): b for b in balances}
        self.transactions = []

    def get(self, *, employee_id, leave_type_id, year):
        return self.balances.get((employee_id, leave_type_id, year))

    def save_amounts(self, balance):
        self.balances[(balance.employee_id, balance.leave_type_id, balance.year)] = balance

    def add_transaction(self, tx):
        self.transactions.append(tx)
        return len(self.transactions)


class InMemoryRequests:
    def __init__(self):
        self.rows = {}

    def number_exists(self, request_number):
        return any(r.request_number == request_number for r in self.rows.values())

    def create(self, request):
        request_id = len(self.rows) + 1
        self.rows[request_id] = replace(request, request_id=request_id)
        return request_id

    def get_by_id(self, *, company_id, request_id):
        return self.rows.get(request_id)

    def update(self, *, request_id, fields):
        self.rows[request_id] = replace(self.rows[request_id], **fields)

    def list_for_employee(self, employee_id, *, limit=200):
        return [{"request_id": r.request_id} for r in self.rows.values() if r.employee_id == employee_id]

    def list_queue(self, *, company_id, status, supervisor_id=None, limit=200):
        return [
            {"request_id": r.request_id}
            for r in self.rows.values()
            if r.status == status and (supervisor_id is None or r.supervisor_approver_id == supervisor_id)
        ]


class InMemoryEmployees:
    def __init__(self, *employees):
        self.employees = {e.employee_id: e for e in employees}

    def get_by_id(self, *, company_id, employee_id, include_deleted=False):
        return self.employees.get(employee_id)


class InMemoryAudit:
    def __init__(self):
        self.rows = []

    def insert_rows(self, rows):
        self.rows.extend(rows)


EMPLOYEE = Actor(user_id=4, company_id=1, company_role=CompanyRole.EMPLOYEE, employee_id=10)
SUPERVISOR = Actor(user_id=5, company_id=1, company_role=CompanyRole.EMPLOYEE, employee_id=20)
HR = Actor(user_id=2, company_id=1, company_role=CompanyRole.HR_ADMIN)


def _numbers():
    counter = iter(range(1, 1000))
    return lambda prefix, exists, today: f"{prefix}-{today:%Y%m%d}-{next(counter):06d}"


@pytest.fixture
def staff():
    return InMemoryEmployees(
        Employee(10, 1, "EMP-0010", "Ana", "Cruz", date(2020, 1, 6), reporting_manager_id=20),
        Employee(20, 1, "EMP-0020", "Ben", "Reyes", date(2018, 1, 8)),
    )


@pytest.fixture
def env(staff):
    balances = InMemoryBalances(
        LeaveBalance(balance_id=1, employee_id=10, leave_type_id=1, year=2026, current_balance=D("5"), available_balance=D("5"))
    )
    requests = InMemoryRequests()
    service = LeaveRequestService(
        requests,
        InMemoryLeaveTypes(VL, EL, LWOP, RETIRED),
        staff,
        LeaveLedger(balances),
        AuditService(InMemoryAudit()),
        number_generator=_numbers(),
    )
    return service, requests, balances


def _vl_balance(balances):
    return balances.get(employee_id=10, leave_type_id=1, year=2026)


def test_compute_days():
    compute = LeaveRequestService.compute_days
    assert compute(start_date=date(2026, 10, 5), end_date=date(2026, 10, 7), is_half_day=False, half_day_period=None) == 3
    assert compute(start_date=date(2026, 10, 5), end_date=date(2026, 10, 5), is_half_day=True, half_day_period="am") == D("0.5")
    with pytest.raises(ValidationError, match="same date"):
        compute(start_date=date(2026, 10, 5), end_date=date(2026, 10, 6), is_half_day=True, half_day_period="AM")
    with pytest.raises(ValidationError, match="AM or PM"):
        compute(start_date=date(2026, 10, 5), end_date=date(2026, 10, 5), is_half_day=True, half_day_period=None)
    with pytest.raises(ValidationError, match="Cross-year"):
        compute(start_date=date(2026, 12, 30), end_date=date(2027, 1, 2), is_half_day=False, half_day_period=None)
    with pytest.raises(ValidationError, match="on or after"):
        compute(start_date=date(2026, 10, 5), end_date=date(2026, 10, 4), is_half_day=False, half_day_period=None)


def test_submit_reserves_balance_and_routes_to_supervisor(env):
    service, _, balances = env
    req = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 7))

    assert req.status == RequestStatus.PENDING
    assert req.number_of_days == 3
    assert req.supervisor_approver_id == 20
    assert req.request_number.startswith("LR-")
    assert _vl_balance(balances).pending_requests == D("3.00")
    assert _vl_balance(balances).available_balance == D("2.00")


def test_emergency_leave_draws_from_vacation_balance(env):
    service, _, balances = env
    service.submit(actor=EMPLOYEE, leave_type_id=2, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))
    assert _vl_balance(balances).pending_requests == D("1.00")


def test_unpaid_leave_does_not_touch_balances(env):
    service, _, balances = env
    service.submit(actor=EMPLOYEE, leave_type_id=3, start_date=date(2026, 10, 5), end_date=date(2026, 10, 20))
    assert balances.transactions == []


def test_submit_rejections(env):
    service, _, _ = env
    with pytest.raises(ValidationError, match="Insufficient leave balance"):
        service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 12))
    with pytest.raises(ValidationError, match="not available"):
        service.submit(actor=EMPLOYEE, leave_type_id=4, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))
    with pytest.raises(AuthorizationError, match="Only employees can file"):
        service.submit(actor=HR, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))


def test_two_step_approval_consumes_balance(env):
    service, requests, balances = env
    req = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 6))

    with pytest.raises(NotFoundError, match="no longer eligible"):
        service.hr_approve(actor=HR, request_id=req.request_id)

    service.supervisor_approve(actor=SUPERVISOR, request_id=req.request_id, remarks="ok")
    assert requests.rows[req.request_id].status == RequestStatus.SUPERVISOR_APPROVED
    assert service.hr_queue(actor=HR) == [{"request_id": req.request_id}]

    approved = service.hr_approve(actor=HR, request_id=req.request_id)
    assert approved.status == RequestStatus.APPROVED
    balance = _vl_balance(balances)
    assert balance.current_balance == D("3.00")
    assert balance.credits_used == D("2.00")
    assert balance.pending_requests == D("0.00")


def test_only_assigned_supervisor_can_decide(env):
    service, _, _ = env
    req = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))
    stranger = replace(SUPERVISOR, employee_id=30)
    with pytest.raises(NotFoundError):
        service.supervisor_approve(actor=stranger, request_id=req.request_id)
    with pytest.raises(AuthorizationError):
        service.hr_queue(actor=EMPLOYEE)


def test_rejections_release_reserved_days(env):
    service, requests, balances = env
    first = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))
    second = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 8), end_date=date(2026, 10, 8))

    service.supervisor_reject(actor=SUPERVISOR, request_id=first.request_id)
    service.supervisor_approve(actor=SUPERVISOR, request_id=second.request_id)
    service.hr_reject(actor=HR, request_id=second.request_id, remarks="Peak season")

    assert requests.rows[first.request_id].rejection_reason == "Rejected by supervisor"
    assert requests.rows[second.request_id].rejection_reason == "Peak season"
    assert _vl_balance(balances).available_balance == D("5.00")


def test_cancel_and_update_pending_request(env):
    service, requests, balances = env
    req = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))

    updated = service.update(
        actor=EMPLOYEE,
        request_id=req.request_id,
        leave_type_id=1,
        start_date=date(2026, 10, 5),
        end_date=date(2026, 10, 8),
    )
    assert updated.number_of_days == 4
    assert _vl_balance(balances).pending_requests == D("4.00")

    cancelled = service.cancel(actor=EMPLOYEE, request_id=req.request_id)
    assert cancelled.status == RequestStatus.CANCELLED
    assert cancelled.cancellation_reason == "Cancelled by employee"
    assert _vl_balance(balances).available_balance == D("5.00")

    with pytest.raises(ValidationError, match="Only pending leave requests can be cancelled."):
        service.cancel(actor=EMPLOYEE, request_id=req.request_id)


def test_update_routes_to_current_reporting_manager(env, staff):
    service, requests, _ = env
    req = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))
    staff.employees[10] = replace(staff.employees[10], reporting_manager_id=30)

    updated = service.update(
        actor=EMPLOYEE, request_id=req.request_id, leave_type_id=1, start_date=date(2026, 10, 6), end_date=date(2026, 10, 6)
    )
    assert updated.supervisor_approver_id == 30
    assert requests.rows[req.request_id].supervisor_approver_id == 30
    with pytest.raises(NotFoundError):
        service.supervisor_approve(actor=SUPERVISOR, request_id=req.request_id)

    # no manager on file keeps the previous approver
    staff.employees[10] = replace(staff.employees[10], reporting_manager_id=None)
    kept = service.update(
        actor=EMPLOYEE, request_id=req.request_id, leave_type_id=1, start_date=date(2026, 10, 7), end_date=date(2026, 10, 7)
    )
    assert kept.supervisor_approver_id == 30


def test_hr_override_approves_pending_request(env):
    service, requests, balances = env
    req = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 6))

    approved = service.hr_override_approve(actor=HR, request_id=req.request_id, remarks="Supervisor on leave")

    assert approved.status == RequestStatus.APPROVED
    row = requests.rows[req.request_id]
    assert row.status == RequestStatus.APPROVED
    assert row.supervisor_approver_id == 20
    assert row.supervisor_remarks == "HR supervisor-stage override for approval: Supervisor on leave"
    assert row.hr_remarks == "HR final approval via supervisor override: Supervisor on leave"
    assert row.hr_decided_by == HR.user_id
    balance = _vl_balance(balances)
    assert balance.current_balance == D("3.00")
    assert balance.pending_requests == D("0.00")


def test_hr_override_rejects_request_without_supervisor(env):
    service, requests, _ = env
    req = service.submit(actor=SUPERVISOR, leave_type_id=3, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))
    assert req.supervisor_approver_id is None
    hr_with_profile = replace(HR, employee_id=7)

    rejected = service.hr_override_reject(actor=hr_with_profile, request_id=req.request_id, remarks="Coverage gap")

    row = requests.rows[req.request_id]
    assert rejected.status == RequestStatus.REJECTED
    assert row.supervisor_approver_id == 7
    assert row.rejection_reason == "HR final rejection via supervisor override: Coverage gap"


def test_hr_override_guards(env):
    service, _, _ = env
    req = service.submit(actor=EMPLOYEE, leave_type_id=1, start_date=date(2026, 10, 5), end_date=date(2026, 10, 5))

    with pytest.raises(AuthorizationError, match="override approvals"):
        service.hr_override_approve(actor=SUPERVISOR, request_id=req.request_id, remarks="ok")
    with pytest.raises(ValidationError, match="Override remarks is required"):
        service.hr_override_approve(actor=HR, request_id=req.request_id, remarks="  ")
    with pytest.raises(NotFoundError):
        service.hr_override_approve(actor=HR, request_id=999, remarks="ok")

    service.hr_override_approve(actor=HR, request_id=req.request_id, remarks="ok")
    with pytest.raises(ValidationError, match="cannot be override-rejected"):
        service.hr_override_reject(actor=HR, request_id=req.request_id, remarks="late")
