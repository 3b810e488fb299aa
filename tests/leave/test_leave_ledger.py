from dataclasses import replace
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.core.enums import LeaveTransactionType
from src.hr_payroll.hr_payroll.core.exceptions import ValidationError
from src.hr_payroll.hr_payroll.leave.ledger import LeaveLedger, LedgerReference
from src.hr_payroll.hr_payroll.leave.model import LeaveBalance

D = Decimal


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


REF = LedgerReference("LEAVE_REQUEST", 5, "LR-20261005-000001", processed_by=4)


def _ledger(current="10"):
    repo = InMemoryBalances(
        LeaveBalance(balance_id=1, employee_id=10, leave_type_id=1, year=2026, current_balance=D(current), available_balance=D(current))
    )
    return LeaveLedger(repo), repo


def test_reserve_moves_days_to_pending():
    ledger, repo = _ledger()
    balance = ledger.reserve(employee_id=10, leave_type_id=1, year=2026, days=D("3"), ref=REF)

    assert balance.pending_requests == D("3.00")
    assert balance.available_balance == D("7.00")
    assert balance.current_balance == D("10")
    tx = repo.transactions[-1]
    assert tx.transaction_type == LeaveTransactionType.ADJUSTMENT
    assert tx.amount == D("-3.00")
    assert tx.reference_id == "5"
    assert tx.remarks == "Reserved 3.00 day(s) for leave request LR-20261005-000001"


def test_consume_after_reserve_uses_credits():
    ledger, repo = _ledger()
    ledger.reserve(employee_id=10, leave_type_id=1, year=2026, days=D("2.5"), ref=REF)
    balance = ledger.consume(employee_id=10, leave_type_id=1, year=2026, days=D("2.5"), ref=REF)

    assert balance.current_balance == D("7.50")
    assert balance.pending_requests == D("0.00")
    assert balance.available_balance == D("7.50")
    assert balance.credits_used == D("2.50")
    assert repo.transactions[-1].transaction_type == LeaveTransactionType.USAGE


def test_release_restores_available_balance():
    ledger, _ = _ledger()
    ledger.reserve(employee_id=10, leave_type_id=1, year=2026, days=D("4"), ref=REF)
    balance = ledger.release(employee_id=10, leave_type_id=1, year=2026, days=D("4"), ref=REF)

    assert balance.pending_requests == 0
    assert balance.available_balance == D("10.00")


def test_reserve_rejects_insufficient_balance():
    ledger, repo = _ledger("2")
    with pytest.raises(ValidationError, match="Insufficient leave balance"):
        ledger.reserve(employee_id=10, leave_type_id=1, year=2026, days=D("3"), ref=REF)
    assert repo.transactions == []


def test_missing_balance_asks_for_initialization():
    ledger, _ = _ledger()
    with pytest.raises(ValidationError, match="No leave balance found for 2027. Please initialize"):
        ledger.reserve(employee_id=10, leave_type_id=1, year=2027, days=D("1"), ref=REF)


def test_release_and_consume_guard_against_inconsistent_pending():
    ledger, _ = _ledger()
    with pytest.raises(ValidationError, match="reservation is inconsistent"):
        ledger.release(employee_id=10, leave_type_id=1, year=2026, days=D("1"), ref=REF)
    with pytest.raises(ValidationError, match="insufficient to finalize"):
        ledger.consume(employee_id=10, leave_type_id=1, year=2026, days=D("1"), ref=REF)


def test_credit_accrues_onto_balance():
    ledger, repo = _ledger()
    balance = repo.get(employee_id=10, leave_type_id=1, year=2026)
    updated = ledger.credit(replace(balance, pending_requests=D("1"), available_balance=D("9")), amount=D("0.5"), ref=REF, remarks="CTO")

    assert updated.credits_earned == D("0.50")
    assert updated.current_balance == D("10.50")
    assert updated.available_balance == D("9.50")
    assert repo.transactions[-1].transaction_type == LeaveTransactionType.ACCRUAL
