"""Leave balance ledger: reserve, release and consume days for requests,
plus direct deductions for leave days entered on the DTR.

Every mutation updates the balance row and appends one transaction row;
callers run these inside their own transaction together with the request
update and the audit row.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Optional, Tuple

from ..core.enums import LeaveTransactionType
from ..core.exceptions import ValidationError
from ..core.money import ZERO, round_days
from .model import LeaveBalance, LeaveBalanceTransaction
from .repository import LeaveBalanceRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerReference:
    reference_type: str
    reference_id: Any
    label: str
    processed_by: Optional[int] = None


def _days_text(days: Decimal) -> str:
    return f"{round_days(days):.2f}"


class LeaveLedger:
    def __init__(self, balances: LeaveBalanceRepository):
        self._balances = balances

    def _load(self, *, employee_id: int, leave_type_id: int, year: int, missing_message: str) -> LeaveBalance:
        balance = self._balances.get(employee_id=employee_id, leave_type_id=leave_type_id, year=year)
        if not balance:
            raise ValidationError(missing_message)
        return balance

    def _write(
        self,
        balance: LeaveBalance,
        *,
        tx_type: LeaveTransactionType,
        amount: Decimal,
        ref: LedgerReference,
        remarks: str,
    ) -> LeaveBalance:
        self._balances.save_amounts(balance)
        self._balances.add_transaction(
            LeaveBalanceTransaction(
                balance_id=balance.balance_id,
                transaction_type=tx_type,
                amount=round_days(amount),
                running_balance=round_days(balance.current_balance),
                reference_type=ref.reference_type,
                reference_id=str(ref.reference_id),
                remarks=remarks,
                processed_by=ref.processed_by,
            )
        )
        logger.debug("ledger %s balance_id=%s amount=%s", tx_type.value, balance.balance_id, amount)
        return balance

    def reserve(self, *, employee_id: int, leave_type_id: int, year: int, days: Decimal, ref: LedgerReference) -> LeaveBalance:
        balance = self._load(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            missing_message=f"No leave balance found for {year}. Please initialize yearly leave balances first.",
        )
        days = round_days(days)
        if balance.available_balance < days:
            raise ValidationError("Insufficient leave balance for this request.")

        updated = replace(
            balance,
            pending_requests=round_days(balance.pending_requests + days),
            available_balance=round_days(balance.available_balance - days),
        )
        return self._write(
            updated,
            tx_type=LeaveTransactionType.ADJUSTMENT,
            amount=-days,
            ref=ref,
            remarks=f"Reserved {_days_text(days)} day(s) for leave request {ref.label}",
        )

    def release(self, *, employee_id: int, leave_type_id: int, year: int, days: Decimal, ref: LedgerReference) -> LeaveBalance:
        balance = self._load(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            missing_message=f"No leave balance found for {year}.",
        )
        days = round_days(days)
        if balance.pending_requests < days:
            raise ValidationError(
                "Leave balance reservation is inconsistent. Pending requests are lower than the request duration."
            )

        updated = replace(
            balance,
            pending_requests=round_days(balance.pending_requests - days),
            available_balance=round_days(balance.available_balance + days),
        )
        return self._write(
            updated,
            tx_type=LeaveTransactionType.ADJUSTMENT,
            amount=days,
            ref=ref,
            remarks=f"Released {_days_text(days)} day(s) back to available balance for {ref.label}",
        )

    def consume(self, *, employee_id: int, leave_type_id: int, year: int, days: Decimal, ref: LedgerReference) -> LeaveBalance:
        balance = self._load(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            missing_message=f"No leave balance found for {year}.",
        )
        days = round_days(days)
        if balance.pending_requests < days or balance.current_balance < days:
            raise ValidationError("Leave balance is insufficient to finalize this approval.")

        current = round_days(balance.current_balance - days)
        pending = round_days(balance.pending_requests - days)
        available = round_days(current - pending)
        if available < ZERO:
            raise ValidationError("Leave balance is insufficient to finalize this approval.")

        updated = replace(
            balance,
            current_balance=current,
            pending_requests=pending,
            credits_used=round_days(balance.credits_used + days),
            available_balance=available,
        )
        return self._write(
            updated,
            tx_type=LeaveTransactionType.USAGE,
            amount=days,
            ref=ref,
            remarks=f"Consumed {_days_text(days)} day(s) for approved leave request {ref.label}",
        )

    def credit(self, balance: LeaveBalance, *, amount: Decimal, ref: LedgerReference, remarks: str) -> LeaveBalance:
        """Accrue ``amount`` onto an existing balance (earned, current and available)."""

        amount = round_days(amount)
        updated = replace(
            balance,
            credits_earned=round_days(balance.credits_earned + amount),
            current_balance=round_days(balance.current_balance + amount),
            available_balance=round_days(balance.available_balance + amount),
        )
        return self._write(updated, tx_type=LeaveTransactionType.ACCRUAL, amount=amount, ref=ref, remarks=remarks)

    def deduct(self, *, employee_id: int, leave_type_id: int, year: int, days: Decimal, ref: LedgerReference) -> LeaveBalance:
        """Charge days used outside a leave request straight against the current balance."""

        balance = self._load(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            missing_message=f"No leave balance found for {year}. Please initialize yearly leave balances first.",
        )
        days = round_days(days)
        if balance.current_balance < days:
            raise ValidationError("Insufficient leave balance for the selected leave type.")

        current = round_days(balance.current_balance - days)
        available = round_days(current - balance.pending_requests)
        if available < ZERO:
            raise ValidationError("Leave balance is insufficient after pending requests are considered.")

        updated = replace(
            balance,
            current_balance=current,
            credits_used=round_days(balance.credits_used + days),
            available_balance=available,
        )
        return self._write(
            updated,
            tx_type=LeaveTransactionType.USAGE,
            amount=days,
            ref=ref,
            remarks=f"Applied {_days_text(days)} day(s) for {ref.label}",
        )

    def restore(self, balance: LeaveBalance, *, days: Decimal, ref: LedgerReference) -> LeaveBalance:
        """Undo a :meth:`deduct`; ``balance`` identifies the row that was charged."""

        balance = self._load(
            employee_id=balance.employee_id,
            leave_type_id=balance.leave_type_id,
            year=balance.year,
            missing_message="Unable to reverse prior leave deduction because the leave balance row no longer exists.",
        )
        days = round_days(days)
        if balance.credits_used < days:
            raise ValidationError("Unable to reverse prior leave deduction because used credits are lower than expected.")

        current = round_days(balance.current_balance + days)
        updated = replace(
            balance,
            current_balance=current,
            credits_used=round_days(balance.credits_used - days),
            available_balance=round_days(current - balance.pending_requests),
        )
        return self._write(
            updated,
            tx_type=LeaveTransactionType.ADJUSTMENT,
            amount=days,
            ref=ref,
            remarks=f"Reversed {_days_text(days)} day(s) from {ref.label}",
        )

    def active_deduction(self, *, reference_type: str, reference_id: Any) -> Optional[Tuple[LeaveBalance, Decimal]]:
        """The balance and days still charged for a reference, or None once reversed."""

        latest = self._balances.latest_transaction_for(reference_type=reference_type, reference_id=str(reference_id))
        if latest is None or latest.transaction_type != LeaveTransactionType.USAGE:
            return None
        days = round_days(abs(latest.amount))
        if days <= ZERO:
            return None
        balance = self._balances.get_by_id(latest.balance_id)
        if not balance:
            raise ValidationError("Unable to reverse prior leave deduction because the leave balance row no longer exists.")
        return balance, days
