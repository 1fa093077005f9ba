"""Balance verification for extracted statements."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from statement_ledger.config import settings
from statement_ledger.models import TransactionType, VerificationStatus

ZERO = Decimal("0")


@dataclass(frozen=True)
class BalanceCheck:
    calculated_closing_balance: Decimal
    reported_closing_balance: Decimal
    opening_balance: Decimal
    is_balanced: bool
    discrepancy_amount: Decimal

    @property
    def verification_status(self) -> VerificationStatus:
        return VerificationStatus.VERIFIED if self.is_balanced else VerificationStatus.UNBALANCED

    @property
    def notes(self) -> str:
        if self.is_balanced:
            return "Statement balanced successfully"
        return f"Discrepancy of {self.discrepancy_amount:.2f} detected"


def calculate_closing_balance(
    opening_balance: Decimal,
    transactions: Iterable[tuple[TransactionType, Decimal]],
) -> Decimal:
    """opening + sum(credits) - sum(|debits|), whatever sign each amount carries."""
    total = opening_balance
    for txn_type, amount in transactions:
        if txn_type is TransactionType.CREDIT:
            total += abs(amount)
        else:
            total -= abs(amount)
    return total


def verify_balance(
    opening_balance: Decimal,
    reported_closing_balance: Decimal,
    transactions: Iterable[tuple[TransactionType, Decimal]],
    *,
    tolerance: Decimal | None = None,
) -> BalanceCheck:
    """Check that the transactions carry the opening balance to the reported closing one.

    Balanced means the gap is strictly below ``tolerance``; a balanced
    statement records a zero discrepancy.
    """
    tolerance = settings.balance_tolerance if tolerance is None else tolerance
    calculated = calculate_closing_balance(opening_balance, transactions)
    difference = calculated - reported_closing_balance
    is_balanced = abs(difference) < tolerance
    return BalanceCheck(
        calculated_closing_balance=calculated,
        reported_closing_balance=reported_closing_balance,
        opening_balance=opening_balance,
        is_balanced=is_balanced,
        discrepancy_amount=ZERO if is_balanced else difference,
    )
