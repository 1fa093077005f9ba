"""Downstream ledger recalculation requests.

Recalculating balances and net worth belongs to another service. This module
only defines the hook and fires it without waiting for the result.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select

from statement_ledger.database import get_session_maker
from statement_ledger.logger import get_logger
from statement_ledger.models import Transaction
from statement_ledger.services.workers import background_runner

logger = get_logger(__name__)


class LedgerRecalculator(Protocol):
    async def recalculate(self, owner_id: UUID) -> None: ...


class LoggingLedgerRecalculator:
    """Default hook: summarizes the owner's ledger and logs it for the consumer to pick up."""

    async def recalculate(self, owner_id: UUID) -> None:
        async with get_session_maker()() as session:
            row = (
                await session.execute(
                    select(func.count(Transaction.id), func.coalesce(func.sum(Transaction.amount), 0)).where(
                        Transaction.user_id == owner_id
                    )
                )
            ).one()
        logger.info(
            "Ledger recalculation requested",
            owner_id=str(owner_id),
            transaction_count=row[0],
            net_amount=str(Decimal(str(row[1]))),
        )


_recalculator: LedgerRecalculator = LoggingLedgerRecalculator()


def set_ledger_recalculator(recalculator: LedgerRecalculator) -> LedgerRecalculator:
    """Swap the hook (e.g. for a message-bus publisher) and return the previous one."""
    global _recalculator
    previous = _recalculator
    _recalculator = recalculator
    return previous


def request_ledger_recalculation(owner_id: UUID) -> None:
    """Fire-and-forget; failures are logged by the runner and never reach the caller."""
    background_runner.spawn(
        _recalculator.recalculate(owner_id),
        name="ledger_recalculation",
        owner_id=str(owner_id),
    )
