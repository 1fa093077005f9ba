"""Reconcile provisional bank-sync rows against authoritative statement rows."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from statement_ledger.config import settings
from statement_ledger.logger import get_logger
from statement_ledger.models import Transaction, TransactionSource

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class ReconcileResult:
    reconciled: int  # provisional rows superseded by a statement row and deleted
    confirmed: int  # provisional rows kept and marked final


def normalize_description(text: str | None) -> str:
    return _NON_ALNUM.sub("", (text or "").lower())


def descriptions_match(left: str | None, right: str | None) -> bool:
    """Equal or contained either way after normalization.

    An empty normalized description only matches another empty one, so a
    blank merchant name cannot swallow every row on the same day.
    """
    a, b = normalize_description(left), normalize_description(right)
    if not a or not b:
        return a == b
    return a == b or a in b or b in a


def is_same_transaction(provisional: Transaction, statement_row: Transaction, tolerance: Decimal) -> bool:
    return (
        provisional.txn_date == statement_row.txn_date
        and abs(provisional.amount - statement_row.amount) < tolerance
        and descriptions_match(provisional.description, statement_row.description)
    )


async def reconcile(
    db: AsyncSession,
    owner_id: UUID,
    period_start: date,
    period_end: date,
    *,
    tolerance: Decimal | None = None,
) -> ReconcileResult:
    """Resolve overlap between sync and statement rows for a covered period (inclusive).

    Matched provisional rows are deleted, each statement row superseding at
    most one of them. The statement is authoritative for the whole window,
    so every other provisional row in it is kept and marked non-provisional.
    """
    tolerance = settings.reconciliation_amount_tolerance if tolerance is None else tolerance

    provisional_rows = (
        await db.execute(
            select(Transaction)
            .where(Transaction.user_id == owner_id)
            .where(Transaction.source == TransactionSource.SYNC)
            .where(Transaction.is_provisional.is_(True))
            .where(Transaction.txn_date >= period_start)
            .where(Transaction.txn_date <= period_end)
            .order_by(Transaction.txn_date, Transaction.created_at)
        )
    ).scalars().all()
    if not provisional_rows:
        return ReconcileResult(reconciled=0, confirmed=0)

    statement_rows = (
        await db.execute(
            select(Transaction)
            .where(Transaction.user_id == owner_id)
            .where(Transaction.source == TransactionSource.STATEMENT)
            .where(Transaction.txn_date >= period_start)
            .where(Transaction.txn_date <= period_end)
        )
    ).scalars().all()

    by_date: dict[date, list[Transaction]] = defaultdict(list)
    for row in statement_rows:
        by_date[row.txn_date].append(row)

    used: set[UUID] = set()
    reconciled = 0
    confirmed = 0
    for provisional in provisional_rows:
        match = next(
            (
                row
                for row in by_date.get(provisional.txn_date, [])
                if row.id not in used and is_same_transaction(provisional, row, tolerance)
            ),
            None,
        )
        if match is not None:
            used.add(match.id)
            await db.delete(provisional)
            reconciled += 1
        else:
            provisional.is_provisional = False
            confirmed += 1

    await db.commit()
    logger.info(
        "Reconciled provisional transactions",
        owner_id=str(owner_id),
        period_start=period_start.isoformat(),
        period_end=period_end.isoformat(),
        reconciled=reconciled,
        confirmed=confirmed,
    )
    return ReconcileResult(reconciled=reconciled, confirmed=confirmed)
