"""Merged ledger view across statement and bank-sync transactions."""

from datetime import date

from fastapi import APIRouter, Query
from sqlalchemy import select

from statement_ledger.deps import CurrentUserId, DbSession
from statement_ledger.models import Transaction, TransactionSource
from statement_ledger.schemas import TransactionListResponse, TransactionResponse
from statement_ledger.utils import raise_bad_request

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    db: DbSession,
    user_id: CurrentUserId,
    start: date | None = Query(default=None, description="Inclusive lower bound on transaction date"),
    end: date | None = Query(default=None, description="Inclusive upper bound on transaction date"),
    source: TransactionSource | None = Query(default=None),
    provisional: bool | None = Query(default=None),
) -> TransactionListResponse:
    """Ledger rows for the current user ordered by date, then statement order."""
    if start and end and start > end:
        raise_bad_request("start must not be after end")

    query = select(Transaction).where(Transaction.user_id == user_id)
    if start:
        query = query.where(Transaction.txn_date >= start)
    if end:
        query = query.where(Transaction.txn_date <= end)
    if source:
        query = query.where(Transaction.source == source)
    if provisional is not None:
        query = query.where(Transaction.is_provisional.is_(provisional))

    result = await db.execute(
        query.order_by(Transaction.txn_date, Transaction.sort_order, Transaction.created_at)
    )
    items = [TransactionResponse.model_validate(t) for t in result.scalars().all()]
    return TransactionListResponse(items=items, total=len(items))
