"""Live bank-sync: cursor-based incremental pulls into the shared ledger."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statement_ledger.database import get_session_maker
from statement_ledger.logger import async_log_timing, get_logger, log_exception
from statement_ledger.models import (
    SyncConnection,
    SyncConnectionStatus,
    Transaction,
    TransactionSource,
    TransactionType,
)
from statement_ledger.models.base import utcnow
from statement_ledger.services.ledger import request_ledger_recalculation
from statement_ledger.services.plaid import PlaidClient, ProviderTransaction, SyncPage, SyncProviderError
from statement_ledger.services.workers import mark_in_flight

logger = get_logger(__name__)

UNKNOWN_DESCRIPTION = "Unknown"


class SyncConnectionNotFoundError(Exception):
    """Connection does not exist or belongs to another owner."""


class SyncProvider(Protocol):
    async def transactions_sync(self, access_token: str, cursor: str | None) -> SyncPage: ...


@dataclass(frozen=True)
class SyncResult:
    added: int
    modified: int
    removed: int


def to_ledger_amount(provider_amount: Decimal) -> tuple[Decimal, TransactionType]:
    """Provider amounts are outflow-positive; the ledger is credit-positive."""
    amount = -provider_amount
    return amount, TransactionType.CREDIT if amount >= 0 else TransactionType.DEBIT


def describe(txn: ProviderTransaction) -> str:
    return txn.merchant_name or txn.name or UNKNOWN_DESCRIPTION


class SyncService:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        provider: SyncProvider | None = None,
    ) -> None:
        self.session_maker = session_maker or get_session_maker()
        self.provider = provider or PlaidClient()

    async def sync_owner_connection(self, connection_id: UUID, owner_id: UUID) -> SyncResult:
        """Pull every page since the stored cursor and apply it.

        The cursor is persisted in the same commit as the applied rows, so a
        crash mid-loop re-fetches from the last persisted cursor next time.
        """
        structlog.contextvars.bind_contextvars(connection_id=str(connection_id))
        with mark_in_flight("connection", connection_id):
            async with self.session_maker() as session:
                connection = await session.scalar(
                    select(SyncConnection)
                    .where(SyncConnection.id == connection_id)
                    .where(SyncConnection.user_id == owner_id)
                )
                if connection is None:
                    raise SyncConnectionNotFoundError(f"Sync connection {connection_id} not found")

                try:
                    async with async_log_timing("sync_connection", logger=logger) as timing:
                        result = await self._pull_and_apply(session, connection)
                        timing.update(added=result.added, modified=result.modified, removed=result.removed)
                except Exception as exc:
                    await self._record_failure(session, connection_id, exc)
                    if isinstance(exc, SyncProviderError):
                        raise
                    raise SyncProviderError(str(exc) or type(exc).__name__) from exc

        if result.added or result.modified or result.removed:
            request_ledger_recalculation(owner_id)
        return result

    async def _pull_and_apply(self, session: AsyncSession, connection: SyncConnection) -> SyncResult:
        cursor = connection.cursor
        added: list[ProviderTransaction] = []
        modified: list[ProviderTransaction] = []
        removed: list[str] = []

        has_more = True
        while has_more:
            page = await self.provider.transactions_sync(connection.access_token, cursor)
            added.extend(page.added)
            modified.extend(page.modified)
            removed.extend(page.removed)
            has_more = page.has_more
            cursor = page.next_cursor

        for txn in [*added, *modified]:
            await self._upsert(session, connection.user_id, txn)
        if removed:
            await session.execute(
                delete(Transaction)
                .where(Transaction.user_id == connection.user_id)
                .where(Transaction.source == TransactionSource.SYNC)
                .where(Transaction.external_id.in_(removed))
            )

        connection.cursor = cursor
        connection.last_synced_at = utcnow()
        connection.status = SyncConnectionStatus.ACTIVE
        connection.error_message = None
        await session.commit()

        return SyncResult(added=len(added), modified=len(modified), removed=len(removed))

    async def _upsert(self, session: AsyncSession, owner_id: UUID, txn: ProviderTransaction) -> None:
        amount, txn_type = to_ledger_amount(txn.amount)
        category = txn.category.lower() if txn.category else None

        existing = await session.scalar(
            select(Transaction)
            .where(Transaction.user_id == owner_id)
            .where(Transaction.source == TransactionSource.SYNC)
            .where(Transaction.external_id == txn.transaction_id)
        )
        if existing is None:
            existing = Transaction(
                user_id=owner_id,
                source=TransactionSource.SYNC,
                external_id=txn.transaction_id,
                sort_order=0,
            )
            session.add(existing)

        existing.txn_date = txn.txn_date
        existing.description = describe(txn)
        existing.amount = amount
        existing.transaction_type = txn_type
        existing.category = category
        existing.is_provisional = txn.pending
        # Flush so a later page that modifies the same id finds this row
        await session.flush()

    async def _record_failure(self, session: AsyncSession, connection_id: UUID, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        log_exception(logger, exc, "Bank sync failed", level="warning", include_traceback=False)
        try:
            await session.rollback()
            connection = await session.get(SyncConnection, connection_id, populate_existing=True)
            if connection is not None:
                connection.status = SyncConnectionStatus.ERROR
                connection.error_message = message[:1000]
                await session.commit()
        except Exception as inner_exc:
            logger.exception(
                "Failed to mark sync connection as errored",
                original_error=message,
                inner_error=str(inner_exc),
            )


async def mark_connection_error(db: AsyncSession, connection: SyncConnection, message: str | None) -> None:
    """Provider reported a problem with the item itself."""
    connection.status = SyncConnectionStatus.ERROR
    connection.error_message = message or "Unknown item error"
    await db.commit()
    logger.warning("Sync connection marked as errored", connection_id=str(connection.id), error=connection.error_message)


async def delete_connection(db: AsyncSession, connection: SyncConnection) -> int:
    """Remove a connection and the provisional rows it fed. Confirmed rows stay in the ledger."""
    removed = await db.execute(
        delete(Transaction)
        .where(Transaction.user_id == connection.user_id)
        .where(Transaction.source == TransactionSource.SYNC)
        .where(Transaction.is_provisional.is_(True))
    )
    await db.delete(connection)
    await db.commit()
    logger.info("Sync connection deleted", connection_id=str(connection.id), provisional_removed=removed.rowcount)
    return removed.rowcount or 0
