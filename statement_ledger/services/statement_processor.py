"""Statement processing: extraction, balance verification and transaction derivation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

import structlog
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statement_ledger.database import get_session_maker
from statement_ledger.logger import async_log_timing, get_logger, log_exception
from statement_ledger.models import (
    BalanceVerification,
    Statement,
    StatementStatus,
    Transaction,
    TransactionSource,
    TransactionType,
    VerificationStatus,
)
from statement_ledger.models.base import utcnow
from statement_ledger.services.document_text import DocumentTextExtractor, TextExtractor
from statement_ledger.services.extraction import (
    ExtractedStatement,
    ExtractionFailure,
    ExtractionService,
    StatementExtractor,
    normalize_extraction,
)
from statement_ledger.services.ledger import request_ledger_recalculation
from statement_ledger.services.reconciliation import reconcile
from statement_ledger.services.storage import Storage, get_storage
from statement_ledger.services.validation import BalanceCheck, verify_balance
from statement_ledger.services.workers import mark_in_flight

logger = get_logger(__name__)

EMPTY_TEXT_MESSAGE = "Could not extract text from document. The file may be scanned or image-based."


class StatementNotFoundError(Exception):
    """Statement does not exist or belongs to another owner."""


class InterruptedStateError(Exception):
    """A record sits in a non-terminal state that only the interrupted-state reset clears."""


class StatementBusyError(InterruptedStateError):
    """Statement is already marked processing, by live work or by a crashed run."""

    def __init__(self, statement_id: UUID) -> None:
        super().__init__(
            "Statement is already being processed. If processing was interrupted, reset interrupted work and retry."
        )
        self.statement_id = statement_id


@dataclass(frozen=True)
class ProcessResult:
    transaction_count: int
    is_balanced: bool


def _owner_perspective(txn_type: TransactionType, amount: Decimal, flip: bool) -> tuple[TransactionType, Decimal]:
    """Liability statements report charges as debits to the bank; flip them to the owner's view."""
    if not flip:
        return txn_type, amount
    flipped = TransactionType.DEBIT if txn_type is TransactionType.CREDIT else TransactionType.CREDIT
    return flipped, -amount


class StatementProcessor:
    """Derives transactions and a verification result from a stored statement.

    Safe to call again on the same statement: earlier derived rows are
    deleted first, so the final state does not depend on how many times it ran.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        *,
        extractor: StatementExtractor | None = None,
        text_extractor: TextExtractor | None = None,
        storage: Storage | None = None,
    ) -> None:
        self.session_maker = session_maker or get_session_maker()
        self.extractor = extractor or ExtractionService()
        self.text_extractor = text_extractor or DocumentTextExtractor()
        self.storage = storage or get_storage()

    async def process(self, statement_id: UUID, owner_id: UUID) -> ProcessResult:
        structlog.contextvars.bind_contextvars(statement_id=str(statement_id))
        with mark_in_flight("statement", statement_id):
            async with self.session_maker() as session:
                await self._claim(session, statement_id, owner_id)
                try:
                    async with async_log_timing("process_statement", logger=logger) as timing:
                        statement, data, check = await self._derive(session, statement_id, owner_id)
                        timing["transaction_count"] = len(data.transactions)
                except Exception as exc:
                    await self._record_failure(session, statement_id, exc)
                    raise

                await self._after_success(session, statement, owner_id)

        return ProcessResult(transaction_count=len(data.transactions), is_balanced=check.is_balanced)

    async def _claim(self, session: AsyncSession, statement_id: UUID, owner_id: UUID) -> None:
        """Move the statement to processing unless something else already holds it."""
        result = await session.execute(
            update(Statement)
            .where(Statement.id == statement_id)
            .where(Statement.user_id == owner_id)
            .where(Statement.status != StatementStatus.PROCESSING)
            .values(status=StatementStatus.PROCESSING, error_message=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await session.commit()
            return

        exists = await session.scalar(
            select(Statement.id).where(Statement.id == statement_id).where(Statement.user_id == owner_id)
        )
        await session.rollback()
        if exists is None:
            raise StatementNotFoundError(f"Statement {statement_id} not found")
        raise StatementBusyError(statement_id)

    async def _derive(
        self, session: AsyncSession, statement_id: UUID, owner_id: UUID
    ) -> tuple[Statement, ExtractedStatement, BalanceCheck]:
        statement = await session.get(Statement, statement_id, populate_existing=True)
        if statement is None:
            raise StatementNotFoundError(f"Statement {statement_id} not found")

        removed = await session.execute(delete(Transaction).where(Transaction.statement_id == statement_id))
        await session.commit()
        if removed.rowcount:
            logger.info("Deleted previously derived transactions", count=removed.rowcount)

        content = await run_in_threadpool(self.storage.get_object, statement.file_path)
        text = await run_in_threadpool(self.text_extractor.extract_text, content, statement.original_filename)
        if not text or not text.strip():
            raise ExtractionFailure(EMPTY_TEXT_MESSAGE)

        payload = await self.extractor.extract(text)
        data = normalize_extraction(payload, text=text, file_name=statement.original_filename)
        check = verify_balance(
            data.opening_balance,
            data.closing_balance,
            [(txn.transaction_type, txn.amount) for txn in data.transactions],
        )

        flip = data.account_type.is_liability
        for index, txn in enumerate(data.transactions):
            txn_type, amount = _owner_perspective(txn.transaction_type, txn.amount, flip)
            session.add(
                Transaction(
                    user_id=owner_id,
                    statement_id=statement_id,
                    txn_date=txn.txn_date,
                    description=txn.description,
                    amount=amount,
                    balance=txn.balance,
                    category=txn.category,
                    transaction_type=txn_type,
                    reference=txn.reference,
                    sort_order=index,
                    source=TransactionSource.STATEMENT,
                    is_provisional=False,
                )
            )

        statement.bank_name = data.bank_name
        statement.account_name = data.account_name
        statement.account_number = data.account_number
        statement.account_type = data.account_type
        statement.period_start = data.period_start
        statement.period_end = data.period_end
        statement.opening_balance = data.opening_balance
        statement.closing_balance = data.closing_balance
        statement.total_deposits = data.total_deposits
        statement.total_withdrawals = data.total_withdrawals
        await self._record_verification(session, statement, check)

        statement.status = StatementStatus.DONE
        statement.error_message = None
        statement.processed_at = utcnow()
        await session.commit()

        logger.info(
            "Statement processed",
            transaction_count=len(data.transactions),
            dropped_transactions=data.dropped_transactions,
            is_balanced=check.is_balanced,
            discrepancy=str(check.discrepancy_amount),
        )
        return statement, data, check

    async def _record_verification(self, session: AsyncSession, statement: Statement, check: BalanceCheck) -> None:
        verification = await session.scalar(
            select(BalanceVerification).where(BalanceVerification.statement_id == statement.id)
        )
        if verification is None:
            verification = BalanceVerification(statement_id=statement.id)
            session.add(verification)
        verification.calculated_closing_balance = check.calculated_closing_balance
        verification.statement_opening_balance = check.opening_balance
        verification.statement_closing_balance = check.reported_closing_balance
        verification.is_balanced = check.is_balanced
        verification.discrepancy_amount = check.discrepancy_amount
        verification.notes = check.notes

        statement.calculated_closing_balance = check.calculated_closing_balance
        statement.discrepancy_amount = check.discrepancy_amount
        # A human override is final until the owner changes it
        if statement.verification_status is not VerificationStatus.HUMAN_VERIFIED:
            statement.verification_status = check.verification_status

    async def _record_failure(self, session: AsyncSession, statement_id: UUID, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        log_exception(
            logger,
            exc,
            "Statement processing failed",
            level="warning" if isinstance(exc, ExtractionFailure) else "error",
            include_traceback=not isinstance(exc, ExtractionFailure),
        )
        try:
            await session.rollback()
            statement = await session.get(Statement, statement_id, populate_existing=True)
            if statement is not None and statement.status is StatementStatus.PROCESSING:
                statement.status = StatementStatus.ERROR
                statement.error_message = message[:1000]
                await session.commit()
        except Exception as inner_exc:
            logger.exception(
                "Failed to mark statement as errored",
                original_error=message,
                inner_error=str(inner_exc),
            )

    async def _after_success(self, session: AsyncSession, statement: Statement, owner_id: UUID) -> None:
        """Reconciliation and ledger refresh; failures here never undo a processed statement."""
        if statement.period_start and statement.period_end:
            try:
                await reconcile(session, owner_id, statement.period_start, statement.period_end)
            except Exception as exc:
                await session.rollback()
                log_exception(logger, exc, "Reconciliation after processing failed", level="warning")
        request_ledger_recalculation(owner_id)


async def mark_human_verified(db: AsyncSession, statement_id: UUID, owner_id: UUID) -> Statement:
    """Owner override: accept the statement as correct regardless of the balance check."""
    statement = await db.scalar(
        select(Statement).where(Statement.id == statement_id).where(Statement.user_id == owner_id)
    )
    if statement is None:
        raise StatementNotFoundError(f"Statement {statement_id} not found")
    statement.verification_status = VerificationStatus.HUMAN_VERIFIED
    await db.commit()
    await db.refresh(statement)
    logger.info("Statement marked human verified", statement_id=str(statement_id))
    return statement
