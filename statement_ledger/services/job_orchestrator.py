"""Batch job orchestration.

A job wraps N independent units of work (statements to process, or a bank
connection to sync). Items run strictly one after another; an item that fails
is recorded and the loop moves on. Job and item rows are committed after every
transition so pollers always see current progress.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from statement_ledger.config import settings
from statement_ledger.database import get_session_maker
from statement_ledger.logger import get_logger, log_exception
from statement_ledger.models import Job, JobItem, JobStatus, JobType, Statement, SyncConnection
from statement_ledger.models.base import utcnow
from statement_ledger.services.statement_processor import StatementProcessor
from statement_ledger.services.sync import SyncService
from statement_ledger.services.workers import background_runner

logger = get_logger(__name__)

STATEMENT_JOB_TYPES = (JobType.FILE_PROCESSING, JobType.REPROCESSING)


class JobNotFoundError(Exception):
    """Job does not exist or belongs to another owner."""


class JobValidationError(ValueError):
    """A job request that cannot be turned into a job."""


def compute_progress(completed: int, total: int) -> int:
    """round(completed / total * 100), halves rounded up, clamped to 0-100."""
    if total <= 0:
        return 100
    completed = max(0, min(completed, total))
    return (completed * 200 + total) // (2 * total)


def failure_summary(job_type: JobType, failed: int, total: int) -> str:
    noun = "connections" if job_type is JobType.BANK_SYNC else "files"
    return f"{failed} of {total} {noun} failed"


async def get_job(db: AsyncSession, job_id: UUID, owner_id: UUID) -> Job | None:
    return await db.scalar(
        select(Job)
        .where(Job.id == job_id)
        .where(Job.user_id == owner_id)
        .options(selectinload(Job.items))
        .execution_options(populate_existing=True)
    )


async def create_job(
    db: AsyncSession,
    owner_id: UUID,
    statement_ids: Sequence[UUID],
    job_type: JobType = JobType.FILE_PROCESSING,
) -> Job:
    """Create a job with one pending item per statement, in the order given."""
    if job_type not in STATEMENT_JOB_TYPES:
        raise JobValidationError(f"Job type {job_type.value} does not process statements")

    unique_ids = list(dict.fromkeys(statement_ids))
    if not unique_ids:
        raise JobValidationError("At least one statement is required")
    if len(unique_ids) > settings.max_batch_items:
        raise JobValidationError(f"At most {settings.max_batch_items} statements can be processed per job")

    rows = (
        await db.execute(
            select(Statement.id, Statement.original_filename)
            .where(Statement.user_id == owner_id)
            .where(Statement.id.in_(unique_ids))
        )
    ).all()
    names = {row.id: row.original_filename for row in rows}
    missing = [str(sid) for sid in unique_ids if sid not in names]
    if missing:
        raise JobValidationError(f"Statements not found: {', '.join(missing)}")

    job = Job(
        user_id=owner_id,
        job_type=job_type,
        status=JobStatus.PENDING,
        total_items=len(unique_ids),
        items=[
            JobItem(statement_id=sid, file_name=names[sid], position=index, status=JobStatus.PENDING)
            for index, sid in enumerate(unique_ids)
        ],
    )
    db.add(job)
    await db.commit()
    logger.info("Job created", job_id=str(job.id), job_type=job_type.value, total_items=job.total_items)
    return await get_job(db, job.id, owner_id)


async def create_sync_job(db: AsyncSession, connection: SyncConnection) -> Job:
    job = Job(
        user_id=connection.user_id,
        job_type=JobType.BANK_SYNC,
        status=JobStatus.PENDING,
        total_items=1,
        items=[
            JobItem(
                connection_id=connection.id,
                file_name=connection.institution_name or connection.item_id,
                position=0,
                status=JobStatus.PENDING,
            )
        ],
    )
    db.add(job)
    await db.commit()
    logger.info("Sync job created", job_id=str(job.id), connection_id=str(connection.id))
    return await get_job(db, job.id, connection.user_id)


class JobRunner:
    """Executes a job's items sequentially and keeps the aggregate record current."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        *,
        processor: StatementProcessor | None = None,
        sync_service: SyncService | None = None,
    ) -> None:
        self.session_maker = session_maker or get_session_maker()
        self._processor = processor
        self._sync_service = sync_service

    @property
    def processor(self) -> StatementProcessor:
        if self._processor is None:
            self._processor = StatementProcessor(self.session_maker)
        return self._processor

    @property
    def sync_service(self) -> SyncService:
        if self._sync_service is None:
            self._sync_service = SyncService(self.session_maker)
        return self._sync_service

    async def run(self, job_id: UUID, owner_id: UUID) -> JobStatus:
        structlog.contextvars.bind_contextvars(job_id=str(job_id))
        async with self.session_maker() as session:
            job = await get_job(session, job_id, owner_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            if job.status.is_terminal:
                logger.warning("Job already finished, not running again", status=job.status.value)
                return job.status

            job.status = JobStatus.RUNNING
            job.started_at = utcnow()
            await session.commit()
            logger.info("Job started", job_type=job.job_type.value, total_items=job.total_items)

            completed = sum(1 for item in job.items if item.status.is_terminal)
            failed = sum(1 for item in job.items if item.status is JobStatus.FAILED)
            for item in job.items:
                if item.status.is_terminal:
                    continue
                if not await self._run_item(session, job, item):
                    failed += 1
                completed += 1
                job.completed_items = completed
                job.progress = compute_progress(completed, job.total_items)
                await session.commit()

            job.status = (
                JobStatus.FAILED if job.total_items and failed == job.total_items else JobStatus.COMPLETED
            )
            job.completed_items = job.total_items
            job.progress = 100
            job.completed_at = utcnow()
            job.error = failure_summary(job.job_type, failed, job.total_items) if failed else None
            await session.commit()

            logger.info("Job finished", status=job.status.value, failed=failed, total_items=job.total_items)
            return job.status

    async def _run_item(self, session: AsyncSession, job: Job, item: JobItem) -> bool:
        """Run one item and record its terminal state. Returns False when it failed."""
        item.status = JobStatus.RUNNING
        item.started_at = utcnow()
        await session.commit()

        try:
            await self._dispatch(job, item)
        except Exception as exc:
            item.status = JobStatus.FAILED
            item.error = (str(exc) or type(exc).__name__)[:1000]
            log_exception(
                logger,
                exc,
                "Job item failed",
                level="warning",
                include_traceback=False,
                job_item_id=str(item.id),
                file_name=item.file_name,
            )
            succeeded = False
        else:
            item.status = JobStatus.COMPLETED
            item.error = None
            succeeded = True
        item.completed_at = utcnow()
        return succeeded

    async def _dispatch(self, job: Job, item: JobItem) -> None:
        if job.job_type in STATEMENT_JOB_TYPES:
            if item.statement_id is None:
                raise JobValidationError("Statement no longer exists")
            await self.processor.process(item.statement_id, job.user_id)
        elif job.job_type is JobType.BANK_SYNC:
            if item.connection_id is None:
                raise JobValidationError("Sync connection no longer exists")
            await self.sync_service.sync_owner_connection(item.connection_id, job.user_id)
        else:
            raise JobValidationError(f"Unsupported job type {job.job_type}")


def launch_job(runner: JobRunner, job_id: UUID, owner_id: UUID) -> None:
    """Start a job in the background; the caller gets control back immediately."""
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    background_runner.spawn(
        runner.run(job_id, owner_id),
        name="run_job",
        claim=("job", job_id),
        job_id=str(job_id),
        request_id=request_id,
    )
