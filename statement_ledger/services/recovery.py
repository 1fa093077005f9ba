"""Explicit reset for work a crash or restart left half-done.

Nothing retries interrupted work on its own. A statement stuck in
``processing`` or a job stuck in ``pending``/``running`` stays that way until
the owner asks for a reset; records owned by live work in this process are
left alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from statement_ledger.logger import get_logger
from statement_ledger.models import Job, JobItem, JobStatus, Statement, StatementStatus
from statement_ledger.models.base import utcnow
from statement_ledger.services.job_orchestrator import compute_progress
from statement_ledger.services.workers import in_flight

logger = get_logger(__name__)

INTERRUPTED_MESSAGE = "Interrupted: processing was stopped before completion"

ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


@dataclass(frozen=True)
class ResetCounts:
    statements: int
    jobs: int
    items: int


async def reset_interrupted_state(db: AsyncSession, owner_id: UUID) -> ResetCounts:
    live_statements = in_flight("statement")
    live_jobs = in_flight("job")
    now = utcnow()

    statements = (
        await db.execute(
            select(Statement)
            .where(Statement.user_id == owner_id)
            .where(Statement.status == StatementStatus.PROCESSING)
        )
    ).scalars().all()
    statement_count = 0
    for statement in statements:
        if statement.id in live_statements:
            continue
        statement.status = StatementStatus.PENDING
        statement.error_message = None
        statement_count += 1

    items = (
        await db.execute(
            select(JobItem)
            .join(Job, JobItem.job_id == Job.id)
            .where(Job.user_id == owner_id)
            .where(JobItem.status.in_(ACTIVE_JOB_STATUSES))
        )
    ).scalars().all()
    item_count = 0
    for item in items:
        if item.job_id in live_jobs:
            continue
        item.status = JobStatus.FAILED
        item.error = INTERRUPTED_MESSAGE
        item.completed_at = now
        item_count += 1

    jobs = (
        await db.execute(
            select(Job).where(Job.user_id == owner_id).where(Job.status.in_(ACTIVE_JOB_STATUSES))
        )
    ).scalars().all()
    job_count = 0
    for job in jobs:
        if job.id in live_jobs:
            continue
        job.status = JobStatus.FAILED
        job.error = INTERRUPTED_MESSAGE
        job.completed_items = job.total_items
        job.progress = compute_progress(job.total_items, job.total_items)
        job.completed_at = now
        job_count += 1

    await db.commit()
    if statement_count or job_count or item_count:
        logger.warning(
            "Reset interrupted work",
            owner_id=str(owner_id),
            statements=statement_count,
            jobs=job_count,
            items=item_count,
        )
    return ResetCounts(statements=statement_count, jobs=job_count, items=item_count)
