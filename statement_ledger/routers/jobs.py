"""Batch job API router: create, inspect, stream progress, reset interrupted work."""

from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import selectinload

from statement_ledger.deps import CurrentUserId, DbSession, Runner
from statement_ledger.logger import get_logger
from statement_ledger.models import Job, JobStatus
from statement_ledger.schemas import (
    CreateJobRequest,
    JobCreatedResponse,
    JobListResponse,
    JobResponse,
    ResetInterruptedResponse,
)
from statement_ledger.services import (
    JobValidationError,
    create_job,
    launch_job,
    reset_interrupted_state,
    stream_job_events,
)
from statement_ledger.services.job_orchestrator import get_job
from statement_ledger.utils import raise_bad_request, raise_not_found

router = APIRouter(prefix="/jobs", tags=["jobs"])

logger = get_logger(__name__)


@router.post("", response_model=JobCreatedResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_processing_job(
    payload: CreateJobRequest,
    db: DbSession,
    user_id: CurrentUserId,
    runner: Runner,
) -> JobCreatedResponse:
    """Create a job for the given statements and start it in the background."""
    try:
        job = await create_job(db, user_id, payload.statement_ids, payload.job_type)
    except JobValidationError as exc:
        raise_bad_request(str(exc), cause=exc)

    launch_job(runner, job.id, user_id)
    return JobCreatedResponse(job_id=job.id, total_items=job.total_items)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    db: DbSession,
    user_id: CurrentUserId,
    limit: int = Query(default=50, ge=1, le=200),
    cursor: UUID | None = Query(default=None, description="Id of the last job on the previous page"),
) -> JobListResponse:
    """List jobs newest first, keyset-paginated."""
    query = select(Job).where(Job.user_id == user_id)
    if cursor is not None:
        anchor = await db.scalar(select(Job).where(Job.id == cursor).where(Job.user_id == user_id))
        if anchor is None:
            raise_bad_request("Invalid cursor")
        query = query.where(
            or_(
                Job.created_at < anchor.created_at,
                and_(Job.created_at == anchor.created_at, Job.id < anchor.id),
            )
        )

    result = await db.execute(
        query.options(selectinload(Job.items)).order_by(Job.created_at.desc(), Job.id.desc()).limit(limit + 1)
    )
    jobs = list(result.scalars().all())
    next_cursor = str(jobs[limit - 1].id) if len(jobs) > limit else None

    return JobListResponse(
        items=[JobResponse.model_validate(job) for job in jobs[:limit]],
        next_cursor=next_cursor,
    )


@router.get("/active", response_model=list[JobResponse])
async def list_active_jobs(
    db: DbSession,
    user_id: CurrentUserId,
) -> list[JobResponse]:
    """Jobs that are still pending or running."""
    result = await db.execute(
        select(Job)
        .where(Job.user_id == user_id)
        .where(Job.status.in_((JobStatus.PENDING, JobStatus.RUNNING)))
        .options(selectinload(Job.items))
        .order_by(Job.created_at.desc())
    )
    return [JobResponse.model_validate(job) for job in result.scalars().all()]


@router.post("/reset-interrupted", response_model=ResetInterruptedResponse)
async def reset_interrupted(
    db: DbSession,
    user_id: CurrentUserId,
) -> ResetInterruptedResponse:
    """Fail jobs and release statements left mid-flight by a crash or restart."""
    counts = await reset_interrupted_state(db, user_id)
    return ResetInterruptedResponse(statements=counts.statements, jobs=counts.jobs, items=counts.items)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job_detail(
    job_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> JobResponse:
    job = await get_job(db, job_id, user_id)
    if job is None:
        raise_not_found("Job")
    return JobResponse.model_validate(job)


@router.get("/{job_id}/stream", response_class=StreamingResponse)
async def stream_job(
    job_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> StreamingResponse:
    """Server-Sent Events feed of job progress; closes once the job finishes."""
    job = await get_job(db, job_id, user_id)
    if job is None:
        raise_not_found("Job")

    headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    return StreamingResponse(
        stream_job_events(job_id, user_id),
        media_type="text/event-stream",
        headers=headers,
    )
