"""Polling-based progress observation for jobs, shaped for Server-Sent Events."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statement_ledger.config import settings
from statement_ledger.database import get_session_maker
from statement_ledger.logger import get_logger, log_exception
from statement_ledger.schemas.job import JobResponse
from statement_ledger.services.job_orchestrator import get_job

logger = get_logger(__name__)

JOB_NOT_FOUND_MESSAGE = "Job not found"
JOB_READ_FAILED_MESSAGE = "Failed to read job status"


def format_sse_event(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


async def watch_job(
    job_id: UUID,
    owner_id: UUID,
    *,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    interval: float | None = None,
    timeout: float | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Yield a ``progress`` snapshot per poll, then ``done`` once the job is terminal.

    A job that disappears or cannot be read ends the stream with an ``error``
    event. ``timeout`` (default ``job_stream_timeout_seconds``, unset) only
    bounds how long this observer waits; when it expires a ``timeout`` event is
    sent and the job keeps running.
    """
    maker = session_maker or get_session_maker()
    interval = settings.job_poll_interval_seconds if interval is None else interval
    timeout = settings.job_stream_timeout_seconds if timeout is None else timeout
    deadline = time.monotonic() + timeout if timeout else None

    while True:
        try:
            async with maker() as session:
                job = await get_job(session, job_id, owner_id)
                if job is None:
                    yield {"type": "error", "message": JOB_NOT_FOUND_MESSAGE}
                    return
                snapshot = JobResponse.model_validate(job).model_dump(mode="json")
        except SQLAlchemyError as exc:
            log_exception(logger, exc, "Job progress poll failed", job_id=str(job_id))
            yield {"type": "error", "message": JOB_READ_FAILED_MESSAGE}
            return

        yield {"type": "progress", "job": snapshot}
        if job.status.is_terminal:
            yield {"type": "done", "status": job.status.value, "error": job.error}
            return
        if deadline is not None and time.monotonic() >= deadline:
            logger.info("Job progress observer gave up", job_id=str(job_id), timeout=timeout)
            yield {
                "type": "timeout",
                "message": "Stopped waiting; the job is still running",
                "status": job.status.value,
            }
            return
        await asyncio.sleep(interval)


async def stream_job_events(job_id: UUID, owner_id: UUID, **kwargs: Any) -> AsyncIterator[str]:
    async for event in watch_job(job_id, owner_id, **kwargs):
        yield format_sse_event(event)
