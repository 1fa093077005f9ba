"""Pydantic schemas for batch jobs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from statement_ledger.models.job import JobStatus, JobType
from statement_ledger.schemas.base import BaseResponse, CursorPage


class CreateJobRequest(BaseModel):
    statement_ids: list[UUID] = Field(..., min_length=1)
    job_type: JobType = JobType.FILE_PROCESSING


class JobCreatedResponse(BaseModel):
    job_id: UUID
    total_items: int


class JobItemResponse(BaseResponse):
    id: UUID
    statement_id: UUID | None
    connection_id: UUID | None
    file_name: str
    position: int
    status: JobStatus
    error: str | None
    started_at: datetime | None
    completed_at: datetime | None


class JobResponse(BaseResponse):
    id: UUID
    job_type: JobType
    status: JobStatus
    total_items: int
    completed_items: int
    progress: int
    error: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    items: list[JobItemResponse] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def label(self) -> str:
        return self.job_type.label


JobListResponse = CursorPage[JobResponse]


class ResetInterruptedResponse(BaseModel):
    statements: int
    jobs: int
    items: int
