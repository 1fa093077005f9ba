"""Background job tracking models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statement_ledger.database import Base
from statement_ledger.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin, enum_values


class JobType(str, Enum):
    FILE_PROCESSING = "file_processing"
    REPROCESSING = "reprocessing"
    BANK_SYNC = "bank_sync"

    @property
    def label(self) -> str:
        return JOB_TYPE_LABELS[self]


JOB_TYPE_LABELS = {
    JobType.FILE_PROCESSING: "Processing statements",
    JobType.REPROCESSING: "Reprocessing statements",
    JobType.BANK_SYNC: "Syncing bank transactions",
}


class JobStatus(str, Enum):
    """Status shared by jobs and job items."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """A batch of independently failing work items tracked as one unit."""

    __tablename__ = "jobs"

    job_type: Mapped[JobType] = mapped_column(
        SQLEnum(JobType, name="job_type_enum", values_callable=enum_values), nullable=False
    )
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="job_status_enum", values_callable=enum_values),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["JobItem"]] = relationship(
        "JobItem",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobItem.position",
    )


class JobItem(UUIDMixin, TimestampMixin, Base):
    """One unit of work inside a job: a statement to process or a connection to sync."""

    __tablename__ = "job_items"

    job_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    statement_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("statements.id", ondelete="SET NULL"),
        nullable=True,
    )
    connection_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sync_connections.id", ondelete="SET NULL"),
        nullable=True,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="job_status_enum", values_callable=enum_values),
        nullable=False,
        default=JobStatus.PENDING,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    job: Mapped[Job] = relationship("Job", back_populates="items")
