"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from statement_ledger.deps import CurrentUserId, DbSession

    async def my_endpoint(db: DbSession, user_id: CurrentUserId):
        ...

Service collaborators are provided through small factories so tests can swap
them with ``app.dependency_overrides``.
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from statement_ledger.auth import get_current_user_id
from statement_ledger.database import get_db
from statement_ledger.services.job_orchestrator import JobRunner
from statement_ledger.services.statement_processor import StatementProcessor
from statement_ledger.services.storage import Storage, get_storage
from statement_ledger.services.sync import SyncService

DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]


def get_statement_storage() -> Storage:
    return get_storage()


def get_statement_processor() -> StatementProcessor:
    return StatementProcessor()


def get_sync_service() -> SyncService:
    return SyncService()


StatementStorage = Annotated[Storage, Depends(get_statement_storage)]
Processor = Annotated[StatementProcessor, Depends(get_statement_processor)]
SyncServiceDep = Annotated[SyncService, Depends(get_sync_service)]


def get_job_runner(processor: Processor, sync_service: SyncServiceDep) -> JobRunner:
    return JobRunner(processor=processor, sync_service=sync_service)


Runner = Annotated[JobRunner, Depends(get_job_runner)]

__all__ = [
    "CurrentUserId",
    "DbSession",
    "Processor",
    "Runner",
    "StatementStorage",
    "SyncServiceDep",
    "get_job_runner",
    "get_statement_processor",
    "get_statement_storage",
    "get_sync_service",
]
