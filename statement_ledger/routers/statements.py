"""Statement upload, processing and verification API router."""

from pathlib import Path
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Form, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from statement_ledger.config import settings
from statement_ledger.deps import CurrentUserId, DbSession, Processor, Runner, StatementStorage
from statement_ledger.logger import get_logger, log_exception
from statement_ledger.models import JobType, Statement, Transaction
from statement_ledger.schemas import (
    BatchReprocessResponse,
    BulkUploadResponse,
    DuplicateFileResponse,
    FileFailureResponse,
    ReprocessRequest,
    ReprocessResult,
    StatementDetailResponse,
    StatementListResponse,
    StatementResponse,
    TransactionListResponse,
    TransactionResponse,
)
from statement_ledger.services import (
    DuplicateContentError,
    IngestionError,
    SizeLimitError,
    StatementBusyError,
    StatementIngestor,
    StatementNotFoundError,
    StorageError,
    UnsupportedTypeError,
    UploadedFile,
    create_job,
    launch_job,
    mark_human_verified,
)
from statement_ledger.services.ingestion import ARCHIVE_EXTENSIONS
from statement_ledger.services.statement_processor import StatementProcessor
from statement_ledger.utils import (
    raise_bad_request,
    raise_conflict,
    raise_not_found,
    raise_service_unavailable,
    raise_too_large,
)

router = APIRouter(prefix="/statements", tags=["statements"])

logger = get_logger(__name__)


def _client_filename(upload: UploadFile) -> str:
    return Path(upload.filename or "unknown").name or "unknown"


@router.post("/upload", response_model=StatementResponse, status_code=status.HTTP_201_CREATED)
async def upload_statement(
    file: Annotated[UploadFile, File()],
    db: DbSession,
    user_id: CurrentUserId,
    storage: StatementStorage,
) -> StatementResponse:
    """Upload one statement file. Identical bytes already on file are rejected with the existing id."""
    upload = UploadedFile(_client_filename(file), await file.read())
    logger.info(
        "Statement upload request received",
        user_id=str(user_id),
        filename=upload.file_name,
        file_type=upload.extension,
        size=len(upload.content),
    )
    if upload.extension in ARCHIVE_EXTENSIONS:
        raise_bad_request("Archives must be uploaded through /statements/upload/bulk")

    ingestor = StatementIngestor(db, storage)
    try:
        statement = await ingestor.ingest(user_id, upload)
    except DuplicateContentError as exc:
        raise_conflict(
            {"message": str(exc), "existing_statement_id": str(exc.existing_statement_id)},
            cause=exc,
        )
    except UnsupportedTypeError as exc:
        raise_bad_request(str(exc), cause=exc)
    except SizeLimitError as exc:
        raise_too_large(str(exc), cause=exc)
    except IngestionError as exc:
        raise_bad_request(str(exc), cause=exc)
    except StorageError as exc:
        logger.error("Failed to upload statement to storage", error=str(exc))
        raise_service_unavailable(str(exc), cause=exc)

    return StatementResponse.model_validate(statement)


@router.post("/upload/bulk", response_model=BulkUploadResponse)
async def upload_statements_bulk(
    files: Annotated[list[UploadFile], File()],
    db: DbSession,
    user_id: CurrentUserId,
    storage: StatementStorage,
    runner: Runner,
    process: Annotated[bool, Form()] = False,
) -> BulkUploadResponse:
    """Upload many statements (zip bundles are expanded) and optionally start processing them."""
    uploads = [UploadedFile(_client_filename(f), await f.read()) for f in files]
    if not uploads:
        raise_bad_request("No files provided")

    ingestor = StatementIngestor(db, storage)
    try:
        report = await ingestor.ingest_batch(user_id, uploads)
    except SizeLimitError as exc:
        raise_too_large(str(exc), cause=exc)

    # Jobs are capped at max_batch_items, so a large import is split across several.
    job_ids: list[UUID] = []
    if process and report.imported:
        statement_ids = [s.id for s in report.imported]
        for start in range(0, len(statement_ids), settings.max_batch_items):
            chunk = statement_ids[start : start + settings.max_batch_items]
            job = await create_job(db, user_id, chunk, JobType.FILE_PROCESSING)
            launch_job(runner, job.id, user_id)
            job_ids.append(job.id)

    return BulkUploadResponse(
        imported=[StatementResponse.model_validate(s) for s in report.imported],
        duplicates=[DuplicateFileResponse.model_validate(d) for d in report.duplicates],
        errors=[FileFailureResponse.model_validate(e) for e in report.errors],
        job_ids=job_ids,
    )


@router.get("", response_model=StatementListResponse)
async def list_statements(
    db: DbSession,
    user_id: CurrentUserId,
) -> StatementListResponse:
    """List all statements for the current user, newest first."""
    result = await db.execute(
        select(Statement).where(Statement.user_id == user_id).order_by(Statement.created_at.desc())
    )
    statements = result.scalars().all()

    total_result = await db.execute(
        select(func.count()).select_from(Statement).where(Statement.user_id == user_id)
    )
    total = total_result.scalar() or 0

    return StatementListResponse(
        items=[StatementResponse.model_validate(s) for s in statements],
        total=total,
    )


@router.post("/reprocess", response_model=BatchReprocessResponse)
async def reprocess_statements(
    payload: ReprocessRequest,
    user_id: CurrentUserId,
    processor: Processor,
) -> BatchReprocessResponse:
    """Reprocess several statements in order; one failure does not stop the rest."""
    statement_ids = list(dict.fromkeys(payload.statement_ids))
    if len(statement_ids) > settings.max_batch_items:
        raise_bad_request(f"At most {settings.max_batch_items} statements can be reprocessed at once")

    results = [await _reprocess_one(processor, statement_id, user_id) for statement_id in statement_ids]
    processed = sum(1 for r in results if r.success)
    return BatchReprocessResponse(processed=processed, failed=len(results) - processed, results=results)


@router.get("/{statement_id}", response_model=StatementDetailResponse)
async def get_statement(
    statement_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> StatementDetailResponse:
    """Get a statement with its balance verification result."""
    result = await db.execute(
        select(Statement)
        .where(Statement.id == statement_id)
        .where(Statement.user_id == user_id)
        .options(selectinload(Statement.verification))
    )
    statement = result.scalar_one_or_none()

    if not statement:
        raise_not_found("Statement")

    return StatementDetailResponse.model_validate(statement)


@router.get("/{statement_id}/transactions", response_model=TransactionListResponse)
async def list_statement_transactions(
    statement_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> TransactionListResponse:
    """List transactions derived from a statement, in statement order."""
    owned = await db.scalar(
        select(Statement.id).where(Statement.id == statement_id).where(Statement.user_id == user_id)
    )
    if owned is None:
        raise_not_found("Statement")

    result = await db.execute(
        select(Transaction).where(Transaction.statement_id == statement_id).order_by(Transaction.sort_order)
    )
    items = [TransactionResponse.model_validate(t) for t in result.scalars().all()]
    return TransactionListResponse(items=items, total=len(items))


@router.post("/{statement_id}/reprocess", response_model=ReprocessResult)
async def reprocess_statement(
    statement_id: UUID,
    user_id: CurrentUserId,
    processor: Processor,
) -> ReprocessResult:
    """Re-run extraction and verification, replacing previously derived transactions."""
    try:
        result = await processor.process(statement_id, user_id)
    except StatementNotFoundError as exc:
        raise_not_found("Statement", cause=exc)
    except StatementBusyError as exc:
        raise_conflict(str(exc), cause=exc)
    except Exception as exc:
        # Already recorded on the statement by the processor
        return ReprocessResult(id=statement_id, success=False, error=str(exc) or type(exc).__name__)

    return ReprocessResult(
        id=statement_id,
        success=True,
        transaction_count=result.transaction_count,
        is_balanced=result.is_balanced,
    )


@router.post("/{statement_id}/verify", response_model=StatementResponse)
async def verify_statement(
    statement_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> StatementResponse:
    """Accept a statement as correct even though its balance check did not pass."""
    try:
        statement = await mark_human_verified(db, statement_id, user_id)
    except StatementNotFoundError as exc:
        raise_not_found("Statement", cause=exc)
    return StatementResponse.model_validate(statement)


async def _reprocess_one(processor: StatementProcessor, statement_id: UUID, user_id: UUID) -> ReprocessResult:
    try:
        result = await processor.process(statement_id, user_id)
    except StatementNotFoundError:
        return ReprocessResult(id=statement_id, success=False, error="Statement not found")
    except Exception as exc:
        if not isinstance(exc, StatementBusyError):
            log_exception(logger, exc, "Batch reprocess item failed", level="warning", statement_id=str(statement_id))
        return ReprocessResult(id=statement_id, success=False, error=str(exc) or type(exc).__name__)
    return ReprocessResult(
        id=statement_id,
        success=True,
        transaction_count=result.transaction_count,
        is_balanced=result.is_balanced,
    )
