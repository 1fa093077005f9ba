"""Business logic services."""

from statement_ledger.services.document_text import DocumentTextExtractor
from statement_ledger.services.extraction import ExtractionFailure, ExtractionService
from statement_ledger.services.ingestion import (
    DuplicateContentError,
    IngestionError,
    IngestReport,
    SizeLimitError,
    StatementIngestor,
    UnsupportedTypeError,
    UploadedFile,
)
from statement_ledger.services.job_orchestrator import (
    JobNotFoundError,
    JobRunner,
    JobValidationError,
    create_job,
    create_sync_job,
    launch_job,
)
from statement_ledger.services.job_progress import stream_job_events, watch_job
from statement_ledger.services.reconciliation import ReconcileResult, reconcile
from statement_ledger.services.recovery import INTERRUPTED_MESSAGE, ResetCounts, reset_interrupted_state
from statement_ledger.services.statement_processor import (
    InterruptedStateError,
    ProcessResult,
    StatementBusyError,
    StatementNotFoundError,
    StatementProcessor,
    mark_human_verified,
)
from statement_ledger.services.storage import LocalStorageService, StorageError, StorageService, get_storage
from statement_ledger.services.sync import (
    SyncConnectionNotFoundError,
    SyncProviderError,
    SyncResult,
    SyncService,
    to_ledger_amount,
)
from statement_ledger.services.validation import BalanceCheck, verify_balance

__all__ = [
    "INTERRUPTED_MESSAGE",
    "BalanceCheck",
    "DocumentTextExtractor",
    "DuplicateContentError",
    "ExtractionFailure",
    "ExtractionService",
    "IngestReport",
    "IngestionError",
    "InterruptedStateError",
    "JobNotFoundError",
    "JobRunner",
    "JobValidationError",
    "LocalStorageService",
    "ProcessResult",
    "ReconcileResult",
    "ResetCounts",
    "SizeLimitError",
    "StatementBusyError",
    "StatementIngestor",
    "StatementNotFoundError",
    "StatementProcessor",
    "StorageError",
    "StorageService",
    "SyncConnectionNotFoundError",
    "SyncProviderError",
    "SyncResult",
    "SyncService",
    "UnsupportedTypeError",
    "UploadedFile",
    "create_job",
    "create_sync_job",
    "get_storage",
    "launch_job",
    "mark_human_verified",
    "reconcile",
    "reset_interrupted_state",
    "stream_job_events",
    "verify_balance",
    "watch_job",
]
