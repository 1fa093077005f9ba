from statement_ledger.schemas.base import BaseResponse, CursorPage, ListResponse
from statement_ledger.schemas.job import (
    CreateJobRequest,
    JobCreatedResponse,
    JobItemResponse,
    JobListResponse,
    JobResponse,
    ResetInterruptedResponse,
)
from statement_ledger.schemas.statement import (
    BalanceVerificationResponse,
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
from statement_ledger.schemas.sync import (
    SyncConnectionCreate,
    SyncConnectionListResponse,
    SyncConnectionResponse,
    SyncStartedResponse,
    SyncWebhookPayload,
    WebhookAck,
)

__all__ = [
    "BalanceVerificationResponse",
    "BaseResponse",
    "BatchReprocessResponse",
    "BulkUploadResponse",
    "CreateJobRequest",
    "CursorPage",
    "DuplicateFileResponse",
    "FileFailureResponse",
    "JobCreatedResponse",
    "JobItemResponse",
    "JobListResponse",
    "JobResponse",
    "ListResponse",
    "ReprocessRequest",
    "ReprocessResult",
    "ResetInterruptedResponse",
    "StatementDetailResponse",
    "StatementListResponse",
    "StatementResponse",
    "SyncConnectionCreate",
    "SyncConnectionListResponse",
    "SyncConnectionResponse",
    "SyncStartedResponse",
    "SyncWebhookPayload",
    "TransactionListResponse",
    "TransactionResponse",
    "WebhookAck",
]
