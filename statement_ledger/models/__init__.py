"""SQLAlchemy models package."""

from statement_ledger.models.job import JOB_TYPE_LABELS, Job, JobItem, JobStatus, JobType
from statement_ledger.models.statement import (
    AccountType,
    BalanceVerification,
    Statement,
    StatementStatus,
    Transaction,
    TransactionSource,
    TransactionType,
    VerificationStatus,
)
from statement_ledger.models.sync import SyncConnection, SyncConnectionStatus

__all__ = [
    "AccountType",
    "BalanceVerification",
    "JOB_TYPE_LABELS",
    "Job",
    "JobItem",
    "JobStatus",
    "JobType",
    "Statement",
    "StatementStatus",
    "SyncConnection",
    "SyncConnectionStatus",
    "Transaction",
    "TransactionSource",
    "TransactionType",
    "VerificationStatus",
]
