"""Pydantic schemas for statement upload, processing and verification."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from statement_ledger.models.statement import (
    AccountType,
    StatementStatus,
    TransactionSource,
    TransactionType,
    VerificationStatus,
)
from statement_ledger.schemas.base import BaseResponse, ListResponse

# --- Request Schemas ---


class ReprocessRequest(BaseModel):
    statement_ids: list[UUID] = Field(..., min_length=1, description="Statements to reprocess, in order")


# --- Response Schemas ---


class TransactionResponse(BaseResponse):
    id: UUID
    statement_id: UUID | None
    txn_date: date
    description: str
    amount: Decimal
    balance: Decimal | None
    category: str | None
    transaction_type: TransactionType
    reference: str | None
    sort_order: int
    source: TransactionSource
    is_provisional: bool
    external_id: str | None


class BalanceVerificationResponse(BaseResponse):
    calculated_closing_balance: Decimal
    statement_opening_balance: Decimal
    statement_closing_balance: Decimal
    is_balanced: bool
    discrepancy_amount: Decimal
    notes: str | None


class StatementResponse(BaseResponse):
    """Statement record without its transactions."""

    id: UUID
    original_filename: str
    file_hash: str
    file_size: int
    status: StatementStatus
    error_message: str | None
    processed_at: datetime | None
    bank_name: str | None
    account_name: str | None
    account_number: str | None
    account_type: AccountType | None
    period_start: date | None
    period_end: date | None
    opening_balance: Decimal | None
    closing_balance: Decimal | None
    total_deposits: Decimal | None
    total_withdrawals: Decimal | None
    verification_status: VerificationStatus | None
    calculated_closing_balance: Decimal | None
    discrepancy_amount: Decimal | None
    created_at: datetime
    updated_at: datetime


class StatementDetailResponse(StatementResponse):
    verification: BalanceVerificationResponse | None = None


StatementListResponse = ListResponse[StatementResponse]

TransactionListResponse = ListResponse[TransactionResponse]


class DuplicateFileResponse(BaseResponse):
    file_name: str
    existing_statement_id: UUID


class FileFailureResponse(BaseResponse):
    file_name: str
    error: str


class BulkUploadResponse(BaseModel):
    """Per-file outcome of a bulk upload; one bad file never hides the others."""

    imported: list[StatementResponse] = Field(default_factory=list)
    duplicates: list[DuplicateFileResponse] = Field(default_factory=list)
    errors: list[FileFailureResponse] = Field(default_factory=list)
    job_ids: list[UUID] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_imported(self) -> int:
        return len(self.imported)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_duplicates(self) -> int:
        return len(self.duplicates)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_errors(self) -> int:
        return len(self.errors)


class ReprocessResult(BaseModel):
    id: UUID
    success: bool
    transaction_count: int = 0
    is_balanced: bool | None = None
    error: str | None = None


class BatchReprocessResponse(BaseModel):
    processed: int
    failed: int
    results: list[ReprocessResult]
