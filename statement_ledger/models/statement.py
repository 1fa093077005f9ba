"""Bank statement, verification and ledger transaction models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statement_ledger.database import Base
from statement_ledger.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin, enum_values


class StatementStatus(str, Enum):
    """Statement processing status."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class VerificationStatus(str, Enum):
    """Outcome of balance verification."""

    UNBALANCED = "unbalanced"
    VERIFIED = "verified"
    HUMAN_VERIFIED = "human_verified"


class AccountType(str, Enum):
    """Kind of account a statement belongs to."""

    CHEQUING = "chequing"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    LINE_OF_CREDIT = "line_of_credit"
    LOAN = "loan"

    @property
    def is_liability(self) -> bool:
        return self in (AccountType.CREDIT_CARD, AccountType.LINE_OF_CREDIT, AccountType.LOAN)


class TransactionSource(str, Enum):
    """Where a ledger transaction came from."""

    STATEMENT = "statement"
    SYNC = "sync"


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class Statement(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """Uploaded bank statement and the figures derived from it."""

    __tablename__ = "statements"
    __table_args__ = (UniqueConstraint("user_id", "file_hash", name="uq_statements_user_file_hash"),)

    # File metadata
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Processing
    status: Mapped[StatementStatus] = mapped_column(
        SQLEnum(StatementStatus, name="statement_status_enum", values_callable=enum_values),
        nullable=False,
        default=StatementStatus.PENDING,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Statement details (null until processed)
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    account_type: Mapped[AccountType | None] = mapped_column(
        SQLEnum(AccountType, name="account_type_enum", values_callable=enum_values), nullable=True
    )
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    opening_balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    closing_balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    total_deposits: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    total_withdrawals: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    # Verification
    verification_status: Mapped[VerificationStatus | None] = mapped_column(
        SQLEnum(VerificationStatus, name="verification_status_enum", values_callable=enum_values), nullable=True
    )
    calculated_closing_balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    discrepancy_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="statement",
        cascade="all, delete-orphan",
        order_by="Transaction.sort_order",
    )
    verification: Mapped["BalanceVerification | None"] = relationship(
        "BalanceVerification",
        back_populates="statement",
        cascade="all, delete-orphan",
        uselist=False,
    )


class BalanceVerification(UUIDMixin, TimestampMixin, Base):
    """Latest balance check for a statement."""

    __tablename__ = "balance_verifications"

    statement_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("statements.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    calculated_closing_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    statement_opening_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    statement_closing_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    is_balanced: Mapped[bool] = mapped_column(Boolean, nullable=False)
    discrepancy_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    statement: Mapped[Statement] = relationship("Statement", back_populates="verification")


class Transaction(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """A single ledger row, from a statement or from the bank sync feed."""

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "source", "external_id", name="uq_transactions_user_source_external_id"),
    )

    statement_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("statements.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    txn_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name="transaction_type_enum", values_callable=enum_values), nullable=False
    )
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    source: Mapped[TransactionSource] = mapped_column(
        SQLEnum(TransactionSource, name="transaction_source_enum", values_callable=enum_values), nullable=False
    )
    is_provisional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    statement: Mapped[Statement | None] = relationship("Statement", back_populates="transactions")
