"""Initial schema for statement ledger."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

statement_status_enum = postgresql.ENUM(
    "pending", "processing", "done", "error", name="statement_status_enum", create_type=False
)
account_type_enum = postgresql.ENUM(
    "chequing", "savings", "credit_card", "line_of_credit", "loan", name="account_type_enum", create_type=False
)
verification_status_enum = postgresql.ENUM(
    "unbalanced", "verified", "human_verified", name="verification_status_enum", create_type=False
)
transaction_type_enum = postgresql.ENUM("credit", "debit", name="transaction_type_enum", create_type=False)
transaction_source_enum = postgresql.ENUM("statement", "sync", name="transaction_source_enum", create_type=False)
job_type_enum = postgresql.ENUM(
    "file_processing", "reprocessing", "bank_sync", name="job_type_enum", create_type=False
)
# Shared by jobs and job_items
job_status_enum = postgresql.ENUM(
    "pending", "running", "completed", "failed", name="job_status_enum", create_type=False
)
sync_connection_status_enum = postgresql.ENUM(
    "active", "error", name="sync_connection_status_enum", create_type=False
)

ALL_ENUMS = (
    statement_status_enum,
    account_type_enum,
    verification_status_enum,
    transaction_type_enum,
    transaction_source_enum,
    job_type_enum,
    job_status_enum,
    sync_connection_status_enum,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ALL_ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        "statements",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=False),
        sa.Column("file_hash", sa.String(length=64), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", statement_status_enum, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bank_name", sa.String(length=100), nullable=True),
        sa.Column("account_name", sa.String(length=200), nullable=True),
        sa.Column("account_number", sa.String(length=64), nullable=True),
        sa.Column("account_type", account_type_enum, nullable=True),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("opening_balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("closing_balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("total_deposits", sa.Numeric(18, 2), nullable=True),
        sa.Column("total_withdrawals", sa.Numeric(18, 2), nullable=True),
        sa.Column("verification_status", verification_status_enum, nullable=True),
        sa.Column("calculated_closing_balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("discrepancy_amount", sa.Numeric(18, 2), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "file_hash", name="uq_statements_user_file_hash"),
    )
    op.create_index("ix_statements_user_id", "statements", ["user_id"])

    op.create_table(
        "balance_verifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("statement_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("calculated_closing_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("statement_opening_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("statement_closing_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("is_balanced", sa.Boolean(), nullable=False),
        sa.Column("discrepancy_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["statement_id"], ["statements.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("statement_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("txn_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("transaction_type", transaction_type_enum, nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source", transaction_source_enum, nullable=False),
        sa.Column("is_provisional", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("external_id", sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["statement_id"], ["statements.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "source", "external_id", name="uq_transactions_user_source_external_id"),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_statement_id", "transactions", ["statement_id"])
    op.create_index("ix_transactions_txn_date", "transactions", ["txn_date"])

    op.create_table(
        "sync_connections",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("item_id", sa.String(length=100), nullable=False, unique=True),
        sa.Column("access_token", sa.String(length=255), nullable=False),
        sa.Column("institution_name", sa.String(length=200), nullable=True),
        sa.Column("cursor", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sync_connection_status_enum, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sync_connections_user_id", "sync_connections", ["user_id"])

    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_type", job_type_enum, nullable=False),
        sa.Column("status", job_status_enum, nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_jobs_user_id", "jobs", ["user_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "job_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("statement_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", job_status_enum, nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["statement_id"], ["statements.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["connection_id"], ["sync_connections.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_job_items_job_id", "job_items", ["job_id"])


def downgrade() -> None:
    op.drop_table("job_items")
    op.drop_table("jobs")
    op.drop_table("sync_connections")
    op.drop_table("transactions")
    op.drop_table("balance_verifications")
    op.drop_table("statements")

    bind = op.get_bind()
    for enum in reversed(ALL_ENUMS):
        enum.drop(bind, checkfirst=True)
