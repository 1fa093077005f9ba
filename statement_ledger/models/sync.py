"""Live bank-sync connection model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from statement_ledger.database import Base
from statement_ledger.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin, enum_values


class SyncConnectionStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"


class SyncConnection(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """A linked institution item on the sync provider and its incremental cursor."""

    __tablename__ = "sync_connections"

    item_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    access_token: Mapped[str] = mapped_column(String(255), nullable=False)
    institution_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # None means the next sync starts from the beginning of history
    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[SyncConnectionStatus] = mapped_column(
        SQLEnum(SyncConnectionStatus, name="sync_connection_status_enum", values_callable=enum_values),
        nullable=False,
        default=SyncConnectionStatus.ACTIVE,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
