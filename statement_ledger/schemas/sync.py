"""Pydantic schemas for bank-sync connections and provider webhooks."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from statement_ledger.models.sync import SyncConnectionStatus
from statement_ledger.schemas.base import BaseResponse, ListResponse


class SyncConnectionCreate(BaseModel):
    item_id: str = Field(..., min_length=1, max_length=100)
    access_token: str = Field(..., min_length=1, max_length=255)
    institution_name: str | None = Field(None, max_length=200)


class SyncConnectionResponse(BaseResponse):
    """Connection as shown to its owner; the access token never leaves the server."""

    id: UUID
    item_id: str
    institution_name: str | None
    status: SyncConnectionStatus
    error_message: str | None
    last_synced_at: datetime | None
    created_at: datetime


SyncConnectionListResponse = ListResponse[SyncConnectionResponse]


class SyncStartedResponse(BaseModel):
    connection_id: UUID
    job_id: UUID


class SyncWebhookPayload(BaseModel):
    webhook_type: str | None = None
    webhook_code: str | None = None
    item_id: str | None = None
    error: dict[str, Any] | None = None


class WebhookAck(BaseModel):
    received: bool = True
    job_id: UUID | None = None
