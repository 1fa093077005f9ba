"""Live bank-sync API router: connections, manual sync and provider webhooks."""

from uuid import UUID

import structlog
from fastapi import APIRouter, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from statement_ledger.deps import CurrentUserId, DbSession, Runner
from statement_ledger.logger import get_logger
from statement_ledger.models import SyncConnection
from statement_ledger.schemas import (
    SyncConnectionCreate,
    SyncConnectionListResponse,
    SyncConnectionResponse,
    SyncStartedResponse,
    SyncWebhookPayload,
    WebhookAck,
)
from statement_ledger.services import create_sync_job, launch_job
from statement_ledger.services.sync import delete_connection, mark_connection_error
from statement_ledger.utils import raise_bad_request, raise_conflict, raise_not_found

router = APIRouter(prefix="/sync", tags=["sync"])

logger = get_logger(__name__)

SYNC_WEBHOOK_CODES = frozenset(
    {"SYNC_UPDATES_AVAILABLE", "DEFAULT_UPDATE", "INITIAL_UPDATE", "HISTORICAL_UPDATE"}
)


async def _get_owned_connection(db: DbSession, connection_id: UUID, user_id: UUID) -> SyncConnection:
    connection = await db.scalar(
        select(SyncConnection).where(SyncConnection.id == connection_id).where(SyncConnection.user_id == user_id)
    )
    if connection is None:
        raise_not_found("Sync connection")
    return connection


@router.post("/connections", response_model=SyncConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    payload: SyncConnectionCreate,
    db: DbSession,
    user_id: CurrentUserId,
) -> SyncConnectionResponse:
    """Register a linked institution item. The first sync starts from the beginning of history."""
    connection = SyncConnection(
        user_id=user_id,
        item_id=payload.item_id,
        access_token=payload.access_token,
        institution_name=payload.institution_name,
    )
    db.add(connection)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise_conflict("A connection for this item is already registered", cause=exc)
    await db.refresh(connection)

    logger.info("Sync connection registered", connection_id=str(connection.id), item_id=connection.item_id)
    return SyncConnectionResponse.model_validate(connection)


@router.get("/connections", response_model=SyncConnectionListResponse)
async def list_connections(
    db: DbSession,
    user_id: CurrentUserId,
) -> SyncConnectionListResponse:
    result = await db.execute(
        select(SyncConnection)
        .where(SyncConnection.user_id == user_id)
        .order_by(SyncConnection.created_at.desc())
    )
    items = [SyncConnectionResponse.model_validate(c) for c in result.scalars().all()]
    return SyncConnectionListResponse(items=items, total=len(items))


@router.get("/connections/{connection_id}", response_model=SyncConnectionResponse)
async def get_connection(
    connection_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> SyncConnectionResponse:
    connection = await _get_owned_connection(db, connection_id, user_id)
    return SyncConnectionResponse.model_validate(connection)


@router.delete("/connections/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_connection(
    connection_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> None:
    """Disconnect an item and drop the provisional rows it fed."""
    connection = await _get_owned_connection(db, connection_id, user_id)
    await delete_connection(db, connection)


@router.post(
    "/connections/{connection_id}/sync",
    response_model=SyncStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_sync(
    connection_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    runner: Runner,
) -> SyncStartedResponse:
    """Start a sync in the background; follow it through the returned job."""
    connection = await _get_owned_connection(db, connection_id, user_id)
    job = await create_sync_job(db, connection)
    launch_job(runner, job.id, user_id)
    return SyncStartedResponse(connection_id=connection.id, job_id=job.id)


@router.post("/webhook", response_model=WebhookAck)
async def sync_webhook(
    payload: SyncWebhookPayload,
    db: DbSession,
    runner: Runner,
) -> WebhookAck:
    """Provider notifications. Unauthenticated; the item id must match a registered connection."""
    if not payload.item_id:
        raise_bad_request("Missing item_id")

    structlog.contextvars.bind_contextvars(item_id=payload.item_id)
    connection = await db.scalar(select(SyncConnection).where(SyncConnection.item_id == payload.item_id))
    if connection is None:
        logger.info("Webhook for unknown item ignored", webhook_type=payload.webhook_type)
        return WebhookAck()

    logger.info("Sync webhook received", webhook_type=payload.webhook_type, webhook_code=payload.webhook_code)

    if payload.webhook_type == "TRANSACTIONS" and payload.webhook_code in SYNC_WEBHOOK_CODES:
        job = await create_sync_job(db, connection)
        launch_job(runner, job.id, connection.user_id)
        return WebhookAck(job_id=job.id)

    if payload.webhook_type == "ITEM" and payload.webhook_code == "ERROR":
        message = (payload.error or {}).get("error_message")
        await mark_connection_error(db, connection, message)

    return WebhookAck()
