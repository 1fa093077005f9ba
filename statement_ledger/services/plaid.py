"""Plaid transactions/sync client over httpx."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from statement_ledger.config import settings
from statement_ledger.logger import get_logger

logger = get_logger(__name__)


class SyncProviderError(Exception):
    """The bank-sync provider call failed or returned something unusable."""


@dataclass(frozen=True)
class ProviderTransaction:
    """One transaction in the provider's own sign convention (outflow positive)."""

    transaction_id: str
    txn_date: date
    amount: Decimal
    name: str | None = None
    merchant_name: str | None = None
    pending: bool = False
    category: str | None = None


@dataclass
class SyncPage:
    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise SyncProviderError(f"Invalid transaction amount: {value!r}") from exc


def parse_provider_transaction(raw: dict[str, Any]) -> ProviderTransaction:
    transaction_id = raw.get("transaction_id")
    if not transaction_id:
        raise SyncProviderError("Provider transaction is missing transaction_id")
    try:
        txn_date = date.fromisoformat(str(raw.get("date")))
    except ValueError as exc:
        raise SyncProviderError(f"Invalid transaction date: {raw.get('date')!r}") from exc

    category = (raw.get("personal_finance_category") or {}).get("primary")
    return ProviderTransaction(
        transaction_id=str(transaction_id),
        txn_date=txn_date,
        amount=_to_decimal(raw.get("amount")),
        name=raw.get("name"),
        merchant_name=raw.get("merchant_name"),
        pending=bool(raw.get("pending", False)),
        category=category,
    )


def parse_sync_page(payload: dict[str, Any]) -> SyncPage:
    return SyncPage(
        added=[parse_provider_transaction(item) for item in payload.get("added") or []],
        modified=[parse_provider_transaction(item) for item in payload.get("modified") or []],
        removed=[item["transaction_id"] for item in payload.get("removed") or [] if item.get("transaction_id")],
        next_cursor=payload.get("next_cursor"),
        has_more=bool(payload.get("has_more", False)),
    )


class PlaidClient:
    """Minimal client for the one endpoint the sync engine needs."""

    def __init__(
        self,
        *,
        client_id: str | None = None,
        secret: str | None = None,
        base_url: str | None = None,
        page_size: int | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.client_id = client_id if client_id is not None else settings.plaid_client_id
        self.secret = secret if secret is not None else settings.plaid_secret
        self.base_url = (base_url or settings.plaid_base_url).rstrip("/")
        self.page_size = page_size or settings.plaid_page_size
        self.timeout = timeout

    async def transactions_sync(self, access_token: str, cursor: str | None) -> SyncPage:
        if not self.client_id or not self.secret:
            raise SyncProviderError("Plaid credentials are not configured")

        body: dict[str, Any] = {
            "client_id": self.client_id,
            "secret": self.secret,
            "access_token": access_token,
            "count": self.page_size,
        }
        if cursor:
            body["cursor"] = cursor

        timeout = httpx.Timeout(self.timeout, connect=5.0)
        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(f"{self.base_url}/transactions/sync", json=body)
        except httpx.HTTPError as exc:
            raise SyncProviderError(f"Plaid request failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                error_payload = response.json()
            except ValueError:
                error_payload = {}
            message = error_payload.get("error_message") or response.text[:200] or f"HTTP {response.status_code}"
            raise SyncProviderError(f"Plaid error ({response.status_code}): {message}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SyncProviderError("Plaid returned a non-JSON response") from exc
        page = parse_sync_page(payload)
        logger.debug(
            "Fetched Plaid sync page",
            added=len(page.added),
            modified=len(page.modified),
            removed=len(page.removed),
            has_more=page.has_more,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return page
