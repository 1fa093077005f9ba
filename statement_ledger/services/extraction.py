"""Structured extraction of statement fields from document text.

``ExtractionService`` asks an LLM (OpenRouter, JSON mode) for the raw
payload; ``normalize_extraction`` validates it and converts it into typed
values. Anything unusable raises ``ExtractionFailure``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from statement_ledger.config import settings
from statement_ledger.logger import get_logger
from statement_ledger.models import AccountType, TransactionType
from statement_ledger.prompts import get_extraction_prompt, wrap_statement_text
from statement_ledger.services.openrouter_streaming import (
    OpenRouterStreamError,
    accumulate_stream,
    stream_openrouter_json,
)

logger = get_logger(__name__)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_AMOUNT_NOISE = re.compile(r"[,\s$€£]")

# Checked in order; the first family with a hit wins.
ACCOUNT_TYPE_PATTERNS: list[tuple[AccountType, list[str]]] = [
    (
        AccountType.CREDIT_CARD,
        [
            r"credit\s*card",
            r"mastercard",
            r"\bvisa\b",
            r"\bamex\b",
            r"american\s*express",
            r"minimum\s*payment",
            r"payment\s*due\s*date",
            r"credit\s*limit",
            r"available\s*credit",
            r"cash\s*advance",
            r"annual\s*fee",
            r"interest\s*charge",
            r"purchase\s*interest",
            r"new\s*balance",
            r"balance\s*owing",
            r"amount\s*owing",
            r"total\s*due",
        ],
    ),
    (AccountType.LINE_OF_CREDIT, [r"line\s*of\s*credit", r"\bloc\b", r"heloc"]),
    (AccountType.LOAN, [r"\bmortgage\b", r"\bloan\b", r"amortization", r"principal\s*balance"]),
    (
        AccountType.SAVINGS,
        [r"savings?\s*account", r"\bsavings\b", r"\btfsa\b", r"tax.free\s*savings"],
    ),
]


class ExtractionFailure(Exception):
    """Raised when no usable statement data can be extracted."""


class StatementExtractor(Protocol):
    async def extract(self, text: str, *, bank_hint: str | None = None) -> dict[str, Any]: ...


@dataclass
class ExtractedTransaction:
    txn_date: date
    description: str
    amount: Decimal
    transaction_type: TransactionType
    balance: Decimal | None = None
    reference: str | None = None
    category: str | None = None


@dataclass
class ExtractedStatement:
    period_start: date
    period_end: date
    opening_balance: Decimal
    closing_balance: Decimal
    account_type: AccountType
    bank_name: str | None = None
    account_name: str | None = None
    account_number: str | None = None
    total_deposits: Decimal = Decimal("0")
    total_withdrawals: Decimal = Decimal("0")
    transactions: list[ExtractedTransaction] = field(default_factory=list)
    dropped_transactions: int = 0


def normalize_date(value: Any) -> date | None:
    """Parse a YYYY-MM-DD prefix (time suffixes are ignored); None when invalid."""
    if not value or not isinstance(value, str):
        return None
    match = _ISO_DATE.match(value.strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def parse_amount(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    elif isinstance(value, str):
        raw = _AMOUNT_NOISE.sub("", value)
        # Accounting negatives: (42.00)
        if raw.startswith("(") and raw.endswith(")"):
            raw = f"-{raw[1:-1]}"
    else:
        return None
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        return None
    return amount.quantize(Decimal("0.01")) if amount.is_finite() else None


def infer_account_type(text: str, file_name: str = "") -> AccountType:
    haystacks = (text.lower(), file_name.lower())
    for account_type, patterns in ACCOUNT_TYPE_PATTERNS:
        for pattern in patterns:
            if any(re.search(pattern, haystack) for haystack in haystacks):
                return account_type
    return AccountType.CHEQUING


def normalize_account_type(value: Any, text: str, file_name: str = "") -> AccountType:
    """Accept the extractor's account type when valid, otherwise infer it from keywords."""
    if isinstance(value, str):
        try:
            return AccountType(value.strip().lower())
        except ValueError:
            pass
    logger.info("Extractor returned invalid account type, inferring from text", account_type=value)
    return infer_account_type(text, file_name)


def _normalize_transaction(raw: dict[str, Any]) -> ExtractedTransaction | None:
    txn_date = normalize_date(raw.get("date"))
    amount = parse_amount(raw.get("amount"))
    if txn_date is None or amount is None:
        return None

    raw_type = str(raw.get("type") or "").strip().lower()
    if raw_type in (TransactionType.CREDIT.value, TransactionType.DEBIT.value):
        txn_type = TransactionType(raw_type)
    else:
        txn_type = TransactionType.CREDIT if amount >= 0 else TransactionType.DEBIT

    # Credits are inflows and debits outflows whatever sign the extractor used
    signed = abs(amount) if txn_type is TransactionType.CREDIT else -abs(amount)

    description = str(raw.get("description") or "").strip() or "Unknown"
    reference = raw.get("reference") or raw.get("reference_number")
    return ExtractedTransaction(
        txn_date=txn_date,
        description=description,
        amount=signed,
        transaction_type=txn_type,
        balance=parse_amount(raw.get("balance")),
        reference=str(reference)[:100] if reference else None,
        category=raw.get("category") or None,
    )


def normalize_extraction(payload: Any, *, text: str = "", file_name: str = "") -> ExtractedStatement:
    """Validate an extractor payload and convert it into typed statement data."""
    if not isinstance(payload, dict):
        raise ExtractionFailure("Extraction returned malformed output")

    if payload.get("status") == "error":
        raise ExtractionFailure(f"Unable to process statement: {payload.get('message') or 'unknown reason'}")

    period_start = normalize_date(payload.get("period_start"))
    period_end = normalize_date(payload.get("period_end"))
    if period_start is None or period_end is None:
        raise ExtractionFailure("Failed to extract statement period dates.")
    if period_start > period_end:
        period_start, period_end = period_end, period_start

    opening = parse_amount(payload.get("opening_balance"))
    if opening is None:
        raise ExtractionFailure("Failed to extract opening balance from statement.")
    closing = parse_amount(payload.get("closing_balance"))
    if closing is None:
        raise ExtractionFailure("Failed to extract closing balance from statement.")

    raw_transactions = payload.get("transactions") or []
    if not isinstance(raw_transactions, list):
        raise ExtractionFailure("Extraction returned malformed transactions")

    transactions: list[ExtractedTransaction] = []
    dropped = 0
    for raw in raw_transactions:
        txn = _normalize_transaction(raw) if isinstance(raw, dict) else None
        if txn is None:
            dropped += 1
            continue
        transactions.append(txn)
    if dropped:
        logger.warning("Dropped transactions with invalid date or amount", dropped=dropped)

    deposits = parse_amount(payload.get("total_deposits"))
    withdrawals = parse_amount(payload.get("total_withdrawals"))
    if deposits is None:
        deposits = sum((t.amount for t in transactions if t.amount > 0), Decimal("0"))
    if withdrawals is None:
        withdrawals = sum((-t.amount for t in transactions if t.amount < 0), Decimal("0"))

    return ExtractedStatement(
        period_start=period_start,
        period_end=period_end,
        opening_balance=opening,
        closing_balance=closing,
        account_type=normalize_account_type(payload.get("account_type"), text, file_name),
        bank_name=payload.get("bank_name") or None,
        account_name=payload.get("account_name") or None,
        account_number=str(payload["account_number"]) if payload.get("account_number") else None,
        total_deposits=abs(deposits),
        total_withdrawals=abs(withdrawals),
        transactions=transactions,
        dropped_transactions=dropped,
    )


def _parse_json_content(content: str) -> dict[str, Any]:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", content, re.DOTALL)
        if fenced:
            return json.loads(fenced.group(1))
        raise


class ExtractionService:
    """Extracts statement fields from text with OpenRouter, falling back across models."""

    def __init__(self) -> None:
        self.api_key = settings.openrouter_api_key
        self.base_url = settings.openrouter_base_url
        self.primary_model = settings.primary_model
        self.fallback_models = settings.fallback_models
        self.timeout = settings.extraction_timeout_seconds

    async def extract(self, text: str, *, bank_hint: str | None = None) -> dict[str, Any]:
        if not text.strip():
            raise ExtractionFailure("No document text to extract from")
        if not self.api_key:
            raise ExtractionFailure("OpenRouter API key not configured")

        messages = [
            {"role": "system", "content": get_extraction_prompt(bank_hint)},
            {"role": "user", "content": wrap_statement_text(text)},
        ]
        models = [m for m in [self.primary_model, *self.fallback_models] if m]
        last_error: ExtractionFailure | None = None

        for attempt, model in enumerate(models, start=1):
            logger.info("Attempting statement extraction", model=model, attempt=attempt, total=len(models))
            try:
                content = await accumulate_stream(
                    stream_openrouter_json(
                        messages=messages,
                        model=model,
                        api_key=self.api_key,
                        base_url=self.base_url,
                        timeout=self.timeout,
                    )
                )
            except OpenRouterStreamError as exc:
                logger.warning("Extraction model failed", model=model, error=str(exc), retryable=exc.retryable)
                last_error = ExtractionFailure(f"Model {model} failed: {exc}")
                continue

            if not content.strip():
                logger.error("Extraction model returned empty response", model=model)
                last_error = ExtractionFailure(f"Model {model} returned empty response")
                continue

            try:
                parsed = _parse_json_content(content)
            except json.JSONDecodeError as exc:
                logger.error("Failed to parse extraction JSON", model=model, raw_preview=content[:500])
                last_error = ExtractionFailure(f"Failed to parse JSON response: {exc}")
                continue

            logger.info("Statement extraction succeeded", model=model)
            return parsed

        raise last_error or ExtractionFailure("Extraction failed for all models")
