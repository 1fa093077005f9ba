"""Tests for extraction payload normalization and the OpenRouter-backed extractor."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from statement_ledger.config import settings
from statement_ledger.models import AccountType, TransactionType
from statement_ledger.services.extraction import (
    ExtractionFailure,
    ExtractionService,
    infer_account_type,
    normalize_date,
    normalize_extraction,
    parse_amount,
)
from statement_ledger.services.openrouter_streaming import OpenRouterStreamError
from tests.factories import make_payload


class TestParsing:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("1,234.56", Decimal("1234.56")),
            ("(42.00)", Decimal("-42.00")),
            ("$ 10", Decimal("10.00")),
            (12.5, Decimal("12.50")),
            (-3, Decimal("-3.00")),
        ],
    )
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", True, "NaN", {"amount": 1}])
    def test_parse_amount_rejects_garbage(self, raw):
        assert parse_amount(raw) is None

    def test_normalize_date(self):
        assert normalize_date("2024-01-31") == date(2024, 1, 31)
        assert normalize_date("2024-01-31T00:00:00Z") == date(2024, 1, 31)
        assert normalize_date("2024-02-30") is None
        assert normalize_date("31/01/2024") is None
        assert normalize_date(None) is None


class TestAccountType:
    def test_keywords(self):
        assert infer_account_type("MINIMUM PAYMENT due on") is AccountType.CREDIT_CARD
        assert infer_account_type("Home equity line of credit") is AccountType.LINE_OF_CREDIT
        assert infer_account_type("Mortgage principal balance") is AccountType.LOAN
        assert infer_account_type("High interest savings account") is AccountType.SAVINGS
        assert infer_account_type("Everyday banking") is AccountType.CHEQUING

    def test_file_name_is_considered(self):
        assert infer_account_type("", "visa-jan.pdf") is AccountType.CREDIT_CARD

    def test_invalid_account_type_falls_back_to_inference(self):
        data = normalize_extraction(make_payload(account_type="plastic"), text="Credit card statement")
        assert data.account_type is AccountType.CREDIT_CARD


class TestNormalizeExtraction:
    def test_valid_payload(self):
        data = normalize_extraction(make_payload())

        assert data.period_start == date(2024, 1, 1)
        assert data.period_end == date(2024, 1, 31)
        assert data.opening_balance == Decimal("1000.00")
        assert data.closing_balance == Decimal("1550.00")
        assert len(data.transactions) == 4
        assert data.total_deposits == Decimal("700.00")
        assert data.total_withdrawals == Decimal("150.00")

    def test_debit_amounts_are_negative(self):
        payload = make_payload(
            transactions=[{"date": "2024-01-05", "description": "Coffee", "amount": 4.5, "type": "debit"}]
        )
        [txn] = normalize_extraction(payload).transactions
        assert txn.amount == Decimal("-4.50")
        assert txn.transaction_type is TransactionType.DEBIT

    def test_invalid_rows_are_dropped(self):
        payload = make_payload(
            transactions=[
                {"date": "not a date", "description": "x", "amount": 1},
                {"date": "2024-01-02", "description": "y", "amount": "??"},
                {"date": "2024-01-03", "description": "", "amount": "-1.00"},
            ]
        )
        data = normalize_extraction(payload)

        assert data.dropped_transactions == 2
        assert [t.description for t in data.transactions] == ["Unknown"]

    def test_reversed_period_is_swapped(self):
        data = normalize_extraction(make_payload(period_start="2024-01-31", period_end="2024-01-01"))
        assert data.period_start < data.period_end

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"period_start": None}, "period dates"),
            ({"opening_balance": "n/a"}, "opening balance"),
            ({"closing_balance": None}, "closing balance"),
            ({"status": "error", "message": "not a bank statement"}, "not a bank statement"),
            ({"transactions": "lots"}, "malformed transactions"),
        ],
    )
    def test_unusable_payload_raises(self, overrides, message):
        with pytest.raises(ExtractionFailure, match=message):
            normalize_extraction(make_payload(**overrides))

    def test_non_dict_payload(self):
        with pytest.raises(ExtractionFailure, match="malformed"):
            normalize_extraction(["not", "a", "dict"])


async def _chunks(*parts):
    for part in parts:
        yield part


class TestExtractionService:
    async def test_requires_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "openrouter_api_key", "")
        with pytest.raises(ExtractionFailure, match="API key"):
            await ExtractionService().extract("statement text")

    async def test_empty_text_rejected(self, monkeypatch):
        monkeypatch.setattr(settings, "openrouter_api_key", "test-key")
        with pytest.raises(ExtractionFailure, match="No document text"):
            await ExtractionService().extract("   ")

    async def test_falls_back_to_next_model(self, monkeypatch):
        """
        GIVEN the primary model errors
        WHEN extracting
        THEN the fallback model's fenced JSON is parsed
        """
        monkeypatch.setattr(settings, "openrouter_api_key", "test-key")
        calls = []

        def fake_stream(*, model, **kwargs):
            calls.append(model)
            if len(calls) == 1:
                raise OpenRouterStreamError("upstream 503", retryable=True)
            return _chunks("```json\n", '{"status": "success"}', "\n```")

        service = ExtractionService()
        service.primary_model = "primary/model"
        service.fallback_models = ["fallback/model"]
        with patch("statement_ledger.services.extraction.stream_openrouter_json", side_effect=fake_stream):
            result = await service.extract("Opening balance 100")

        assert result == {"status": "success"}
        assert calls == ["primary/model", "fallback/model"]

    async def test_all_models_fail(self, monkeypatch):
        monkeypatch.setattr(settings, "openrouter_api_key", "test-key")
        service = ExtractionService()
        service.primary_model = "only/model"
        service.fallback_models = []
        with patch(
            "statement_ledger.services.extraction.stream_openrouter_json",
            side_effect=lambda **kwargs: _chunks("not json at all"),
        ):
            with pytest.raises(ExtractionFailure, match="Failed to parse JSON"):
                await service.extract("text")
