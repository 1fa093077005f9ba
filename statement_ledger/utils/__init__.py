"""Utility helpers."""

from statement_ledger.utils.exceptions import (
    raise_bad_request,
    raise_conflict,
    raise_not_found,
    raise_service_unavailable,
    raise_too_large,
    raise_unauthorized,
)

__all__ = [
    "raise_bad_request",
    "raise_conflict",
    "raise_not_found",
    "raise_service_unavailable",
    "raise_too_large",
    "raise_unauthorized",
]
