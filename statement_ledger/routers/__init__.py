"""API routers package."""

from statement_ledger.routers import jobs, statements, sync, transactions

__all__ = [
    "jobs",
    "statements",
    "sync",
    "transactions",
]
