"""Statement ingestion, job orchestration and bank-sync reconciliation backend."""

__version__ = "0.1.0"
