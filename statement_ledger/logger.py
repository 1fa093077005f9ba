"""Structured logging setup.

All application logs go through structlog and are rendered by a single stdlib
handler, so third-party libraries (SQLAlchemy, httpx, boto3, pdfminer) share the
same JSON format. Context bound with ``structlog.contextvars`` (request_id,
job_id, statement_id, connection_id) is merged into every event, and background
tasks inherit it because they copy the spawning context.
"""

import logging
import sys
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from statement_ledger.config import settings

# pdfminer logs every unparsed glyph at INFO; boto and httpx log each request.
NOISY_LOGGERS = ("pdfminer", "pdfplumber", "botocore", "boto3", "urllib3", "httpx", "httpcore")

SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.format_exc_info,
]


def configure_logging() -> None:
    renderer: Processor = structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=SHARED_PROCESSORS))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> BoundLogger:
    return structlog.get_logger(name)


@asynccontextmanager
async def async_log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log how long an operation took and whether it succeeded.

    Usage:
        async with async_log_timing("process_statement", logger=logger) as timing:
            result = await run()
            timing["transaction_count"] = len(result.rows)

    The yielded dict is merged into the final event. A failing block is logged
    with ``outcome="failed"`` at warning level and the exception propagates.
    """
    log = logger or get_logger(__name__)
    started = time.perf_counter()
    extra: dict[str, Any] = {}
    outcome = "failed"
    try:
        yield extra
        outcome = "succeeded"
    finally:
        emit = getattr(log, level if outcome == "succeeded" else "warning", log.info)
        emit(
            f"{operation} {outcome}",
            operation=operation,
            outcome=outcome,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            **context,
            **extra,
        )


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log ``exc`` under ``context`` with its type; tracebacks are optional for expected failures."""
    emit = getattr(logger, level, logger.error)
    fields: dict[str, Any] = {"error": str(exc), "error_type": type(exc).__name__, **extra}
    if include_traceback:
        fields["exc_info"] = exc
    emit(context, **fields)
