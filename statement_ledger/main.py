"""Statement Ledger - FastAPI Application."""

import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from statement_ledger import __version__
from statement_ledger.config import settings
from statement_ledger.database import init_db
from statement_ledger.deps import DbSession
from statement_ledger.logger import configure_logging, get_logger
from statement_ledger.routers import jobs, statements, sync, transactions
from statement_ledger.services.workers import background_runner

# Initialize logging early
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan - init DB on startup, drain background work on shutdown."""
    await init_db()
    logger.info("Application started", version=__version__, environment=settings.environment)
    yield
    if background_runner.pending:
        logger.info("Waiting for background tasks", pending=background_runner.pending)
        await background_runner.wait_for_tasks()
    logger.info("Application shutting down")


app = FastAPI(
    title="Statement Ledger API",
    description="Bank statement ingestion, balance verification and live-sync reconciliation",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """Bind a request id to every log line and echo it back in ``X-Request-ID``."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())

    # Jobs launched from this request copy the context, so their logs carry the same id.
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Request crashed", duration_ms=round((time.perf_counter() - started) * 1000, 2))
        raise

    if request.url.path != "/health":
        emit = logger.warning if response.status_code >= 500 else logger.info
        emit(
            "Request handled",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected errors become a JSON 500 that carries the request id for support lookups."""
    content: dict[str, Any] = {
        "detail": str(exc) if settings.debug else "An internal server error occurred. Please try again later.",
        "request_id": structlog.contextvars.get_contextvars().get("request_id"),
    }
    if settings.debug:
        content["trace"] = traceback.format_exception(exc)
    return JSONResponse(status_code=500, content=content)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(statements.router)
app.include_router(jobs.router)
app.include_router(sync.router)
app.include_router(transactions.router)


@app.get("/health")
async def health_check(db: DbSession) -> Response:
    """Returns 200 when the database answers, 503 otherwise."""
    checks: dict[str, bool] = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as exc:
        logger.error("Health check: database unreachable", error=str(exc), error_type=type(exc).__name__)
        checks["database"] = False

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={
            "status": "healthy" if all_healthy else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
            "version": __version__,
            "background_tasks": background_runner.pending,
        },
    )
