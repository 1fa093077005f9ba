"""Async engine and session plumbing.

Request handlers get a session through ``get_db``. Work that outlives a
request (job runs, syncs, ledger recalculation) opens its own sessions from
``get_session_maker()`` so tests can redirect both to one database.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from statement_ledger.config import settings


class Base(DeclarativeBase):
    pass


def create_engine_for(url: str, **overrides: Any) -> AsyncEngine:
    """Engine for ``url``; SQLite gets no pool sizing."""
    options: dict[str, Any] = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        options.update(pool_pre_ping=True, pool_size=10, max_overflow=20, pool_recycle=3600)
    options.update(overrides)
    return create_async_engine(url, **options)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows stay readable after commit; job runners report on them afterwards.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine_for(settings.database_url)
async_session_maker = create_session_maker(engine)

_override_session_maker: async_sessionmaker[AsyncSession] | None = None


def set_test_session_maker(
    maker: async_sessionmaker[AsyncSession] | None,
) -> async_sessionmaker[AsyncSession] | None:
    """Point every session consumer at ``maker``; returns the previous override."""
    global _override_session_maker
    previous = _override_session_maker
    _override_session_maker = maker
    return previous


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return _override_session_maker or async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create tables when auto_create_schema is set; otherwise Alembic owns the schema."""
    from statement_ledger import models  # noqa: F401
    from statement_ledger.logger import get_logger

    logger = get_logger(__name__)
    if not settings.auto_create_schema:
        logger.info("Database schema managed by migrations")
        return
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema created from metadata", tables=len(Base.metadata.tables))
