"""Test fixtures and configuration."""

import os

# Settings are read at import time; point them at throwaway backends first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["ENVIRONMENT"] = "testing"
os.environ["STORAGE_BACKEND"] = "local"

import copy  # noqa: E402
from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from statement_ledger import database  # noqa: E402
from statement_ledger.config import settings  # noqa: E402
from statement_ledger.database import Base, create_engine_for, create_session_maker  # noqa: E402
from statement_ledger.services.extraction import ExtractionFailure  # noqa: E402
from statement_ledger.services.plaid import SyncPage  # noqa: E402
from statement_ledger.services.statement_processor import StatementProcessor  # noqa: E402
from statement_ledger.services.storage import LocalStorageService  # noqa: E402
from statement_ledger.services.sync import SyncService  # noqa: E402
from statement_ledger.services.workers import wait_for_background_tasks  # noqa: E402

from tests.factories import FAIL_MARKER, make_payload  # noqa: E402


class FakeExtractor:
    """Returns a canned payload; fails when the document text carries ``FAIL_MARKER``."""

    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self.payload = payload or make_payload()
        self.calls: list[str] = []

    async def extract(self, text: str, *, bank_hint: str | None = None) -> dict[str, Any]:
        self.calls.append(text)
        if FAIL_MARKER in text:
            raise ExtractionFailure("Failed to extract statement period dates.")
        return copy.deepcopy(self.payload)


class FakeSyncProvider:
    """Serves pre-built pages in order and records the cursor of every call."""

    def __init__(self, pages: list[SyncPage] | None = None, *, fail_at: int | None = None) -> None:
        self.pages = list(pages or [])
        self.fail_at = fail_at
        self.cursors: list[str | None] = []

    async def transactions_sync(self, access_token: str, cursor: str | None) -> SyncPage:
        call = len(self.cursors)
        self.cursors.append(cursor)
        if self.fail_at is not None and call == self.fail_at:
            from statement_ledger.services.plaid import SyncProviderError

            raise SyncProviderError("ITEM_LOGIN_REQUIRED: the login details of this item have changed")
        if not self.pages:
            return SyncPage(next_cursor=cursor, has_more=False)
        return self.pages.pop(0)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Per-test SQLite database file so background sessions see committed rows."""
    from statement_ledger import models  # noqa: F401

    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine):
    """Route every ``get_session_maker()`` caller to the test database."""
    maker = create_session_maker(db_engine)
    previous = database.set_test_session_maker(maker)
    yield maker
    # Background work must finish while the test database still exists
    await wait_for_background_tasks()
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def storage(tmp_path, monkeypatch):
    root = tmp_path / "storage"
    monkeypatch.setattr(settings, "storage_backend", "local")
    monkeypatch.setattr(settings, "local_storage_root", str(root))
    return LocalStorageService(root)


@pytest.fixture
def owner_id():
    return uuid4()


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def fake_provider():
    return FakeSyncProvider()


@pytest.fixture
def processor(session_maker, storage, fake_extractor):
    return StatementProcessor(session_maker, extractor=fake_extractor, storage=storage)


@pytest.fixture
def sync_service(session_maker, fake_provider):
    return SyncService(session_maker, provider=fake_provider)


@pytest.fixture
def auth_headers(owner_id) -> dict[str, str]:
    from statement_ledger.security import create_access_token

    token = create_access_token(owner_id)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_maker, storage, processor, sync_service, auth_headers):
    """Authenticated client with collaborators swapped for local fakes."""
    from statement_ledger.deps import get_statement_processor, get_statement_storage, get_sync_service
    from statement_ledger.main import app

    overrides: dict[Callable[..., Any], Callable[..., Any]] = {
        get_statement_storage: lambda: storage,
        get_statement_processor: lambda: processor,
        get_sync_service: lambda: sync_service,
    }
    app.dependency_overrides.update(overrides)
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test", headers=auth_headers) as client_instance:
            yield client_instance
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest_asyncio.fixture
async def public_client(session_maker):
    """Client without auth headers."""
    from statement_ledger.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
        yield client_instance
