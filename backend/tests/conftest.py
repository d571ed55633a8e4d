"""
PracticeSync — Test Configuration (conftest.py)
=================================================

Fixture Hierarchy (all function-scoped):
    test_settings ─┐
    engine ────────┼── session_factory ──┬── store / sync_log
                   │                     └── sync_service (+ fake_remote)
                   └── test_client (FastAPI app with the above on app.state)

The database is in-memory SQLite (aiosqlite) behind a StaticPool, so every
session in a test shares one connection and sees the same tables.
"""

import os

# Must be set before any practice_sync import reads Settings()
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["HALAXY_CLIENT_ID"] = "test-client-id"
os.environ["HALAXY_CLIENT_SECRET"] = "test-client-secret"
os.environ["HALAXY_WEBHOOK_SECRET"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from practice_sync.config import Settings
from practice_sync.database import Base, create_session_factory
import practice_sync.models  # noqa: F401
from practice_sync.services.sync_log import SyncLogService
from practice_sync.services.sync_service import SyncService
from practice_sync.services.sync_store import SyncStore

from fhir_factories import NOW, FakeHalaxyClient


# ══════════════════════════════════════════════════════════════════════════
# Settings & Database
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings():
    """Explicit settings; no .env file is read."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        halaxy_client_id="test-client-id",
        halaxy_client_secret="test-client-secret",
        halaxy_webhook_secret="",
        halaxy_fhir_url="https://fhir.test/fhir",
        halaxy_token_url="https://fhir.test/oauth2/token",
        retry_max_attempts=3,
        retry_min_wait=0,
        retry_max_wait=0,
        retry_jitter=0,
        rate_limit_requests=2,
        rate_limit_window=60,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


# ══════════════════════════════════════════════════════════════════════════
# Services
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_remote():
    return FakeHalaxyClient()


@pytest.fixture
def store(session_factory):
    return SyncStore(session_factory)


@pytest.fixture
def sync_log(session_factory):
    return SyncLogService(session_factory, stale_after=timedelta(hours=1), clock=lambda: NOW)


@pytest.fixture
def sync_service(fake_remote, store, sync_log, test_settings):
    """SyncService over the fake remote with the clock pinned to NOW."""
    return SyncService(
        remote=fake_remote,
        store=store,
        sync_log=sync_log,
        settings=test_settings,
        clock=lambda: NOW,
    )


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def app(test_settings, engine, session_factory, sync_service):
    """
    FastAPI app with state filled in directly.

    ASGITransport does not run the lifespan, so nothing here opens a real
    database or Halaxy connection.
    """
    from practice_sync.main import create_app

    app = create_app(test_settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.sync_service = sync_service
    return app


@pytest_asyncio.fixture
async def test_client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
