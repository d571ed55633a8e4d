"""
PracticeSync — Database Engine & Session Management
=====================================================

What:  Async SQLAlchemy engine factory, session factory, declarative base
       and lifecycle helpers.
Why:   The engine is built once per process (API lifespan or CLI run) and
       handed to the services that need it, so tests can swap in an
       in-memory SQLite engine without touching module state.
How:   create_engine_from_settings() builds a pooled async engine;
       create_session_factory() wraps it in an async_sessionmaker.
Who:   main.py lifespan, cli.py, and the test fixtures.

Connection Pooling Strategy:
    pool_size=20 / max_overflow=10 for PostgreSQL; SQLite (tests, local runs)
    uses SQLAlchemy's default pool since it does not accept sizing arguments.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from practice_sync.config import Settings


# ── Engine Configuration ──────────────────────────────────────────────────
def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Build the async engine for the configured database URL.

    Pool sizing only applies to server databases; SQLite rejects the options.
    """
    kwargs = {"echo": settings.log_level == "DEBUG"}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(settings.database_url, **kwargs)


# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: ORM objects stay readable after the unit of work
# commits, which the sync service relies on when it returns local ids
def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object between the models and Alembic.
    """
    pass


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine(engine: AsyncEngine) -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown and at the end of CLI runs.
    """
    await engine.dispose()
