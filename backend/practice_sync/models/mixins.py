"""
PracticeSync — Shared Model Columns
=====================================

Primary key and audit timestamps repeated on every synced table.

Why Python-side defaults (no server_default):
    The same models are created on PostgreSQL by Alembic and on SQLite by the
    test suite; generating the UUID and timestamps in Python keeps both paths
    identical.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class UUIDPrimaryKeyMixin:
    # Local identifier; the Halaxy id lives in its own unique column
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Locally generated identifier",
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        comment="When the row was first inserted (UTC)",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        comment="When the row was last written (UTC)",
    )
