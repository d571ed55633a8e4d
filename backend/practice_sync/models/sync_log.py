"""
PracticeSync — Sync Log Model
===============================

What:  One row per sync attempt (full, webhook, manual).
Why:   Audit trail and the input to the healthy/stale/error status report.
How:   Inserted as `in_progress` when a run starts, completed with `success`
       or `error` when it ends. Writes are best-effort: a failure to record
       a row never changes the outcome of the sync itself.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from practice_sync.database import Base
from practice_sync.models.enums import SyncLogStatus
from practice_sync.models.mixins import UUIDPrimaryKeyMixin, utc_now


class SyncLog(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "sync_logs"

    # Values: full, incremental, webhook, manual
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Values: practitioner, client, session, all
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Remote id of the entity that triggered the run, if any",
    )
    operation: Mapped[str] = mapped_column(String(20), nullable=False)

    # Values: pending, in_progress, success, error
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SyncLogStatus.PENDING.value,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    practitioner_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("practitioners.id"),
        nullable=True,
        comment="Practitioner the run was scoped to; NULL for unscoped webhook runs",
    )

    __table_args__ = (
        Index("idx_sync_logs_practitioner_started", "practitioner_id", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncLog(id={self.id}, type='{self.sync_type}', "
            f"status='{self.status}', records={self.records_processed})>"
        )
