"""
PracticeSync — Client Model
=============================

What:  ORM model for the `clients` table (a Halaxy Patient, locally).
Why:   Holds the Mental Health Care Plan (MHCP) quota alongside contact data.

MHCP invariant:
    mhcp_used_sessions is recomputed from this client's completed sessions
    with the owning practitioner after every sync. It is never copied from
    Halaxy, whatever the remote side reports.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from practice_sync.database import Base
from practice_sync.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin

DEFAULT_MHCP_TOTAL_SESSIONS = 10


class Client(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "clients"

    halaxy_patient_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Halaxy Patient resource id (secondary unique key)",
    )
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("practitioners.id"),
        nullable=False,
        comment="Owning practitioner",
    )

    # ── Name & Contact ────────────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    initials: Mapped[str] = mapped_column(String(2), nullable=False, default="??")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)

    # ── Mental Health Care Plan ───────────────────────────────────────────
    mhcp_total_sessions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MHCP_TOTAL_SESSIONS,
        comment="Sessions allowed under the current plan",
    )
    mhcp_used_sessions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Completed sessions with the owning practitioner (recomputed)",
    )
    mhcp_plan_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    mhcp_plan_expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    presenting_issues: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Status ────────────────────────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_clients_practitioner_id", "practitioner_id"),
    )

    @property
    def mhcp_remaining_sessions(self) -> int:
        return max(self.mhcp_total_sessions - self.mhcp_used_sessions, 0)

    def __repr__(self) -> str:
        return (
            f"<Client(id={self.id}, halaxy_id='{self.halaxy_patient_id}', "
            f"initials='{self.initials}', used={self.mhcp_used_sessions}/{self.mhcp_total_sessions})>"
        )
