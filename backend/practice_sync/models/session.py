"""
PracticeSync — Session Model
==============================

What:  ORM model for the `sessions` table (a Halaxy Appointment, locally).

Session numbering:
    session_number is sequential per (practitioner, client). It is assigned
    once, when the appointment is first synced, and preserved on every later
    update of the same appointment.

Query Patterns:
    - Completed count per client: WHERE client_id = ? AND practitioner_id = ?
      AND status = 'completed' → idx_sessions_client_status
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from practice_sync.database import Base
from practice_sync.models.enums import LocationType, SessionStatus
from practice_sync.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class Session(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "sessions"

    halaxy_appointment_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Halaxy Appointment resource id (secondary unique key)",
    )
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id"), nullable=False
    )

    # ── Timing ────────────────────────────────────────────────────────────
    scheduled_start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actual_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    session_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Sequential per (practitioner, client); never reassigned",
    )

    # Values: scheduled, confirmed, in_progress, completed, cancelled, no_show
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SessionStatus.SCHEDULED.value,
    )
    session_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LocationType.IN_PERSON.value,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Billing ───────────────────────────────────────────────────────────
    fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    fee_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="AUD")
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_sessions_client_status", "client_id", "status"),
        Index("idx_sessions_practitioner_start", "practitioner_id", "scheduled_start_time"),
        CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
            name="ck_sessions_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Session(id={self.id}, halaxy_id='{self.halaxy_appointment_id}', "
            f"number={self.session_number}, status='{self.status}')>"
        )
