"""
PracticeSync — Practitioner Model
===================================

What:  ORM model for the `practitioners` table.
Why:   Every client and session hangs off a practitioner; the practitioner's
       local id is the first thing a full sync must establish.
Who:   Written by SyncStore.upsert_practitioner; read by the sweep, the status
       reporter and the incremental path when resolving references.

Lifecycle:
    Created on first sync of a Halaxy practitioner, updated on every later
    sync, never hard-deleted. Deactivation is `is_active = False`.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from practice_sync.database import Base
from practice_sync.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class Practitioner(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "practitioners"

    # ── Remote Identity ───────────────────────────────────────────────────
    halaxy_practitioner_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Halaxy Practitioner resource id (secondary unique key)",
    )
    halaxy_practitioner_role_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Halaxy PractitionerRole id, when known",
    )

    # ── Name & Contact ────────────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Non-null and unique: a placeholder is synthesized when Halaxy has no email
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="Contact email or {remoteId}@placeholder.local",
    )
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # ── Professional ──────────────────────────────────────────────────────
    qualifications: Mapped[str | None] = mapped_column(Text, nullable=True)
    specialty: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Status ────────────────────────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When this row was last reconciled with Halaxy",
    )

    def __repr__(self) -> str:
        return (
            f"<Practitioner(id={self.id}, halaxy_id='{self.halaxy_practitioner_id}', "
            f"name='{self.display_name}')>"
        )
