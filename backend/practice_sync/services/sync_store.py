"""
PracticeSync — Local Sync Store
=================================

What:  Upserts and lookups against the local practitioners / clients /
       sessions tables, keyed by Halaxy ids.
Why:   Keeps the merge rules (which fields Halaxy may overwrite, which are
       kept) in one place, away from the orchestration in SyncService.
How:   Each public write opens its own unit of work, so one failing entity
       rolls back alone and the rest of the sync carries on.

Merge rules on update:
    - Fields Halaxy did not send (None) keep the existing value.
    - A placeholder practitioner email never replaces a real one.
    - session_number is assigned on insert only.
    - mhcp_used_sessions is never written from a record; it is recomputed.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from practice_sync.exceptions import PersistenceError
from practice_sync.models.client import DEFAULT_MHCP_TOTAL_SESSIONS, Client
from practice_sync.models.enums import SessionStatus
from practice_sync.models.mixins import utc_now
from practice_sync.models.practitioner import Practitioner
from practice_sync.models.session import Session
from practice_sync.schemas.records import ClientRecord, PractitionerRecord, SessionRecord
from practice_sync.services.transformers import is_placeholder_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertOutcome:
    id: uuid.UUID
    created: bool


def _coalesce(new, existing):
    return existing if new is None else new


class SyncStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _unit_of_work(self, description: str) -> AsyncIterator[AsyncSession]:
        """One transaction; commit on success, roll back and wrap DB errors."""
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    yield db
        except SQLAlchemyError as e:
            logger.error("Database error during %s: %s", description, str(e))
            raise PersistenceError(
                message=f"Database error during {description}",
                context={"error_type": type(e).__name__},
            ) from e

    # ── Practitioners ─────────────────────────────────────────────────────

    async def find_practitioner_by_remote_id(self, remote_id: str) -> Optional[Practitioner]:
        async with self._unit_of_work("practitioner lookup") as db:
            return await db.scalar(
                select(Practitioner).where(Practitioner.halaxy_practitioner_id == remote_id)
            )

    async def list_active_practitioners(self) -> List[Practitioner]:
        async with self._unit_of_work("practitioner listing") as db:
            result = await db.scalars(
                select(Practitioner)
                .where(Practitioner.is_active.is_(True))
                .order_by(Practitioner.display_name)
            )
            return list(result.all())

    async def upsert_practitioner(self, record: PractitionerRecord) -> UpsertOutcome:
        async with self._unit_of_work("practitioner upsert") as db:
            existing = await db.scalar(
                select(Practitioner).where(
                    Practitioner.halaxy_practitioner_id == record.halaxy_practitioner_id
                )
            )
            now = utc_now()

            if existing is None:
                practitioner = Practitioner(
                    id=uuid.uuid4(),
                    last_synced_at=now,
                    **record.model_dump(),
                )
                db.add(practitioner)
                await db.flush()
                logger.info(
                    "Created practitioner %s (%s)",
                    practitioner.id,
                    record.halaxy_practitioner_id,
                )
                return UpsertOutcome(id=practitioner.id, created=True)

            existing.first_name = record.first_name
            existing.last_name = record.last_name
            existing.display_name = record.display_name
            if not (is_placeholder_email(record.email) and not is_placeholder_email(existing.email)):
                existing.email = record.email
            existing.phone = _coalesce(record.phone, existing.phone)
            existing.qualifications = _coalesce(record.qualifications, existing.qualifications)
            existing.specialty = _coalesce(record.specialty, existing.specialty)
            existing.halaxy_practitioner_role_id = _coalesce(
                record.halaxy_practitioner_role_id, existing.halaxy_practitioner_role_id
            )
            existing.is_active = record.is_active
            existing.last_synced_at = now
            return UpsertOutcome(id=existing.id, created=False)

    # ── Clients ───────────────────────────────────────────────────────────

    async def find_client_by_remote_id(self, remote_id: str) -> Optional[Client]:
        async with self._unit_of_work("client lookup") as db:
            return await db.scalar(select(Client).where(Client.halaxy_patient_id == remote_id))

    async def upsert_client(self, record: ClientRecord) -> UpsertOutcome:
        async with self._unit_of_work("client upsert") as db:
            existing = await db.scalar(
                select(Client).where(Client.halaxy_patient_id == record.halaxy_patient_id)
            )
            now = utc_now()

            if existing is None:
                values = record.model_dump()
                if values["mhcp_total_sessions"] is None:
                    values["mhcp_total_sessions"] = DEFAULT_MHCP_TOTAL_SESSIONS
                client = Client(id=uuid.uuid4(), mhcp_used_sessions=0, last_synced_at=now, **values)
                db.add(client)
                await db.flush()
                return UpsertOutcome(id=client.id, created=True)

            existing.practitioner_id = record.practitioner_id
            existing.first_name = record.first_name
            existing.last_name = record.last_name
            existing.initials = record.initials
            existing.email = _coalesce(record.email, existing.email)
            existing.phone = _coalesce(record.phone, existing.phone)
            existing.date_of_birth = _coalesce(record.date_of_birth, existing.date_of_birth)
            existing.mhcp_total_sessions = _coalesce(
                record.mhcp_total_sessions, existing.mhcp_total_sessions
            )
            existing.mhcp_plan_start_date = _coalesce(
                record.mhcp_plan_start_date, existing.mhcp_plan_start_date
            )
            existing.mhcp_plan_expiry_date = _coalesce(
                record.mhcp_plan_expiry_date, existing.mhcp_plan_expiry_date
            )
            existing.presenting_issues = _coalesce(record.presenting_issues, existing.presenting_issues)
            existing.is_active = record.is_active
            existing.last_synced_at = now
            return UpsertOutcome(id=existing.id, created=False)

    async def deactivate_client(self, remote_id: str) -> bool:
        """Soft-delete; returns False when the client was never synced."""
        async with self._unit_of_work("client deactivation") as db:
            client = await db.scalar(select(Client).where(Client.halaxy_patient_id == remote_id))
            if client is None:
                return False
            client.is_active = False
            client.last_synced_at = utc_now()
            return True

    # ── Sessions ──────────────────────────────────────────────────────────

    async def upsert_session(self, record: SessionRecord) -> UpsertOutcome:
        async with self._unit_of_work("session upsert") as db:
            existing = await db.scalar(
                select(Session).where(Session.halaxy_appointment_id == record.halaxy_appointment_id)
            )
            now = utc_now()

            if existing is None:
                session = Session(id=uuid.uuid4(), last_synced_at=now, **record.model_dump())
                db.add(session)
                await db.flush()
                return UpsertOutcome(id=session.id, created=True)

            # session_number stays as first assigned
            existing.practitioner_id = record.practitioner_id
            existing.client_id = record.client_id
            existing.scheduled_start_time = record.scheduled_start_time
            existing.scheduled_end_time = record.scheduled_end_time
            existing.actual_start_time = _coalesce(record.actual_start_time, existing.actual_start_time)
            existing.actual_end_time = _coalesce(record.actual_end_time, existing.actual_end_time)
            existing.status = record.status
            existing.session_type = _coalesce(record.session_type, existing.session_type)
            existing.location_type = record.location_type
            existing.notes = _coalesce(record.notes, existing.notes)
            existing.fee = _coalesce(record.fee, existing.fee)
            existing.fee_currency = record.fee_currency
            existing.is_paid = record.is_paid
            existing.last_synced_at = now
            return UpsertOutcome(id=existing.id, created=False)

    async def find_session_by_remote_id(self, remote_id: str) -> Optional[Session]:
        async with self._unit_of_work("session lookup") as db:
            return await db.scalar(select(Session).where(Session.halaxy_appointment_id == remote_id))

    async def cancel_session(self, remote_id: str) -> bool:
        """
        Mark a session cancelled and recompute its client's MHCP usage in the
        same transaction. Returns False when the session was never synced.
        """
        async with self._unit_of_work("session cancellation") as db:
            session = await db.scalar(
                select(Session).where(Session.halaxy_appointment_id == remote_id)
            )
            if session is None:
                return False
            session.status = SessionStatus.CANCELLED.value
            session.last_synced_at = utc_now()
            await db.flush()
            await self._recompute(db, session.practitioner_id, session.client_id)
            return True

    # ── Session Numbering & MHCP ──────────────────────────────────────────

    async def count_completed_sessions(self, client_id: uuid.UUID, practitioner_id: uuid.UUID) -> int:
        async with self._unit_of_work("completed session count") as db:
            count = await db.scalar(
                select(func.count(Session.id)).where(
                    Session.client_id == client_id,
                    Session.practitioner_id == practitioner_id,
                    Session.status == SessionStatus.COMPLETED.value,
                )
            )
            return count or 0

    async def completed_counts_by_client(self, practitioner_id: uuid.UUID) -> Dict[uuid.UUID, int]:
        """Completed-session count per client, used to seed numbering in a full sync."""
        async with self._unit_of_work("completed session counts") as db:
            rows = await db.execute(
                select(Session.client_id, func.count(Session.id))
                .where(
                    Session.practitioner_id == practitioner_id,
                    Session.status == SessionStatus.COMPLETED.value,
                )
                .group_by(Session.client_id)
            )
            return {client_id: count for client_id, count in rows.all()}

    async def recompute_mhcp_usage(
        self,
        practitioner_id: uuid.UUID,
        client_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Set mhcp_used_sessions to the completed-session count with this
        practitioner, for one client or for all of the practitioner's clients.

        Returns the number of client rows touched.
        """
        async with self._unit_of_work("MHCP recompute") as db:
            return await self._recompute(db, practitioner_id, client_id)

    async def _recompute(
        self,
        db: AsyncSession,
        practitioner_id: uuid.UUID,
        client_id: Optional[uuid.UUID],
    ) -> int:
        completed = (
            select(func.count(Session.id))
            .where(
                and_(
                    Session.client_id == Client.id,
                    Session.practitioner_id == practitioner_id,
                    Session.status == SessionStatus.COMPLETED.value,
                )
            )
            .correlate(Client)
            .scalar_subquery()
        )
        statement = (
            update(Client)
            .where(Client.practitioner_id == practitioner_id)
            .values(mhcp_used_sessions=completed)
            .execution_options(synchronize_session=False)
        )
        if client_id is not None:
            statement = statement.where(Client.id == client_id)
        result = await db.execute(statement)
        return result.rowcount or 0
