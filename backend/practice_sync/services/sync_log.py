"""
PracticeSync — Sync Log Writer & Status Reporter
==================================================

What:  Records one audit row per sync run and derives a coarse health status
       (healthy / stale / error) from recent rows.
Why:   Operators need to see when a practitioner last synced and whether the
       last attempt failed, without digging through process logs.
How:   Every write goes through _non_critical(), which runs the write in its
       own transaction, logs any failure at WARNING and returns None. The
       sync itself never sees an audit-log exception.

Status derivation (priority order):
    1. latest error newer than latest successful full sync (or no full sync) → error
    2. latest full sync older than the stale threshold                      → stale
    3. no full sync at all                                                   → stale
    4. otherwise                                                             → healthy
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from practice_sync.exceptions import PersistenceError
from practice_sync.models.enums import (
    SyncEntityType,
    SyncHealth,
    SyncLogStatus,
    SyncOperation,
    SyncType,
)
from practice_sync.models.mixins import ensure_utc, utc_now
from practice_sync.models.practitioner import Practitioner
from practice_sync.models.sync_log import SyncLog
from practice_sync.schemas.sync import SyncStatusResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INCREMENTAL_TYPES = (SyncType.WEBHOOK.value, SyncType.INCREMENTAL.value)


class SyncLogService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stale_after: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._stale_after = stale_after
        self._clock = clock

    # ══════════════════════════════════════════════════════════════════════
    # Best-effort writes
    # ══════════════════════════════════════════════════════════════════════

    async def _non_critical(
        self,
        description: str,
        operation: Callable[[AsyncSession], Awaitable[T]],
    ) -> Optional[T]:
        """Run an audit write; log and return None if it fails for any reason."""
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    return await operation(db)
        except Exception as e:
            logger.warning("Sync log %s failed (ignored): %s", description, str(e))
            return None

    async def start(
        self,
        sync_type: SyncType,
        entity_type: SyncEntityType,
        operation: SyncOperation,
        practitioner_id: Optional[uuid.UUID] = None,
        entity_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> Optional[uuid.UUID]:
        """Insert an in_progress row and return its id (None if the write failed)."""

        async def _insert(db: AsyncSession) -> uuid.UUID:
            entry = SyncLog(
                id=uuid.uuid4(),
                sync_type=sync_type.value,
                entity_type=entity_type.value,
                entity_id=entity_id,
                operation=operation.value,
                status=SyncLogStatus.IN_PROGRESS.value,
                started_at=started_at or self._clock(),
                practitioner_id=practitioner_id,
            )
            db.add(entry)
            await db.flush()
            return entry.id

        return await self._non_critical("start", _insert)

    async def complete(
        self,
        log_id: Optional[uuid.UUID],
        success: bool,
        records_processed: int,
        error_message: Optional[str] = None,
        practitioner_id: Optional[uuid.UUID] = None,
    ) -> None:
        if log_id is None:
            return

        async def _update(db: AsyncSession) -> None:
            entry = await db.get(SyncLog, log_id)
            if entry is None:
                logger.warning("Sync log %s vanished before completion", log_id)
                return
            entry.status = (SyncLogStatus.SUCCESS if success else SyncLogStatus.ERROR).value
            entry.records_processed = records_processed
            entry.error_message = error_message
            entry.completed_at = self._clock()
            if practitioner_id is not None:
                entry.practitioner_id = practitioner_id

        await self._non_critical("completion", _update)

    async def record_failure(
        self,
        sync_type: SyncType,
        entity_type: SyncEntityType,
        operation: SyncOperation,
        error_message: str,
        started_at: datetime,
        practitioner_remote_id: Optional[str] = None,
    ) -> Optional[uuid.UUID]:
        """
        Write a finished error row for a run that failed before start().

        When the practitioner already exists locally the row is attached to
        it, so the failure shows up in that practitioner's status report.
        """

        async def _insert(db: AsyncSession) -> uuid.UUID:
            practitioner_id = None
            if practitioner_remote_id:
                practitioner_id = await db.scalar(
                    select(Practitioner.id).where(
                        Practitioner.halaxy_practitioner_id == practitioner_remote_id
                    )
                )
            entry = SyncLog(
                id=uuid.uuid4(),
                sync_type=sync_type.value,
                entity_type=entity_type.value,
                entity_id=practitioner_remote_id,
                operation=operation.value,
                status=SyncLogStatus.ERROR.value,
                error_message=error_message,
                started_at=started_at,
                completed_at=self._clock(),
                records_processed=0,
                practitioner_id=practitioner_id,
            )
            db.add(entry)
            await db.flush()
            return entry.id

        return await self._non_critical("failure record", _insert)

    # ══════════════════════════════════════════════════════════════════════
    # Status Reporting
    # ══════════════════════════════════════════════════════════════════════

    async def get_sync_status(self, practitioner_id: uuid.UUID) -> SyncStatusResponse:
        """
        Derive the sync health for one practitioner.

        Considers the practitioner's own rows plus unscoped rows
        (practitioner_id IS NULL), such as webhook runs that never resolved
        a practitioner.
        """
        scope = or_(SyncLog.practitioner_id == practitioner_id, SyncLog.practitioner_id.is_(None))
        finished_at = func.coalesce(SyncLog.completed_at, SyncLog.started_at)

        try:
            async with self._session_factory() as db:
                last_full = await db.scalar(
                    select(SyncLog)
                    .where(
                        scope,
                        SyncLog.sync_type == SyncType.FULL.value,
                        SyncLog.status == SyncLogStatus.SUCCESS.value,
                        SyncLog.completed_at.is_not(None),
                    )
                    .order_by(SyncLog.completed_at.desc())
                    .limit(1)
                )
                last_incremental = await db.scalar(
                    select(SyncLog)
                    .where(
                        scope,
                        SyncLog.sync_type.in_(_INCREMENTAL_TYPES),
                        SyncLog.completed_at.is_not(None),
                    )
                    .order_by(SyncLog.completed_at.desc())
                    .limit(1)
                )
                last_error = await db.scalar(
                    select(SyncLog)
                    .where(scope, SyncLog.status == SyncLogStatus.ERROR.value)
                    .order_by(finished_at.desc())
                    .limit(1)
                )
        except SQLAlchemyError as e:
            logger.error("Could not read sync logs for %s: %s", practitioner_id, str(e))
            raise PersistenceError(
                message="Could not retrieve sync status. Please try again.",
                context={"practitioner_id": str(practitioner_id)},
            ) from e

        full_at = ensure_utc(last_full.completed_at) if last_full else None
        incremental_at = ensure_utc(last_incremental.completed_at) if last_incremental else None
        error_at = (
            ensure_utc(last_error.completed_at or last_error.started_at) if last_error else None
        )

        error_message = None
        if error_at is not None and (full_at is None or error_at > full_at):
            status = SyncHealth.ERROR
            error_message = last_error.error_message
        elif full_at is None or self._clock() - full_at > self._stale_after:
            status = SyncHealth.STALE
        else:
            status = SyncHealth.HEALTHY

        return SyncStatusResponse(
            practitioner_id=practitioner_id,
            last_full_sync=full_at,
            last_incremental_sync=incremental_at,
            status=status,
            error_message=error_message,
        )
