"""
PracticeSync — Sync Log & Status Tests
========================================

What we test:
    ✅ start / complete lifecycle
    ✅ Status derivation: healthy, stale, error, error cleared by a newer full sync
    ✅ Unscoped (practitioner_id NULL) rows count for every practitioner
    ✅ Audit writes never raise
"""

import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from practice_sync.exceptions import PersistenceError
from practice_sync.models import Practitioner, SyncLog
from practice_sync.models.enums import SyncEntityType, SyncHealth, SyncOperation, SyncType
from practice_sync.services.sync_log import SyncLogService

from fhir_factories import NOW


@pytest_asyncio.fixture
async def practitioner_id(session_factory):
    practitioner = Practitioner(
        id=uuid.uuid4(),
        halaxy_practitioner_id="PR-1",
        first_name="Sarah",
        last_name="Chen",
        display_name="Dr Sarah Chen",
        email="sarah.chen@example.com",
        is_active=True,
    )
    async with session_factory() as db:
        async with db.begin():
            db.add(practitioner)
    return practitioner.id


async def add_entry(session_factory, practitioner_id, sync_type, status, finished, error=None):
    async with session_factory() as db:
        async with db.begin():
            db.add(
                SyncLog(
                    id=uuid.uuid4(),
                    sync_type=sync_type,
                    entity_type="all",
                    operation="full_sync",
                    status=status,
                    error_message=error,
                    records_processed=0,
                    started_at=finished - timedelta(seconds=30),
                    completed_at=finished,
                    practitioner_id=practitioner_id,
                )
            )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_then_complete(self, sync_log, session_factory):
        log_id = await sync_log.start(SyncType.FULL, SyncEntityType.ALL, SyncOperation.FULL_SYNC)
        async with session_factory() as db:
            entry = await db.get(SyncLog, log_id)
            assert entry.status == "in_progress"
            assert entry.completed_at is None

        await sync_log.complete(log_id, success=False, records_processed=4, error_message="boom")

        async with session_factory() as db:
            entry = await db.get(SyncLog, log_id)
        assert entry.status == "error"
        assert entry.records_processed == 4
        assert entry.error_message == "boom"
        assert entry.completed_at is not None

    @pytest.mark.asyncio
    async def test_complete_without_id_is_a_no_op(self, sync_log):
        await sync_log.complete(None, success=True, records_processed=0)

    @pytest.mark.asyncio
    async def test_record_failure_attaches_known_practitioner(self, sync_log, session_factory, practitioner_id):
        log_id = await sync_log.record_failure(
            SyncType.FULL,
            SyncEntityType.ALL,
            SyncOperation.FULL_SYNC,
            error_message="Halaxy API error: 500",
            started_at=NOW,
            practitioner_remote_id="PR-1",
        )

        async with session_factory() as db:
            entry = await db.get(SyncLog, log_id)
        assert entry.practitioner_id == practitioner_id
        assert entry.status == "error"


class TestBestEffort:
    @pytest.mark.asyncio
    async def test_write_failures_are_swallowed(self, caplog):
        def broken_factory():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        service = SyncLogService(broken_factory, clock=lambda: NOW)

        log_id = await service.start(SyncType.WEBHOOK, SyncEntityType.SESSION, SyncOperation.UPDATE)
        await service.complete(uuid.uuid4(), success=True, records_processed=1)

        assert log_id is None
        assert "ignored" in caplog.text

    @pytest.mark.asyncio
    async def test_status_read_failure_is_persistence_error(self):
        def broken_factory():
            raise OperationalError("SELECT", {}, Exception("no such table"))

        service = SyncLogService(broken_factory, clock=lambda: NOW)
        with pytest.raises(PersistenceError):
            await service.get_sync_status(uuid.uuid4())


class TestStatusDerivation:
    @pytest.mark.asyncio
    async def test_no_history_is_stale(self, sync_log, practitioner_id):
        status = await sync_log.get_sync_status(practitioner_id)
        assert status.status is SyncHealth.STALE
        assert status.last_full_sync is None

    @pytest.mark.asyncio
    async def test_recent_full_sync_is_healthy(self, sync_log, session_factory, practitioner_id):
        await add_entry(session_factory, practitioner_id, "full", "success", NOW - timedelta(minutes=10))

        status = await sync_log.get_sync_status(practitioner_id)

        assert status.status is SyncHealth.HEALTHY
        assert status.last_full_sync == NOW - timedelta(minutes=10)
        assert status.error_message is None

    @pytest.mark.asyncio
    async def test_old_full_sync_is_stale(self, sync_log, session_factory, practitioner_id):
        await add_entry(session_factory, practitioner_id, "full", "success", NOW - timedelta(hours=2))
        status = await sync_log.get_sync_status(practitioner_id)
        assert status.status is SyncHealth.STALE

    @pytest.mark.asyncio
    async def test_error_after_full_sync(self, sync_log, session_factory, practitioner_id):
        await add_entry(session_factory, practitioner_id, "full", "success", NOW - timedelta(minutes=30))
        await add_entry(
            session_factory, practitioner_id, "webhook", "error", NOW - timedelta(minutes=5), error="Patient PAT-1 not found"
        )

        status = await sync_log.get_sync_status(practitioner_id)

        assert status.status is SyncHealth.ERROR
        assert status.error_message == "Patient PAT-1 not found"
        assert status.last_incremental_sync == NOW - timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_newer_full_sync_clears_error(self, sync_log, session_factory, practitioner_id):
        await add_entry(session_factory, practitioner_id, "full", "error", NOW - timedelta(minutes=30), error="boom")
        await add_entry(session_factory, practitioner_id, "full", "success", NOW - timedelta(minutes=5))

        status = await sync_log.get_sync_status(practitioner_id)

        assert status.status is SyncHealth.HEALTHY

    @pytest.mark.asyncio
    async def test_unscoped_error_counts(self, sync_log, session_factory, practitioner_id):
        await add_entry(session_factory, practitioner_id, "full", "success", NOW - timedelta(minutes=30))
        await add_entry(session_factory, None, "webhook", "error", NOW - timedelta(minutes=1), error="unresolved")

        status = await sync_log.get_sync_status(practitioner_id)

        assert status.status is SyncHealth.ERROR

    @pytest.mark.asyncio
    async def test_other_practitioners_rows_ignored(self, sync_log, session_factory, practitioner_id):
        other = uuid.uuid4()
        await add_entry(session_factory, practitioner_id, "full", "success", NOW - timedelta(minutes=30))
        await add_entry(session_factory, other, "webhook", "error", NOW - timedelta(minutes=1), error="elsewhere")

        status = await sync_log.get_sync_status(practitioner_id)

        assert status.status is SyncHealth.HEALTHY
