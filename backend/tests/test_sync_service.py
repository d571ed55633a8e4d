"""
PracticeSync — Full Sync Tests
================================

Runs SyncService.full_sync against FakeHalaxyClient and a real (in-memory
SQLite) store, then inspects the tables directly.

What we test:
    ✅ Reference scenario: 1 practitioner, 2 clients, 3 sessions, MHCP used = 2
    ✅ Session numbers follow the order Halaxy returns appointments in
    ✅ Idempotence: a second identical run creates nothing
    ✅ Session numbers preserved across runs, continued for new appointments
    ✅ Fatal practitioner step vs best-effort clients / appointments
    ✅ Coalescing of absent fields and the placeholder email rule
    ✅ Not configured → no remote call
    ✅ Multi-practitioner trigger and the scheduled sweep
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from practice_sync.exceptions import RemoteApiError, TokenAcquisitionError
from practice_sync.models import Client, Practitioner, Session, SyncLog

from fhir_factories import NOW, FakeHalaxyClient, appointment_json, patient_json, practitioner_json


def seed_reference_scenario(remote: FakeHalaxyClient) -> None:
    """PR-1 with PAT-1 (fulfilled, fulfilled, booked) and PAT-2 (no appointments)."""
    remote.add_practitioner(practitioner_json("PR-1"))
    remote.add_patient(patient_json("PAT-1", "Jamie", "Lee"))
    remote.add_patient(patient_json("PAT-2", "Alex", "Ng"))
    remote.appointments = [
        appointment_json("A-1", "PAT-1", status="fulfilled", start=NOW - timedelta(days=14)),
        appointment_json("A-2", "PAT-1", status="fulfilled", start=NOW - timedelta(days=7)),
        appointment_json("A-3", "PAT-1", status="booked", start=NOW + timedelta(days=3)),
    ]


async def count(session_factory, model) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model))


async def sessions_by_remote_id(session_factory):
    async with session_factory() as db:
        rows = await db.scalars(select(Session))
        return {s.halaxy_appointment_id: s for s in rows.all()}


async def client_by_remote_id(session_factory, remote_id):
    async with session_factory() as db:
        return await db.scalar(select(Client).where(Client.halaxy_patient_id == remote_id))


class TestFullSyncReferenceScenario:
    @pytest.mark.asyncio
    async def test_creates_everything(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)

        result = await sync_service.full_sync("PR-1")

        assert result.success is True
        assert result.errors == []
        assert result.records_created == 6
        assert result.records_updated == 0
        assert result.records_processed == 6
        assert await count(session_factory, Practitioner) == 1
        assert await count(session_factory, Client) == 2
        assert await count(session_factory, Session) == 3

    @pytest.mark.asyncio
    async def test_session_numbers_and_statuses(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        await sync_service.full_sync("PR-1")

        sessions = await sessions_by_remote_id(session_factory)
        assert sessions["A-1"].session_number == 1
        assert sessions["A-2"].session_number == 2
        assert sessions["A-1"].status == "completed"
        assert sessions["A-3"].status == "scheduled"
        assert sessions["A-3"].session_number == 3

    @pytest.mark.asyncio
    async def test_numbers_follow_discovery_order(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        # Halaxy returns the later visit first
        fake_remote.appointments = [
            appointment_json("A-2", "PAT-1", status="fulfilled", start=NOW - timedelta(days=7)),
            appointment_json("A-1", "PAT-1", status="fulfilled", start=NOW - timedelta(days=14)),
            appointment_json("A-3", "PAT-1", status="booked", start=NOW + timedelta(days=3)),
        ]

        await sync_service.full_sync("PR-1")

        sessions = await sessions_by_remote_id(session_factory)
        assert sessions["A-2"].session_number == 1
        assert sessions["A-1"].session_number == 2
        assert sessions["A-3"].session_number == 3

    @pytest.mark.asyncio
    async def test_mhcp_used_counts_completed_sessions(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        await sync_service.full_sync("PR-1")

        jamie = await client_by_remote_id(session_factory, "PAT-1")
        alex = await client_by_remote_id(session_factory, "PAT-2")
        assert jamie.mhcp_used_sessions == 2
        assert jamie.mhcp_total_sessions == 10
        assert alex.mhcp_used_sessions == 0

    @pytest.mark.asyncio
    async def test_window_is_past_30_future_90_days(self, sync_service, fake_remote):
        seed_reference_scenario(fake_remote)
        await sync_service.full_sync("PR-1")

        start, end = fake_remote.last_window
        assert start == NOW - timedelta(days=30)
        assert end == NOW + timedelta(days=90)

    @pytest.mark.asyncio
    async def test_writes_full_sync_log(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        result = await sync_service.full_sync("PR-1")

        async with session_factory() as db:
            entry = await db.get(SyncLog, result.sync_log_id)
        assert entry.sync_type == "full"
        assert entry.entity_type == "all"
        assert entry.status == "success"
        assert entry.records_processed == 6
        assert entry.completed_at is not None


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        await sync_service.full_sync("PR-1")

        second = await sync_service.full_sync("PR-1")

        assert second.success is True
        assert second.records_created == 0
        assert second.records_updated == 6
        assert await count(session_factory, Session) == 3
        assert await count(session_factory, Client) == 2

    @pytest.mark.asyncio
    async def test_numbers_preserved_and_continued(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        await sync_service.full_sync("PR-1")

        fake_remote.appointments.append(
            appointment_json("A-4", "PAT-1", status="booked", start=NOW + timedelta(days=7))
        )
        await sync_service.full_sync("PR-1")

        sessions = await sessions_by_remote_id(session_factory)
        assert sessions["A-1"].session_number == 1
        assert sessions["A-2"].session_number == 2
        assert sessions["A-3"].session_number == 3
        assert sessions["A-4"].session_number > 3

    @pytest.mark.asyncio
    async def test_remote_status_change_updates_session_and_mhcp(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        await sync_service.full_sync("PR-1")

        fake_remote.appointments[2]["status"] = "fulfilled"
        await sync_service.full_sync("PR-1")

        jamie = await client_by_remote_id(session_factory, "PAT-1")
        assert jamie.mhcp_used_sessions == 3


class TestFailureBoundaries:
    @pytest.mark.asyncio
    async def test_unknown_practitioner_is_fatal(self, sync_service, session_factory):
        result = await sync_service.full_sync("PR-404")

        assert result.success is False
        assert result.records_processed == 0
        assert len(result.errors) == 1
        assert result.errors[0].entity_type == "practitioner"
        assert await count(session_factory, Practitioner) == 0

        async with session_factory() as db:
            entry = await db.scalar(select(SyncLog))
        assert entry.status == "error"
        assert "PR-404" in entry.error_message

    @pytest.mark.asyncio
    async def test_token_failure_is_fatal(self, sync_service, fake_remote):
        fake_remote.failures["get_practitioner"] = TokenAcquisitionError("Failed to get Halaxy access token: 401")

        result = await sync_service.full_sync("PR-1")

        assert result.success is False
        assert "401" in result.errors[0].message

    @pytest.mark.asyncio
    async def test_patient_fetch_failure_is_not_fatal(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        fake_remote.failures["get_patients_by_practitioner"] = RemoteApiError(500, "Internal Server Error")

        result = await sync_service.full_sync("PR-1")

        assert result.success is True
        assert any(e.message.startswith("Could not fetch patients") for e in result.errors)
        # no local clients, so every appointment is skipped
        assert await count(session_factory, Client) == 0
        assert await count(session_factory, Session) == 0
        assert await count(session_factory, Practitioner) == 1

    @pytest.mark.asyncio
    async def test_appointment_fetch_failure_is_not_fatal(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        fake_remote.failures["get_appointments_by_practitioner"] = RemoteApiError(503, "Service Unavailable")

        result = await sync_service.full_sync("PR-1")

        assert result.success is True
        assert result.records_created == 3
        assert any(e.message.startswith("Could not fetch appointments") for e in result.errors)

    @pytest.mark.asyncio
    async def test_role_lookup_failure_is_ignored(self, sync_service, fake_remote):
        seed_reference_scenario(fake_remote)
        fake_remote.failures["get_practitioner_roles"] = RemoteApiError(500)

        result = await sync_service.full_sync("PR-1")

        assert result.success is True
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_bad_appointment_is_one_error(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        broken = appointment_json("A-9", "PAT-1")
        del broken["start"]
        fake_remote.appointments.append(broken)

        result = await sync_service.full_sync("PR-1")

        assert result.success is True
        assert [e.entity_id for e in result.errors] == ["A-9"]
        assert await count(session_factory, Session) == 3

    @pytest.mark.asyncio
    async def test_appointment_for_unknown_patient_is_skipped(self, sync_service, fake_remote, session_factory):
        seed_reference_scenario(fake_remote)
        fake_remote.appointments.append(appointment_json("A-5", "PAT-GHOST"))

        result = await sync_service.full_sync("PR-1")

        assert result.errors == []
        assert await count(session_factory, Session) == 3


class TestMergeRules:
    @pytest.mark.asyncio
    async def test_real_email_survives_placeholder(self, sync_service, fake_remote, session_factory):
        fake_remote.add_practitioner(practitioner_json("PR-1", email="sarah@example.com"))
        await sync_service.full_sync("PR-1")

        fake_remote.add_practitioner(practitioner_json("PR-1", email=None))
        await sync_service.full_sync("PR-1")

        async with session_factory() as db:
            practitioner = await db.scalar(select(Practitioner))
        assert practitioner.email == "sarah@example.com"

    @pytest.mark.asyncio
    async def test_absent_mhcp_total_keeps_existing(self, sync_service, fake_remote, session_factory):
        fake_remote.add_practitioner(practitioner_json("PR-1"))
        fake_remote.add_patient(patient_json("PAT-1", mhcp_total=6))
        await sync_service.full_sync("PR-1")

        fake_remote.add_patient(patient_json("PAT-1", mhcp_total=None))
        await sync_service.full_sync("PR-1")

        client = await client_by_remote_id(session_factory, "PAT-1")
        assert client.mhcp_total_sessions == 6

    @pytest.mark.asyncio
    async def test_role_id_stored(self, sync_service, fake_remote, session_factory):
        fake_remote.add_practitioner(practitioner_json("PR-1"))
        fake_remote.roles["PR-1"] = [{"resourceType": "PractitionerRole", "id": "ROLE-7"}]
        await sync_service.full_sync("PR-1")

        async with session_factory() as db:
            practitioner = await db.scalar(select(Practitioner))
        assert practitioner.halaxy_practitioner_role_id == "ROLE-7"


class TestNotConfigured:
    @pytest.mark.asyncio
    async def test_full_sync_makes_no_remote_call(self, sync_service, fake_remote):
        fake_remote.configured = False

        result = await sync_service.full_sync("PR-1")

        assert result.success is False
        assert result.status == "not_configured"
        assert fake_remote.calls == []


class TestMultiPractitionerRuns:
    @pytest.mark.asyncio
    async def test_sync_all_reports_each_practitioner(self, sync_service, fake_remote):
        seed_reference_scenario(fake_remote)
        fake_remote.add_practitioner(practitioner_json("PR-2", given="Tom", family="Hill", email="tom@example.com"))

        response = await sync_service.sync_all_practitioners()

        assert response.message == "Sync completed: 2/2 successful"
        assert [p.practitioner_id for p in response.practitioners] == ["PR-1", "PR-2"]
        assert response.practitioners[0].name == "Dr Sarah Chen"

    @pytest.mark.asyncio
    async def test_sync_all_with_no_practitioners(self, sync_service):
        response = await sync_service.sync_all_practitioners()
        assert response.message == "No practitioners found in Halaxy"
        assert response.practitioners == []

    @pytest.mark.asyncio
    async def test_sync_all_list_failure_propagates(self, sync_service, fake_remote):
        fake_remote.failures["get_all_practitioners"] = TokenAcquisitionError()
        with pytest.raises(TokenAcquisitionError):
            await sync_service.sync_all_practitioners()

    @pytest.mark.asyncio
    async def test_sweep_uses_local_practitioners(self, sync_service, fake_remote):
        seed_reference_scenario(fake_remote)
        await sync_service.full_sync("PR-1")
        fake_remote.calls.clear()

        response = await sync_service.run_scheduled_sweep()

        assert response.message == "Sync completed: 1/1 successful"
        assert "get_all_practitioners" not in fake_remote.calls

    @pytest.mark.asyncio
    async def test_sweep_bootstraps_from_settings(self, sync_service, fake_remote, test_settings):
        seed_reference_scenario(fake_remote)
        sync_service.settings = test_settings.model_copy(update={"halaxy_practitioner_id": "PR-1"})

        response = await sync_service.run_scheduled_sweep()

        assert [p.practitioner_id for p in response.practitioners] == ["PR-1"]
        assert response.practitioners[0].success is True

    @pytest.mark.asyncio
    async def test_sweep_with_empty_store_and_no_bootstrap(self, sync_service):
        response = await sync_service.run_scheduled_sweep()
        assert response.message == "No practitioners to sync"
