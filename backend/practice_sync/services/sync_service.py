"""
PracticeSync — Sync Orchestration Service
===========================================

What:  Reconciles the local store with Halaxy, either in full for one
       practitioner or incrementally from a single webhook event.
Why:   The web app reads practitioners, clients and sessions locally; this
       service is the only writer of those tables.
How:   Practitioner → clients → sessions, sequentially. The practitioner step
       is fatal; everything after it is best-effort, collecting per-record
       errors into the SyncResult instead of aborting.
Who:   Called by the /api/sync routes and by the `practice-sync` CLI.

Error Boundary:
    ┌──────────────────────┬────────────────────────────────────────────┐
    │ Step                 │ On failure                                 │
    ├──────────────────────┼────────────────────────────────────────────┤
    │ practitioner upsert  │ abort, success=False, one error            │
    │ patient fetch        │ one error, continue with zero clients      │
    │ single client upsert │ one error, next client                     │
    │ appointment fetch    │ one error, continue with zero appointments │
    │ single session       │ one error, next appointment                │
    │ MHCP recompute       │ one error                                  │
    │ sync log write       │ logged at WARNING, never surfaced          │
    └──────────────────────┴────────────────────────────────────────────┘
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from practice_sync.config import Settings
from practice_sync.exceptions import (
    ConfigurationError,
    PracticeSyncError,
    ResolutionError,
    ValidationError,
)
from practice_sync.models.enums import SyncEntityType, SyncOperation, SyncType
from practice_sync.models.mixins import utc_now
from practice_sync.schemas.fhir import FhirAppointment, FhirPatient, FhirPractitioner
from practice_sync.schemas.sync import (
    AvailabilityResponse,
    ManualSyncResponse,
    PractitionerSyncSummary,
    SyncErrorItem,
    SyncResult,
)
from practice_sync.services.remote_base import PracticeManagementClient
from practice_sync.services.sync_log import SyncLogService
from practice_sync.services.sync_store import SyncStore, UpsertOutcome
from practice_sync.services.transformers import (
    build_display_name,
    extract_id_from_reference,
    get_patient_id_from_appointment,
    get_practitioner_id_from_appointment,
    is_completed_status,
    transform_appointment,
    transform_patient,
    transform_practitioner,
    transform_slot,
)

logger = logging.getLogger(__name__)

# Anything a single record can fail with; programming errors still propagate
SYNC_FAILURES = (PracticeSyncError, httpx.HTTPError, ValueError)

_EVENT_SCOPES = {
    "appointment": SyncEntityType.SESSION,
    "patient": SyncEntityType.CLIENT,
    "practitioner": SyncEntityType.PRACTITIONER,
}

_EVENT_OPERATIONS = {
    "created": SyncOperation.CREATE,
    "updated": SyncOperation.UPDATE,
    "cancelled": SyncOperation.DELETE,
    "deleted": SyncOperation.DELETE,
}


@dataclass
class ChangeCounts:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    practitioner_id: Optional[uuid.UUID] = None

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome.created:
            self.created += 1
        else:
            self.updated += 1

    @property
    def total(self) -> int:
        return self.created + self.updated + self.deleted


@dataclass
class _RunState:
    """Mutable accumulator for one full sync."""

    sync_id: str
    counts: ChangeCounts = field(default_factory=ChangeCounts)
    errors: List[SyncErrorItem] = field(default_factory=list)

    def fail(self, entity_type: SyncEntityType, entity_id: str, operation: SyncOperation, message: str) -> None:
        logger.warning("[%s] %s %s failed: %s", self.sync_id, entity_type.value, entity_id, message)
        self.errors.append(
            SyncErrorItem(
                entity_type=entity_type.value,
                entity_id=entity_id,
                operation=operation.value,
                message=message,
            )
        )


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


def _new_sync_id() -> str:
    return uuid.uuid4().hex[:8]


class SyncService:
    def __init__(
        self,
        remote: PracticeManagementClient,
        store: SyncStore,
        sync_log: SyncLogService,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.remote = remote
        self.store = store
        self.sync_log = sync_log
        self.settings = settings
        self._clock = clock

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[ChangeCounts]]] = {
            "appointment.created": self._on_appointment_changed,
            "appointment.updated": self._on_appointment_changed,
            "appointment.cancelled": self._on_appointment_cancelled,
            "appointment.deleted": self._on_appointment_cancelled,
            "patient.created": self._on_patient_changed,
            "patient.updated": self._on_patient_changed,
            "patient.deleted": self._on_patient_deleted,
            "practitioner.updated": self._on_practitioner_updated,
        }

    @classmethod
    def create(
        cls,
        remote: PracticeManagementClient,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> "SyncService":
        """Wire the store and sync log onto one session factory."""
        return cls(
            remote=remote,
            store=SyncStore(session_factory),
            sync_log=SyncLogService(
                session_factory,
                stale_after=timedelta(minutes=settings.sync_stale_after_minutes),
            ),
            settings=settings,
        )

    @property
    def is_configured(self) -> bool:
        return self.remote.is_configured

    # ══════════════════════════════════════════════════════════════════════
    # Full Sync
    # ══════════════════════════════════════════════════════════════════════

    async def full_sync(
        self,
        remote_practitioner_id: str,
        fhir_practitioner: Optional[FhirPractitioner] = None,
    ) -> SyncResult:
        """
        Reconcile one practitioner with everything Halaxy holds for them.

        Args:
            remote_practitioner_id: Halaxy Practitioner id.
            fhir_practitioner: Already-fetched resource, saves one request
                when the caller listed practitioners first.
        """
        if not self.is_configured:
            logger.warning("Halaxy not configured, skipping full sync of %s", remote_practitioner_id)
            return SyncResult.not_configured()

        start_time = time.perf_counter()
        started_at = self._clock()
        run = _RunState(sync_id=_new_sync_id())
        logger.info("[%s] Full sync started for practitioner %s", run.sync_id, remote_practitioner_id)

        # ── Step 1: practitioner (fatal) ──────────────────────────────────
        try:
            practitioner_id = await self._sync_practitioner(
                remote_practitioner_id, fhir_practitioner, run.counts
            )
        except SYNC_FAILURES as e:
            message = str(e)
            run.fail(SyncEntityType.PRACTITIONER, remote_practitioner_id, SyncOperation.FULL_SYNC, message)
            await self.sync_log.record_failure(
                SyncType.FULL,
                SyncEntityType.ALL,
                SyncOperation.FULL_SYNC,
                error_message=message,
                started_at=started_at,
                practitioner_remote_id=remote_practitioner_id,
            )
            logger.error("[%s] Full sync aborted: %s", run.sync_id, message)
            return SyncResult(success=False, errors=run.errors, duration_ms=_elapsed_ms(start_time))

        log_id = await self.sync_log.start(
            SyncType.FULL,
            SyncEntityType.ALL,
            SyncOperation.FULL_SYNC,
            practitioner_id=practitioner_id,
            entity_id=remote_practitioner_id,
            started_at=started_at,
        )

        # ── Steps 2-4: best-effort ────────────────────────────────────────
        client_ids = await self._sync_clients(remote_practitioner_id, practitioner_id, run)
        await self._sync_sessions(remote_practitioner_id, practitioner_id, client_ids, run)

        try:
            await self.store.recompute_mhcp_usage(practitioner_id)
        except SYNC_FAILURES as e:
            run.fail(SyncEntityType.CLIENT, remote_practitioner_id, SyncOperation.UPDATE, f"MHCP recompute failed: {e}")

        # ── Step 5: close the log ─────────────────────────────────────────
        error_summary = None
        if run.errors:
            error_summary = f"{len(run.errors)} error(s); first: {run.errors[0].message}"
        await self.sync_log.complete(
            log_id,
            success=True,
            records_processed=run.counts.total,
            error_message=error_summary,
        )

        duration_ms = _elapsed_ms(start_time)
        logger.info(
            "[%s] Full sync finished in %dms: %d created, %d updated, %d errors",
            run.sync_id,
            duration_ms,
            run.counts.created,
            run.counts.updated,
            len(run.errors),
        )
        return SyncResult(
            success=True,
            sync_log_id=log_id,
            records_processed=run.counts.total,
            records_created=run.counts.created,
            records_updated=run.counts.updated,
            records_deleted=run.counts.deleted,
            errors=run.errors,
            duration_ms=duration_ms,
        )

    async def _sync_practitioner(
        self,
        remote_practitioner_id: str,
        fhir_practitioner: Optional[FhirPractitioner],
        counts: ChangeCounts,
    ) -> uuid.UUID:
        if fhir_practitioner is None:
            fhir_practitioner = await self.remote.get_practitioner(remote_practitioner_id)
            if fhir_practitioner is None:
                raise ResolutionError(f"Practitioner {remote_practitioner_id} not found in Halaxy")

        role_id = None
        try:
            roles = await self.remote.get_practitioner_roles(remote_practitioner_id)
            role_id = next((role.id for role in roles if role.id), None)
        except SYNC_FAILURES as e:
            logger.warning("Could not fetch roles for %s: %s", remote_practitioner_id, str(e))

        record = transform_practitioner(fhir_practitioner, role_id=role_id)
        outcome = await self.store.upsert_practitioner(record)
        counts.record(outcome)
        counts.practitioner_id = outcome.id
        return outcome.id

    async def _sync_clients(
        self,
        remote_practitioner_id: str,
        practitioner_id: uuid.UUID,
        run: _RunState,
    ) -> Dict[str, uuid.UUID]:
        """Returns remote patient id → local client id for every upserted client."""
        try:
            patients = await self.remote.get_patients_by_practitioner(remote_practitioner_id)
        except SYNC_FAILURES as e:
            run.fail(SyncEntityType.CLIENT, remote_practitioner_id, SyncOperation.FULL_SYNC, f"Could not fetch patients: {e}")
            return {}

        client_ids: Dict[str, uuid.UUID] = {}
        for patient in patients:
            try:
                outcome = await self.store.upsert_client(transform_patient(patient, practitioner_id))
            except SYNC_FAILURES as e:
                run.fail(SyncEntityType.CLIENT, patient.id or "unknown", SyncOperation.UPDATE, str(e))
                continue
            run.counts.record(outcome)
            client_ids[patient.id] = outcome.id

        logger.info("[%s] Synced %d/%d clients", run.sync_id, len(client_ids), len(patients))
        return client_ids

    async def _sync_sessions(
        self,
        remote_practitioner_id: str,
        practitioner_id: uuid.UUID,
        client_ids: Dict[str, uuid.UUID],
        run: _RunState,
    ) -> None:
        now = self._clock()
        window_start = now - timedelta(days=self.settings.sync_past_days)
        window_end = now + timedelta(days=self.settings.sync_future_days)

        try:
            appointments = await self.remote.get_appointments_by_practitioner(
                remote_practitioner_id, window_start, window_end
            )
            counters = await self.store.completed_counts_by_client(practitioner_id)
        except SYNC_FAILURES as e:
            run.fail(SyncEntityType.SESSION, remote_practitioner_id, SyncOperation.FULL_SYNC, f"Could not fetch appointments: {e}")
            return

        synced = 0
        for appointment in appointments:
            remote_id = appointment.id or "unknown"
            try:
                client_id = await self._resolve_client_id(appointment, client_ids)
                if client_id is None:
                    logger.warning(
                        "[%s] Skipping appointment %s: patient not found locally",
                        run.sync_id,
                        remote_id,
                    )
                    continue
                counters[client_id] = counters.get(client_id, 0) + 1
                record = transform_appointment(
                    appointment,
                    practitioner_id=practitioner_id,
                    client_id=client_id,
                    session_number=counters[client_id],
                )
                outcome = await self.store.upsert_session(record)
            except SYNC_FAILURES as e:
                run.fail(SyncEntityType.SESSION, remote_id, SyncOperation.UPDATE, str(e))
                continue
            run.counts.record(outcome)
            synced += 1

        logger.info("[%s] Synced %d/%d sessions", run.sync_id, synced, len(appointments))

    async def _resolve_client_id(
        self,
        appointment: FhirAppointment,
        client_ids: Dict[str, uuid.UUID],
    ) -> Optional[uuid.UUID]:
        remote_patient_id = get_patient_id_from_appointment(appointment)
        if not remote_patient_id:
            return None
        if remote_patient_id in client_ids:
            return client_ids[remote_patient_id]
        client = await self.store.find_client_by_remote_id(remote_patient_id)
        return client.id if client else None

    # ══════════════════════════════════════════════════════════════════════
    # Incremental Sync (webhooks)
    # ══════════════════════════════════════════════════════════════════════

    async def incremental_sync(self, event: str, data: Dict[str, Any]) -> SyncResult:
        """
        Apply one change notification.

        Unknown event kinds succeed with zero counts so the sender stops
        retrying them.
        """
        if not self.is_configured:
            return SyncResult.not_configured()

        start_time = time.perf_counter()
        sync_id = _new_sync_id()
        resource_kind, _, action = event.partition(".")
        remote_id = str(data.get("id") or "") or None

        log_id = await self.sync_log.start(
            SyncType.WEBHOOK,
            _EVENT_SCOPES.get(resource_kind, SyncEntityType.ALL),
            _EVENT_OPERATIONS.get(action, SyncOperation.UPDATE),
            entity_id=remote_id,
        )

        handler = self._handlers.get(event)
        if handler is None:
            logger.info("[%s] Ignoring unhandled event type: %s", sync_id, event)
            await self.sync_log.complete(log_id, success=True, records_processed=0)
            return SyncResult(success=True, sync_log_id=log_id, duration_ms=_elapsed_ms(start_time))

        logger.info("[%s] Processing %s for %s", sync_id, event, remote_id)
        try:
            counts = await handler(data)
        except SYNC_FAILURES as e:
            message = str(e)
            logger.error("[%s] %s failed: %s", sync_id, event, message)
            await self.sync_log.complete(log_id, success=False, records_processed=0, error_message=message)
            return SyncResult(
                success=False,
                sync_log_id=log_id,
                errors=[
                    SyncErrorItem(
                        entity_type=_EVENT_SCOPES.get(resource_kind, SyncEntityType.ALL).value,
                        entity_id=remote_id or "unknown",
                        operation=_EVENT_OPERATIONS.get(action, SyncOperation.UPDATE).value,
                        message=message,
                    )
                ],
                duration_ms=_elapsed_ms(start_time),
            )

        await self.sync_log.complete(
            log_id,
            success=True,
            records_processed=counts.total,
            practitioner_id=counts.practitioner_id,
        )
        return SyncResult(
            success=True,
            sync_log_id=log_id,
            records_processed=counts.total,
            records_created=counts.created,
            records_updated=counts.updated,
            records_deleted=counts.deleted,
            duration_ms=_elapsed_ms(start_time),
        )

    async def _ensure_practitioner(self, remote_practitioner_id: str, counts: ChangeCounts) -> uuid.UUID:
        existing = await self.store.find_practitioner_by_remote_id(remote_practitioner_id)
        if existing is not None:
            return existing.id
        logger.info("Cascading sync of unknown practitioner %s", remote_practitioner_id)
        return await self._sync_practitioner(remote_practitioner_id, None, counts)

    async def _ensure_client(
        self,
        remote_patient_id: str,
        practitioner_id: uuid.UUID,
        counts: ChangeCounts,
    ) -> uuid.UUID:
        existing = await self.store.find_client_by_remote_id(remote_patient_id)
        if existing is not None:
            return existing.id
        logger.info("Cascading sync of unknown patient %s", remote_patient_id)
        patient = await self.remote.get_patient(remote_patient_id)
        if patient is None:
            raise ResolutionError(f"Patient {remote_patient_id} not found in Halaxy")
        outcome = await self.store.upsert_client(transform_patient(patient, practitioner_id))
        counts.record(outcome)
        return outcome.id

    async def _on_appointment_changed(self, data: Dict[str, Any]) -> ChangeCounts:
        appointment = FhirAppointment.model_validate(data)
        remote_patient_id = get_patient_id_from_appointment(appointment)
        remote_practitioner_id = get_practitioner_id_from_appointment(appointment)
        if not remote_patient_id or not remote_practitioner_id:
            raise ResolutionError(
                f"Appointment {appointment.id} is missing a patient or practitioner reference",
                context={"patient": remote_patient_id, "practitioner": remote_practitioner_id},
            )

        counts = ChangeCounts()
        practitioner_id = await self._ensure_practitioner(remote_practitioner_id, counts)
        client_id = await self._ensure_client(remote_patient_id, practitioner_id, counts)
        counts.practitioner_id = practitioner_id

        existing = await self.store.find_session_by_remote_id(appointment.id)
        if existing is not None:
            session_number = existing.session_number
        else:
            completed = await self.store.count_completed_sessions(client_id, practitioner_id)
            session_number = completed + 1
        record = transform_appointment(
            appointment,
            practitioner_id=practitioner_id,
            client_id=client_id,
            session_number=session_number,
        )
        counts.record(await self.store.upsert_session(record))

        # Usage only moves when a completed session appears or disappears
        was_completed = existing is not None and is_completed_status(existing.status)
        if was_completed or is_completed_status(record.status):
            await self.store.recompute_mhcp_usage(practitioner_id, client_id)
        return counts

    async def _on_appointment_cancelled(self, data: Dict[str, Any]) -> ChangeCounts:
        remote_id = data.get("id")
        if not remote_id:
            raise ValidationError("Appointment event has no id", field="data.id")
        counts = ChangeCounts()
        if await self.store.cancel_session(str(remote_id)):
            counts.deleted += 1
        else:
            logger.info("Cancelled appointment %s was never synced; nothing to do", remote_id)
        return counts

    async def _on_patient_changed(self, data: Dict[str, Any]) -> ChangeCounts:
        patient = FhirPatient.model_validate(data)
        if not patient.id:
            raise ValidationError("Patient event has no id", field="data.id")

        counts = ChangeCounts()
        existing = await self.store.find_client_by_remote_id(patient.id)
        if existing is not None:
            practitioner_id = existing.practitioner_id
        else:
            references = patient.general_practitioner or []
            remote_practitioner_id = extract_id_from_reference(references[0].reference) if references else None
            if not remote_practitioner_id:
                raise ResolutionError(f"Cannot find practitioner for patient {patient.id}")
            practitioner_id = await self._ensure_practitioner(remote_practitioner_id, counts)

        counts.practitioner_id = practitioner_id
        counts.record(await self.store.upsert_client(transform_patient(patient, practitioner_id)))
        return counts

    async def _on_patient_deleted(self, data: Dict[str, Any]) -> ChangeCounts:
        remote_id = data.get("id")
        if not remote_id:
            raise ValidationError("Patient event has no id", field="data.id")
        counts = ChangeCounts()
        if await self.store.deactivate_client(str(remote_id)):
            counts.deleted += 1
        return counts

    async def _on_practitioner_updated(self, data: Dict[str, Any]) -> ChangeCounts:
        remote_id = data.get("id")
        if not remote_id:
            raise ValidationError("Practitioner event has no id", field="data.id")
        counts = ChangeCounts()
        await self._sync_practitioner(str(remote_id), None, counts)
        return counts

    # ══════════════════════════════════════════════════════════════════════
    # Multi-practitioner runs
    # ══════════════════════════════════════════════════════════════════════

    async def sync_all_practitioners(self, remote_practitioner_id: Optional[str] = None) -> ManualSyncResponse:
        """
        Full sync of every active Halaxy practitioner, or just one.

        Raises:
            ConfigurationError: Credentials missing.
            TokenAcquisitionError / RemoteApiError: The practitioner list
                itself could not be fetched.
        """
        if not self.is_configured:
            raise ConfigurationError("Halaxy integration not configured")

        start_time = time.perf_counter()
        if remote_practitioner_id:
            practitioner = await self.remote.get_practitioner(remote_practitioner_id)
            if practitioner is None:
                return ManualSyncResponse(message=f"Practitioner {remote_practitioner_id} not found in Halaxy")
            practitioners = [practitioner]
        else:
            practitioners = await self.remote.get_all_practitioners()

        if not practitioners:
            return ManualSyncResponse(message="No practitioners found in Halaxy")

        summaries = []
        for practitioner in practitioners:
            result = await self.full_sync(practitioner.id, fhir_practitioner=practitioner)
            summaries.append(
                PractitionerSyncSummary(
                    practitioner_id=practitioner.id,
                    name=build_display_name(practitioner.name),
                    success=result.success,
                    records_processed=result.records_processed,
                    duration_ms=result.duration_ms,
                    errors=[error.message for error in result.errors],
                )
            )

        successful = sum(1 for s in summaries if s.success)
        return ManualSyncResponse(
            message=f"Sync completed: {successful}/{len(summaries)} successful",
            total_duration_ms=_elapsed_ms(start_time),
            practitioners=summaries,
        )

    async def run_scheduled_sweep(self) -> ManualSyncResponse:
        """Full sync of every active local practitioner, one after another."""
        if not self.is_configured:
            logger.warning("Halaxy not configured, scheduled sweep skipped")
            return ManualSyncResponse(message="Halaxy not configured; sweep skipped")

        start_time = time.perf_counter()
        targets = [(p.halaxy_practitioner_id, p.display_name) for p in await self.store.list_active_practitioners()]
        if not targets and self.settings.halaxy_practitioner_id:
            # Empty store: bootstrap from the configured practitioner
            targets = [(self.settings.halaxy_practitioner_id, self.settings.halaxy_practitioner_id)]
        if not targets:
            return ManualSyncResponse(message="No practitioners to sync")

        summaries = []
        for remote_id, name in targets:
            result = await self.full_sync(remote_id)
            summaries.append(
                PractitionerSyncSummary(
                    practitioner_id=remote_id,
                    name=name,
                    success=result.success,
                    records_processed=result.records_processed,
                    duration_ms=result.duration_ms,
                    errors=[error.message for error in result.errors],
                )
            )

        successful = sum(1 for s in summaries if s.success)
        logger.info("Scheduled sweep finished: %d/%d successful", successful, len(summaries))
        return ManualSyncResponse(
            message=f"Sync completed: {successful}/{len(summaries)} successful",
            total_duration_ms=_elapsed_ms(start_time),
            practitioners=summaries,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Availability (read-through, not persisted)
    # ══════════════════════════════════════════════════════════════════════

    async def get_availability(
        self,
        start: datetime,
        end: datetime,
        remote_practitioner_id: Optional[str] = None,
    ) -> AvailabilityResponse:
        if not self.is_configured:
            raise ConfigurationError("Halaxy integration not configured")

        practitioner_id = None
        if remote_practitioner_id:
            practitioner = await self.store.find_practitioner_by_remote_id(remote_practitioner_id)
            practitioner_id = practitioner.id if practitioner else None

        fhir_slots = await self.remote.get_available_slots(start, end, remote_practitioner_id)
        slots = []
        for fhir_slot in fhir_slots:
            try:
                slots.append(transform_slot(fhir_slot, practitioner_id))
            except ValidationError as e:
                logger.warning("Skipping malformed slot %s: %s", fhir_slot.id, str(e))
        slots.sort(key=lambda s: s.start_time)
        return AvailabilityResponse(slots=slots, total_count=len(slots))
