"""
PracticeSync — Abstract Practice-Management Client Interface
==============================================================

What:  Abstract base class defining what the sync engine needs from the
       practice-management (PM) system.
Why:   SyncService depends on this contract, not on HalaxyClient, so tests
       inject an in-memory fake and the HTTP details stay in one place.
How:   HalaxyClient implements it over httpx; tests implement it over dicts.
Who:   Constructed at process start (API lifespan or CLI) and passed into
       SyncService.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from practice_sync.schemas.fhir import (
    FhirAppointment,
    FhirPatient,
    FhirPractitioner,
    FhirPractitionerRole,
    FhirSlot,
)
from practice_sync.schemas.sync import TokenStatus


class PracticeManagementClient(ABC):
    """
    Contract:
        - Collection fetches paginate transparently and return every page.
        - Single-resource fetches return None only on a "not found" response.
        - Any other non-2xx raises RemoteApiError; auth failures raise
          TokenAcquisitionError.
    """

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials are present; no network call is made."""
        ...

    # ── Practitioners ─────────────────────────────────────────────────────
    @abstractmethod
    async def get_practitioner(self, remote_id: str) -> Optional[FhirPractitioner]:
        ...

    @abstractmethod
    async def get_all_practitioners(self) -> List[FhirPractitioner]:
        ...

    @abstractmethod
    async def get_practitioner_roles(self, remote_practitioner_id: str) -> List[FhirPractitionerRole]:
        ...

    # ── Patients ──────────────────────────────────────────────────────────
    @abstractmethod
    async def get_patient(self, remote_id: str) -> Optional[FhirPatient]:
        ...

    @abstractmethod
    async def get_patients_by_practitioner(self, remote_practitioner_id: str) -> List[FhirPatient]:
        ...

    # ── Appointments ──────────────────────────────────────────────────────
    @abstractmethod
    async def get_appointments_by_practitioner(
        self,
        remote_practitioner_id: str,
        start: datetime,
        end: datetime,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[FhirAppointment]:
        ...

    @abstractmethod
    async def get_appointments_with_patient_details(
        self,
        remote_practitioner_id: str,
        start: datetime,
        end: datetime,
    ) -> List[FhirAppointment]:
        """Same as above, with participant display names filled from Patient resources."""
        ...

    # ── Availability ──────────────────────────────────────────────────────
    @abstractmethod
    async def get_available_slots(
        self,
        start: datetime,
        end: datetime,
        remote_practitioner_id: Optional[str] = None,
    ) -> List[FhirSlot]:
        ...

    # ── Diagnostics & Lifecycle ───────────────────────────────────────────
    @abstractmethod
    def token_status(self) -> TokenStatus:
        ...

    @abstractmethod
    async def aclose(self) -> None:
        ...
