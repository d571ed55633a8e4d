"""
PracticeSync — Halaxy FHIR Client
===================================

What:  Concrete PracticeManagementClient over Halaxy's FHIR REST API.
Why:   One place owns authentication, throttling, retries and pagination so
       the sync engine only ever sees parsed FHIR models.
How:   httpx.AsyncClient for transport, TokenManager for the bearer token,
       tenacity for retrying transient failures.
Who:   Built once per process and injected into SyncService.

Resilience Strategy:
    1. Client-side ceiling of N requests per rolling minute (sleep when hit)
    2. Tenacity retry with exponential backoff + jitter for transport errors
       and 429/502/503/504; a 429 Retry-After header wins over the backoff
    3. A 401 invalidates the cached token and replays the request once
    4. Non-2xx responses become RemoteApiError with a truncated body
"""

import asyncio
import logging
import re
import time
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from practice_sync.config import Settings
from practice_sync.exceptions import RemoteApiError
from practice_sync.schemas.fhir import (
    Bundle,
    FhirAppointment,
    FhirModel,
    FhirPatient,
    FhirPractitioner,
    FhirPractitionerRole,
    FhirSlot,
)
from practice_sync.schemas.sync import TokenStatus
from practice_sync.services.remote_base import PracticeManagementClient
from practice_sync.services.token_manager import TokenManager
from practice_sync.services.transformers import build_display_name, extract_id_from_reference

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"

# Guards against a server that keeps returning the same `next` link
MAX_PAGES = 200

# Upper bound on a server-provided Retry-After we are willing to honour
MAX_RETRY_AFTER_SECONDS = 120.0

# Halaxy practitioner ids look like PR-123 or EP-123; patient search wants the number
_PRACTITIONER_PREFIX = re.compile(r"^(PR|EP)-")

ResourceT = TypeVar("ResourceT", bound=FhirModel)
Params = List[Tuple[str, str]]


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, RemoteApiError) and exc.is_retryable


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


class HalaxyClient(PracticeManagementClient):
    def __init__(
        self,
        settings: Settings,
        http: Optional[httpx.AsyncClient] = None,
        token_manager: Optional[TokenManager] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self._settings = settings
        self._base_url = settings.halaxy_fhir_url
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=settings.halaxy_request_timeout)
        self._tokens = token_manager or TokenManager(settings, self._http)
        self._clock = clock
        self._sleep = sleep

        # Timestamps of requests issued in the current rolling minute
        self._request_times: Deque[float] = deque()
        self._throttle_lock = asyncio.Lock()

        self._backoff = wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=settings.retry_jitter,
        )

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    def token_status(self) -> TokenStatus:
        return self._tokens.status()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ══════════════════════════════════════════════════════════════════════
    # Practitioners
    # ══════════════════════════════════════════════════════════════════════

    async def get_practitioner(self, remote_id: str) -> Optional[FhirPractitioner]:
        payload = await self._get(f"/Practitioner/{remote_id}", allow_not_found=True)
        return FhirPractitioner.model_validate(payload) if payload is not None else None

    async def get_all_practitioners(self) -> List[FhirPractitioner]:
        return await self._get_all_pages(
            "/Practitioner", [("active", "true")], FhirPractitioner
        )

    async def get_practitioner_roles(self, remote_practitioner_id: str) -> List[FhirPractitionerRole]:
        return await self._get_all_pages(
            "/PractitionerRole",
            [("practitioner", f"Practitioner/{remote_practitioner_id}")],
            FhirPractitionerRole,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Patients
    # ══════════════════════════════════════════════════════════════════════

    async def get_patient(self, remote_id: str) -> Optional[FhirPatient]:
        payload = await self._get(f"/Patient/{remote_id}", allow_not_found=True)
        return FhirPatient.model_validate(payload) if payload is not None else None

    async def get_patients_by_practitioner(self, remote_practitioner_id: str) -> List[FhirPatient]:
        numeric_id = _PRACTITIONER_PREFIX.sub("", remote_practitioner_id)
        return await self._get_all_pages(
            "/Patient",
            [
                ("general-practitioner", f"Practitioner/{numeric_id}"),
                ("active", "true"),
            ],
            FhirPatient,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Appointments
    # ══════════════════════════════════════════════════════════════════════

    def _appointment_params(
        self,
        remote_practitioner_id: str,
        start: datetime,
        end: datetime,
        statuses: Optional[Sequence[str]] = None,
    ) -> Params:
        params: Params = [
            ("actor", f"Practitioner/{remote_practitioner_id}"),
            ("date", f"ge{start:%Y-%m-%d}"),
            ("date", f"lt{end:%Y-%m-%d}"),
        ]
        if statuses:
            params.append(("status", ",".join(statuses)))
        return params

    async def get_appointments_by_practitioner(
        self,
        remote_practitioner_id: str,
        start: datetime,
        end: datetime,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[FhirAppointment]:
        return await self._get_all_pages(
            "/Appointment",
            self._appointment_params(remote_practitioner_id, start, end, statuses),
            FhirAppointment,
        )

    async def get_appointments_with_patient_details(
        self,
        remote_practitioner_id: str,
        start: datetime,
        end: datetime,
    ) -> List[FhirAppointment]:
        params = self._appointment_params(remote_practitioner_id, start, end)
        params.append(("_include", "Appointment:patient"))
        resources = await self._collect("/Appointment", params)

        patient_names: Dict[str, str] = {}
        appointments: List[FhirAppointment] = []
        for resource in resources:
            kind = resource.get("resourceType")
            if kind == "Patient":
                patient = FhirPatient.model_validate(resource)
                patient_names[patient.id] = build_display_name(patient.name)
            elif kind == "Appointment":
                appointments.append(FhirAppointment.model_validate(resource))

        for appointment in appointments:
            for participant in appointment.participant or []:
                actor = participant.actor
                if actor is None or actor.display or not actor.reference:
                    continue
                if "Patient/" not in actor.reference:
                    continue
                name = patient_names.get(extract_id_from_reference(actor.reference) or "")
                if name:
                    actor.display = name

        return appointments

    # ══════════════════════════════════════════════════════════════════════
    # Availability
    # ══════════════════════════════════════════════════════════════════════

    async def get_available_slots(
        self,
        start: datetime,
        end: datetime,
        remote_practitioner_id: Optional[str] = None,
    ) -> List[FhirSlot]:
        params: Params = []
        if remote_practitioner_id:
            params.append(("practitioner", f"Practitioner/{remote_practitioner_id}"))
        params += [
            ("start", f"ge{start.isoformat()}"),
            ("end", f"le{end.isoformat()}"),
            ("status", "free"),
        ]
        return await self._get_all_pages("/Slot", params, FhirSlot)

    # ══════════════════════════════════════════════════════════════════════
    # Transport
    # ══════════════════════════════════════════════════════════════════════

    async def _get_all_pages(
        self, path: str, params: Params, model: Type[ResourceT]
    ) -> List[ResourceT]:
        resource_type = model.__name__.removeprefix("Fhir")
        return [
            model.model_validate(resource)
            for resource in await self._collect(path, params)
            if resource.get("resourceType", resource_type) == resource_type
        ]

    async def _collect(self, path: str, params: Optional[Params]) -> List[Dict[str, Any]]:
        """Follow `next` links and return every usable entry resource."""
        url: Optional[str] = path
        resources: List[Dict[str, Any]] = []
        pages = 0

        while url:
            payload = await self._get(url, params=params)
            bundle = Bundle.model_validate(payload or {})
            for entry in bundle.entry or []:
                resource = entry.resource
                # Halaxy injects OperationOutcome "warning" entries into searchsets
                if not resource or not resource.get("id") or resource.get("id") == "warning":
                    continue
                resources.append(resource)

            pages += 1
            url = bundle.next_url()
            # The next link already carries the full query string
            params = None
            if url and pages >= MAX_PAGES:
                logger.warning("Stopping pagination of %s after %d pages", path, pages)
                break

        logger.debug("Fetched %d resources from %s in %d page(s)", len(resources), path, pages)
        return resources

    async def _get(
        self,
        path_or_url: str,
        params: Optional[Params] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        url = path_or_url if path_or_url.startswith("http") else f"{self._base_url}{path_or_url}"

        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self._settings.retry_max_attempts),
            wait=self._wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(url, params, allow_not_found)
        return None

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RemoteApiError) and exc.retry_after is not None:
            return min(exc.retry_after, MAX_RETRY_AFTER_SECONDS)
        return self._backoff(retry_state)

    async def _send(
        self,
        url: str,
        params: Optional[Params],
        allow_not_found: bool,
    ) -> Optional[Dict[str, Any]]:
        response = await self._request(url, params)

        if response.status_code == 401:
            logger.warning("Halaxy returned 401 for %s, refreshing token and retrying once", url)
            self._tokens.invalidate()
            response = await self._request(url, params)

        if response.status_code == 404 and allow_not_found:
            return None

        if not response.is_success:
            raise RemoteApiError(
                status_code=response.status_code,
                reason=response.reason_phrase,
                response_body=response.text,
                retry_after=_parse_retry_after(response),
                context={"url": url},
            )

        return response.json()

    async def _request(self, url: str, params: Optional[Params]) -> httpx.Response:
        token = await self._tokens.get_token()
        await self._throttle()
        start_time = time.perf_counter()
        response = await self._http.get(
            url,
            params=params,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": FHIR_JSON,
                "Content-Type": FHIR_JSON,
            },
        )
        logger.debug(
            "GET %s -> %d in %.0fms",
            url,
            response.status_code,
            (time.perf_counter() - start_time) * 1000,
        )
        return response

    async def _throttle(self) -> None:
        """Sleep until a request slot is free in the rolling one-minute window."""
        async with self._throttle_lock:
            limit = self._settings.halaxy_max_requests_per_minute
            now = self._clock()
            while self._request_times and now - self._request_times[0] >= 60:
                self._request_times.popleft()

            if len(self._request_times) >= limit:
                wait = 60 - (now - self._request_times[0])
                logger.info("Halaxy request ceiling reached (%d/min), waiting %.1fs", limit, wait)
                await self._sleep(wait)
                now = self._clock()
                while self._request_times and now - self._request_times[0] >= 60:
                    self._request_times.popleft()

            self._request_times.append(now)
