"""
PracticeSync — Halaxy → Local Entity Transformers
===================================================

What:  Pure functions mapping Halaxy FHIR resources onto local records.
Why:   Keeping the mapping free of I/O makes every edge case testable
       without a database or an HTTP mock.
How:   Each transform_* takes the parsed FHIR model plus the local context it
       cannot know by itself (foreign keys, session number) and returns a
       complete record from practice_sync.schemas.records.

Edge-case policies:
    - Missing name parts become "" and initials fall back to "?".
    - A practitioner without an email gets {remoteId}@placeholder.local
      (the local column is NOT NULL and UNIQUE).
    - Fee / paid flags come only from extensions, never from the status.
    - Modality is telehealth when service text mentions telehealth, video
      or online; otherwise in-person.
"""

import re
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from practice_sync.exceptions import ValidationError
from practice_sync.models.enums import LocationType, SessionStatus
from practice_sync.schemas.fhir import (
    CodeableConcept,
    ContactPoint,
    Extension,
    FhirAppointment,
    FhirPatient,
    FhirPractitioner,
    FhirSlot,
    HumanName,
)
from practice_sync.schemas.records import (
    ClientRecord,
    PractitionerRecord,
    SessionRecord,
    SlotRecord,
)

PLACEHOLDER_EMAIL_DOMAIN = "placeholder.local"
DEFAULT_FEE_CURRENCY = "AUD"

_TELEHEALTH_TOKENS = ("telehealth", "video", "online")


# ══════════════════════════════════════════════════════════════════════════
# Status Remapping
# ══════════════════════════════════════════════════════════════════════════


def map_appointment_status(remote_status: Optional[str]) -> SessionStatus:
    """
    Map a Halaxy appointment status onto the local session status.

    Closed table; anything unrecognised (including None) is "scheduled".
    """
    match (remote_status or "").strip().lower():
        case "proposed" | "pending" | "booked" | "waitlist":
            return SessionStatus.SCHEDULED
        case "arrived" | "checked-in":
            return SessionStatus.CONFIRMED
        case "fulfilled":
            return SessionStatus.COMPLETED
        case "cancelled" | "entered-in-error":
            return SessionStatus.CANCELLED
        case "noshow":
            return SessionStatus.NO_SHOW
        case _:
            return SessionStatus.SCHEDULED


def is_completed_status(status: SessionStatus | str) -> bool:
    return SessionStatus(status) is SessionStatus.COMPLETED


# ══════════════════════════════════════════════════════════════════════════
# References
# ══════════════════════════════════════════════════════════════════════════


def extract_id_from_reference(reference: Optional[str]) -> Optional[str]:
    """'Patient/123' or 'https://…/Patient/123' → '123'."""
    if not reference:
        return None
    last = reference.rstrip("/").rsplit("/", 1)[-1]
    return last or None


def _participant_id(appointment: FhirAppointment, resource_type: str) -> Optional[str]:
    # The trailing slash keeps "Practitioner/" from matching "PractitionerRole/"
    pattern = re.compile(rf"(?:^|/){resource_type}/([^/]+)$")
    for participant in appointment.participant or []:
        ref = participant.actor.reference if participant.actor else None
        if not ref:
            continue
        found = pattern.search(ref)
        if found:
            return found.group(1)
    return None


def get_patient_id_from_appointment(appointment: FhirAppointment) -> Optional[str]:
    return _participant_id(appointment, "Patient")


def get_practitioner_id_from_appointment(appointment: FhirAppointment) -> Optional[str]:
    return _participant_id(appointment, "Practitioner")


# ══════════════════════════════════════════════════════════════════════════
# Names, Contact & Extensions
# ══════════════════════════════════════════════════════════════════════════


def _primary_name(names: Optional[List[HumanName]]) -> Optional[HumanName]:
    if not names:
        return None
    for name in names:
        if name.use == "official":
            return name
    return names[0]


def _first(values: Optional[List[str]]) -> str:
    return values[0].strip() if values and values[0] else ""


def name_parts(names: Optional[List[HumanName]]) -> tuple[str, str]:
    """(first name, last name); either may be ""."""
    name = _primary_name(names)
    if name is None:
        return "", ""
    return _first(name.given), (name.family or "").strip()


def build_display_name(names: Optional[List[HumanName]]) -> str:
    name = _primary_name(names)
    if name is None:
        return "Unknown"
    parts = [_first(name.prefix), _first(name.given), (name.family or "").strip(), _first(name.suffix)]
    display = " ".join(part for part in parts if part)
    return display or (name.text or "").strip() or "Unknown"


def compute_initials(first_name: str, last_name: str) -> str:
    first = first_name.strip()[:1].upper() or "?"
    last = last_name.strip()[:1].upper() or "?"
    return first + last


def get_telecom(telecom: Optional[List[ContactPoint]], system: str) -> Optional[str]:
    for contact in telecom or []:
        if contact.system == system and contact.value and contact.value.strip():
            return contact.value.strip()
    return None


def placeholder_email(remote_id: str) -> str:
    return f"{remote_id}@{PLACEHOLDER_EMAIL_DOMAIN}"


def is_placeholder_email(email: Optional[str]) -> bool:
    return bool(email) and email.endswith(f"@{PLACEHOLDER_EMAIL_DOMAIN}")


def find_extension(extensions: Optional[List[Extension]], *needles: str) -> Optional[Extension]:
    """First extension whose URL contains any of the needles (case-insensitive)."""
    for ext in extensions or []:
        url = ext.url.lower()
        if any(needle in url for needle in needles):
            return ext
    return None


def extract_fee(extensions: Optional[List[Extension]]) -> Optional[Decimal]:
    ext = find_extension(extensions, "fee", "amount")
    if ext is None:
        return None
    raw = ext.value_money.value if ext.value_money else ext.value_decimal
    if raw is None:
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        return None


def extract_is_paid(extensions: Optional[List[Extension]]) -> bool:
    ext = find_extension(extensions, "paid", "payment-status")
    return bool(ext and ext.value_boolean is True)


def _concept_texts(concepts: Iterable[Optional[CodeableConcept]]) -> List[str]:
    texts = []
    for concept in concepts:
        if concept is None:
            continue
        if concept.text:
            texts.append(concept.text)
        for coding in concept.coding or []:
            texts.extend(value for value in (coding.code, coding.display) if value)
    return texts


def classify_location(texts: Iterable[Optional[str]]) -> LocationType:
    haystack = " ".join(text for text in texts if text).lower()
    if any(token in haystack for token in _TELEHEALTH_TOKENS):
        return LocationType.TELEHEALTH
    return LocationType.IN_PERSON


def _concept_display(concept: Optional[CodeableConcept]) -> Optional[str]:
    if concept is None:
        return None
    for coding in concept.coding or []:
        if coding.display:
            return coding.display
    return concept.text


def parse_fhir_date(value: Optional[str]) -> Optional[date]:
    """Full dates only; partial FHIR dates ('1990', '1990-04') yield None."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def parse_fhir_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ══════════════════════════════════════════════════════════════════════════
# Resource Transformers
# ══════════════════════════════════════════════════════════════════════════


def transform_practitioner(
    fhir: FhirPractitioner,
    role_id: Optional[str] = None,
) -> PractitionerRecord:
    if not fhir.id:
        raise ValidationError("Practitioner resource has no id", field="id")

    first_name, last_name = name_parts(fhir.name)

    qualifications = []
    specialty = None
    for qualification in fhir.qualification or []:
        display = _concept_display(qualification.code)
        if display and specialty is None and "psycholog" in display.lower():
            specialty = display
        label = display or next(
            (ident.value for ident in qualification.identifier or [] if ident.value), None
        )
        if label:
            qualifications.append(label)

    return PractitionerRecord(
        halaxy_practitioner_id=fhir.id,
        halaxy_practitioner_role_id=role_id,
        first_name=first_name,
        last_name=last_name,
        display_name=build_display_name(fhir.name),
        email=get_telecom(fhir.telecom, "email") or placeholder_email(fhir.id),
        phone=get_telecom(fhir.telecom, "phone"),
        qualifications=", ".join(qualifications) or None,
        specialty=specialty,
        is_active=fhir.active is not False,
    )


def transform_patient(fhir: FhirPatient, practitioner_id: uuid.UUID) -> ClientRecord:
    if not fhir.id:
        raise ValidationError("Patient resource has no id", field="id")

    first_name, last_name = name_parts(fhir.name)

    mhcp_total = find_extension(fhir.extension, "mhcp-total", "mental-health-plan-sessions")
    plan_start = find_extension(fhir.extension, "mhcp-plan-start", "mental-health-plan-start")
    plan_expiry = find_extension(fhir.extension, "mhcp-plan-expiry", "mental-health-plan-expiry")
    issues = find_extension(fhir.extension, "presenting-issues")

    return ClientRecord(
        halaxy_patient_id=fhir.id,
        practitioner_id=practitioner_id,
        first_name=first_name,
        last_name=last_name,
        initials=compute_initials(first_name, last_name),
        email=get_telecom(fhir.telecom, "email"),
        phone=get_telecom(fhir.telecom, "phone"),
        date_of_birth=parse_fhir_date(fhir.birth_date),
        mhcp_total_sessions=mhcp_total.value_integer if mhcp_total else None,
        mhcp_plan_start_date=parse_fhir_date(plan_start.value_date) if plan_start else None,
        mhcp_plan_expiry_date=parse_fhir_date(plan_expiry.value_date) if plan_expiry else None,
        presenting_issues=issues.value_string if issues else None,
        is_active=fhir.active is not False,
    )


def transform_appointment(
    fhir: FhirAppointment,
    practitioner_id: uuid.UUID,
    client_id: uuid.UUID,
    session_number: int,
) -> SessionRecord:
    if not fhir.id:
        raise ValidationError("Appointment resource has no id", field="id")
    if fhir.start is None:
        raise ValidationError(f"Appointment {fhir.id} has no start time", field="start")

    start = fhir.start
    if fhir.end is not None:
        end = fhir.end
    elif fhir.minutes_duration:
        end = start + timedelta(minutes=fhir.minutes_duration)
    else:
        end = start

    service_types = list(fhir.service_type or [])
    session_type = _concept_display(service_types[0]) if service_types else None
    if session_type is None:
        session_type = _concept_display(fhir.appointment_type)

    actual_start = find_extension(fhir.extension, "actual-start")
    actual_end = find_extension(fhir.extension, "actual-end")

    return SessionRecord(
        halaxy_appointment_id=fhir.id,
        practitioner_id=practitioner_id,
        client_id=client_id,
        scheduled_start_time=start,
        scheduled_end_time=end,
        actual_start_time=parse_fhir_datetime(actual_start.value_date_time or actual_start.value_string)
        if actual_start
        else None,
        actual_end_time=parse_fhir_datetime(actual_end.value_date_time or actual_end.value_string)
        if actual_end
        else None,
        session_number=session_number,
        status=map_appointment_status(fhir.status),
        session_type=session_type,
        location_type=classify_location(
            _concept_texts([*service_types, fhir.appointment_type]) + [fhir.description]
        ),
        notes=fhir.comment or fhir.description,
        fee=extract_fee(fhir.extension),
        fee_currency=DEFAULT_FEE_CURRENCY,
        is_paid=extract_is_paid(fhir.extension),
    )


def transform_slot(fhir: FhirSlot, practitioner_id: Optional[uuid.UUID] = None) -> SlotRecord:
    if not fhir.id or fhir.start is None or fhir.end is None:
        raise ValidationError("Slot resource is missing id, start or end")

    service_types = list(fhir.service_type or [])
    return SlotRecord(
        halaxy_slot_id=fhir.id,
        practitioner_id=practitioner_id,
        start_time=fhir.start,
        end_time=fhir.end,
        duration_minutes=int((fhir.end - fhir.start).total_seconds() // 60),
        status=fhir.status or "free",
        location_type=classify_location(_concept_texts(service_types) + [fhir.comment]),
        service_type=_concept_display(service_types[0]) if service_types else None,
    )
