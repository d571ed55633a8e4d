"""
PracticeSync — Transformer Unit Tests
=======================================

What we test:
    ✅ Status remapping is total (unknown / None → scheduled)
    ✅ Reference parsing, including PractitionerRole not matching Practitioner
    ✅ Practitioner email placeholder, specialty, qualifications
    ✅ Patient initials defaults and MHCP extensions
    ✅ Appointment end-time fallbacks, fee/paid extensions, modality
    ✅ Slot duration and location
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from practice_sync.exceptions import ValidationError
from practice_sync.models.enums import LocationType, SessionStatus
from practice_sync.schemas.fhir import FhirAppointment, FhirPatient, FhirPractitioner, FhirSlot
from practice_sync.services.transformers import (
    build_display_name,
    compute_initials,
    extract_id_from_reference,
    get_patient_id_from_appointment,
    get_practitioner_id_from_appointment,
    is_completed_status,
    is_placeholder_email,
    map_appointment_status,
    parse_fhir_date,
    transform_appointment,
    transform_patient,
    transform_practitioner,
    transform_slot,
)

from fhir_factories import NOW, appointment_json, patient_json, practitioner_json, slot_json

PRACTITIONER_ID = uuid.uuid4()
CLIENT_ID = uuid.uuid4()


class TestStatusMapping:
    @pytest.mark.parametrize(
        "remote, expected",
        [
            ("proposed", SessionStatus.SCHEDULED),
            ("pending", SessionStatus.SCHEDULED),
            ("booked", SessionStatus.SCHEDULED),
            ("arrived", SessionStatus.CONFIRMED),
            ("checked-in", SessionStatus.CONFIRMED),
            ("fulfilled", SessionStatus.COMPLETED),
            ("cancelled", SessionStatus.CANCELLED),
            ("entered-in-error", SessionStatus.CANCELLED),
            ("noshow", SessionStatus.NO_SHOW),
            ("waitlist", SessionStatus.SCHEDULED),
        ],
    )
    def test_known_statuses(self, remote, expected):
        assert map_appointment_status(remote) is expected

    @pytest.mark.parametrize("remote", [None, "", "teleported", "FULFILLED "])
    def test_unknown_or_odd_input_never_raises(self, remote):
        result = map_appointment_status(remote)
        assert isinstance(result, SessionStatus)

    def test_case_and_whitespace_are_ignored(self):
        assert map_appointment_status(" Fulfilled ") is SessionStatus.COMPLETED

    def test_unknown_maps_to_scheduled(self):
        assert map_appointment_status("teleported") is SessionStatus.SCHEDULED

    def test_completed_status_predicate(self):
        assert is_completed_status("completed")
        assert not is_completed_status(SessionStatus.SCHEDULED)


class TestReferences:
    def test_extract_id_from_relative_and_absolute(self):
        assert extract_id_from_reference("Patient/123") == "123"
        assert extract_id_from_reference("https://au-api.halaxy.com/fhir/Patient/123") == "123"
        assert extract_id_from_reference(None) is None
        assert extract_id_from_reference("") is None

    def test_participant_ids(self):
        appointment = FhirAppointment.model_validate(appointment_json("A-1", patient_id="PAT-9", practitioner_id="PR-7"))
        assert get_patient_id_from_appointment(appointment) == "PAT-9"
        assert get_practitioner_id_from_appointment(appointment) == "PR-7"

    def test_practitioner_role_is_not_a_practitioner(self):
        appointment = FhirAppointment.model_validate(
            {
                "id": "A-2",
                "participant": [
                    {"actor": {"reference": "PractitionerRole/ROLE-1"}},
                    {"actor": {"reference": "Patient/PAT-1"}},
                ],
            }
        )
        assert get_practitioner_id_from_appointment(appointment) is None

    def test_no_participants(self):
        appointment = FhirAppointment(id="A-3")
        assert get_patient_id_from_appointment(appointment) is None


class TestTransformPractitioner:
    def test_full_resource(self):
        record = transform_practitioner(
            FhirPractitioner.model_validate(
                practitioner_json(qualifications=("Master of Psychology", "Clinical Psychologist"))
            ),
            role_id="ROLE-1",
        )
        assert record.halaxy_practitioner_id == "PR-1"
        assert record.halaxy_practitioner_role_id == "ROLE-1"
        assert record.first_name == "Sarah"
        assert record.last_name == "Chen"
        assert record.display_name == "Dr Sarah Chen"
        assert record.email == "sarah.chen@example.com"
        assert record.phone == "0400 000 001"
        assert record.qualifications == "Master of Psychology, Clinical Psychologist"
        # first qualification mentioning psychology wins
        assert record.specialty == "Master of Psychology"

    def test_missing_email_gets_placeholder(self):
        record = transform_practitioner(FhirPractitioner.model_validate(practitioner_json("PR-9", email=None)))
        assert record.email == "PR-9@placeholder.local"
        assert is_placeholder_email(record.email)

    def test_no_name_is_unknown(self):
        record = transform_practitioner(FhirPractitioner(id="PR-2"))
        assert record.display_name == "Unknown"
        assert record.first_name == ""

    def test_missing_id_rejected(self):
        with pytest.raises(ValidationError):
            transform_practitioner(FhirPractitioner())


class TestTransformPatient:
    def test_basic_fields(self):
        record = transform_patient(FhirPatient.model_validate(patient_json(email="jamie@example.com")), PRACTITIONER_ID)
        assert record.halaxy_patient_id == "PAT-1"
        assert record.practitioner_id == PRACTITIONER_ID
        assert record.initials == "JL"
        assert record.email == "jamie@example.com"
        assert record.date_of_birth == date(1990, 4, 12)
        # no MHCP extension: left to the insert default
        assert record.mhcp_total_sessions is None

    def test_missing_names_give_question_mark_initials(self):
        record = transform_patient(FhirPatient(id="PAT-2"), PRACTITIONER_ID)
        assert record.initials == "??"
        assert compute_initials("Ana", "") == "A?"

    def test_mhcp_extensions(self):
        resource = patient_json(mhcp_total=6)
        resource["extension"] += [
            {"url": "https://halaxy.com/ext/mhcp-plan-start", "valueDate": "2026-01-01"},
            {"url": "https://halaxy.com/ext/mhcp-plan-expiry", "valueDate": "2026-12-31"},
            {"url": "https://halaxy.com/ext/presenting-issues", "valueString": "Anxiety"},
        ]
        record = transform_patient(FhirPatient.model_validate(resource), PRACTITIONER_ID)
        assert record.mhcp_total_sessions == 6
        assert record.mhcp_plan_start_date == date(2026, 1, 1)
        assert record.mhcp_plan_expiry_date == date(2026, 12, 31)
        assert record.presenting_issues == "Anxiety"

    def test_partial_birth_date_is_dropped(self):
        assert parse_fhir_date("1990") is None
        record = transform_patient(FhirPatient.model_validate(patient_json(birth_date="1990-04")), PRACTITIONER_ID)
        assert record.date_of_birth is None


class TestTransformAppointment:
    def _transform(self, resource, number=1):
        return transform_appointment(
            FhirAppointment.model_validate(resource),
            practitioner_id=PRACTITIONER_ID,
            client_id=CLIENT_ID,
            session_number=number,
        )

    def test_basic_mapping(self):
        start = datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc)
        record = self._transform(appointment_json("A-1", status="fulfilled", start=start, fee=180.5), number=4)
        assert record.halaxy_appointment_id == "A-1"
        assert record.scheduled_start_time == start
        assert record.scheduled_end_time == start + timedelta(minutes=50)
        assert record.session_number == 4
        assert record.status == SessionStatus.COMPLETED.value
        assert record.session_type == "Psychology Consultation"
        assert record.location_type == LocationType.IN_PERSON.value
        assert record.fee == Decimal("180.5")
        assert record.fee_currency == "AUD"
        assert record.is_paid is False

    def test_end_falls_back_to_minutes_duration(self):
        resource = appointment_json("A-2")
        del resource["end"]
        resource["minutesDuration"] = 30
        record = self._transform(resource)
        assert record.scheduled_end_time - record.scheduled_start_time == timedelta(minutes=30)

    def test_end_falls_back_to_start(self):
        resource = appointment_json("A-3")
        del resource["end"]
        record = self._transform(resource)
        assert record.scheduled_end_time == record.scheduled_start_time

    def test_telehealth_detected_from_service(self):
        record = self._transform(appointment_json("A-4", service="Telehealth Video Session"))
        assert record.location_type == LocationType.TELEHEALTH.value

    def test_paid_extension(self):
        resource = appointment_json("A-5")
        resource["extension"] = [{"url": "https://halaxy.com/ext/paid", "valueBoolean": True}]
        assert self._transform(resource).is_paid is True

    def test_missing_start_rejected(self):
        resource = appointment_json("A-6")
        del resource["start"]
        with pytest.raises(ValidationError):
            self._transform(resource)

    def test_session_number_must_be_positive(self):
        with pytest.raises(ValueError):
            self._transform(appointment_json("A-7"), number=0)


class TestTransformSlot:
    def test_slot(self):
        start = NOW + timedelta(days=2)
        record = transform_slot(FhirSlot.model_validate(slot_json("S-1", start, minutes=45)), PRACTITIONER_ID)
        assert record.halaxy_slot_id == "S-1"
        assert record.duration_minutes == 45
        assert record.location_type == LocationType.TELEHEALTH.value
        assert record.practitioner_id == PRACTITIONER_ID

    def test_slot_without_times_rejected(self):
        with pytest.raises(ValidationError):
            transform_slot(FhirSlot(id="S-2"))


class TestDisplayName:
    def test_falls_back_to_text(self):
        from practice_sync.schemas.fhir import HumanName

        assert build_display_name([HumanName(text="Dr. Who")]) == "Dr. Who"
        assert build_display_name(None) == "Unknown"
