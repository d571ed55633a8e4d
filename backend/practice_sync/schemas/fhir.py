"""
PracticeSync — Halaxy FHIR Resource Schemas
=============================================

What:  Pydantic models for the subset of Halaxy's FHIR resources the sync
       engine reads.
Why:   Every remote field is declared Optional. Parsing code then deals with
       explicit None instead of probing nested dicts, and unknown fields are
       kept (extra="allow") so nothing Halaxy adds breaks validation.
How:   Field names are snake_case in Python and camelCase on the wire
       (alias_generator=to_camel); populate_by_name lets tests use either.

Not a full FHIR model: only the fields the transformers depend on.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class FhirModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "allow",
    }


# ══════════════════════════════════════════════════════════════════════════
# Datatypes
# ══════════════════════════════════════════════════════════════════════════


class Coding(FhirModel):
    system: Optional[str] = None
    code: Optional[str] = None
    display: Optional[str] = None


class CodeableConcept(FhirModel):
    coding: Optional[List[Coding]] = None
    text: Optional[str] = None


class HumanName(FhirModel):
    use: Optional[str] = None
    text: Optional[str] = None
    family: Optional[str] = None
    given: Optional[List[str]] = None
    prefix: Optional[List[str]] = None
    suffix: Optional[List[str]] = None


class ContactPoint(FhirModel):
    # system: phone, email, fax, sms, url ...
    system: Optional[str] = None
    value: Optional[str] = None
    use: Optional[str] = None


class Reference(FhirModel):
    reference: Optional[str] = None
    display: Optional[str] = None


class Identifier(FhirModel):
    system: Optional[str] = None
    value: Optional[str] = None


class Money(FhirModel):
    value: Optional[float] = None
    currency: Optional[str] = None


class Extension(FhirModel):
    url: str = ""
    value_string: Optional[str] = None
    value_integer: Optional[int] = None
    value_boolean: Optional[bool] = None
    value_decimal: Optional[float] = None
    value_date: Optional[str] = None
    value_date_time: Optional[str] = None
    value_money: Optional[Money] = None


class Qualification(FhirModel):
    identifier: Optional[List[Identifier]] = None
    code: Optional[CodeableConcept] = None


class AppointmentParticipant(FhirModel):
    actor: Optional[Reference] = None
    status: Optional[str] = None
    required: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Resources
# ══════════════════════════════════════════════════════════════════════════


class FhirResource(FhirModel):
    resource_type: Optional[str] = None
    id: Optional[str] = None
    extension: Optional[List[Extension]] = None


class FhirPractitioner(FhirResource):
    active: Optional[bool] = None
    name: Optional[List[HumanName]] = None
    telecom: Optional[List[ContactPoint]] = None
    qualification: Optional[List[Qualification]] = None


class FhirPatient(FhirResource):
    active: Optional[bool] = None
    name: Optional[List[HumanName]] = None
    telecom: Optional[List[ContactPoint]] = None
    gender: Optional[str] = None
    # Kept as text: FHIR allows partial dates such as "1990" or "1990-04"
    birth_date: Optional[str] = None
    general_practitioner: Optional[List[Reference]] = None


class FhirAppointment(FhirResource):
    # proposed | pending | booked | arrived | fulfilled | cancelled | noshow
    # | entered-in-error | checked-in | waitlist
    status: Optional[str] = None
    service_type: Optional[List[CodeableConcept]] = None
    appointment_type: Optional[CodeableConcept] = None
    description: Optional[str] = None
    comment: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    minutes_duration: Optional[int] = None
    participant: Optional[List[AppointmentParticipant]] = None


class FhirSlot(FhirResource):
    schedule: Optional[Reference] = None
    # busy | free | busy-unavailable | busy-tentative | entered-in-error
    status: Optional[str] = None
    service_type: Optional[List[CodeableConcept]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    comment: Optional[str] = None


class FhirPractitionerRole(FhirResource):
    active: Optional[bool] = None
    practitioner: Optional[Reference] = None
    organization: Optional[Reference] = None
    code: Optional[List[CodeableConcept]] = None


# ══════════════════════════════════════════════════════════════════════════
# Bundles
# ══════════════════════════════════════════════════════════════════════════


class BundleLink(FhirModel):
    relation: Optional[str] = None
    url: Optional[str] = None


class BundleEntrySearch(FhirModel):
    # match | include | outcome
    mode: Optional[str] = None


class BundleEntry(FhirModel):
    full_url: Optional[str] = None
    # Left untyped: a searchset may mix resource types (_include)
    resource: Optional[Dict[str, Any]] = None
    search: Optional[BundleEntrySearch] = None


class Bundle(FhirModel):
    resource_type: Optional[str] = None
    type: Optional[str] = None
    total: Optional[int] = None
    link: Optional[List[BundleLink]] = None
    entry: Optional[List[BundleEntry]] = None

    def next_url(self) -> Optional[str]:
        for link in self.link or []:
            if link.relation == "next" and link.url:
                return link.url
        return None
