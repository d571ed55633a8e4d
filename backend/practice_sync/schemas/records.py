"""
PracticeSync — Local Entity Records
=====================================

What:  Fully-populated values produced by the transformers and consumed by
       the sync store.
Why:   The transformers stay pure. They never touch an ORM object, and the
       store decides per field whether to overwrite or keep the existing
       value.

Optional fields mean "Halaxy did not send this"; on update the store keeps
the existing column value for them.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from practice_sync.models.enums import LocationType, SessionStatus


class PractitionerRecord(BaseModel):
    halaxy_practitioner_id: str
    halaxy_practitioner_role_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    display_name: str = "Unknown"
    email: str = Field(description="Real email or {remoteId}@placeholder.local")
    phone: Optional[str] = None
    qualifications: Optional[str] = None
    specialty: Optional[str] = None
    is_active: bool = True


class ClientRecord(BaseModel):
    halaxy_patient_id: str
    practitioner_id: uuid.UUID
    first_name: str = ""
    last_name: str = ""
    initials: str = "??"
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    # None: no MHCP extension on the patient; the insert path applies the default
    mhcp_total_sessions: Optional[int] = None
    mhcp_plan_start_date: Optional[date] = None
    mhcp_plan_expiry_date: Optional[date] = None
    presenting_issues: Optional[str] = None
    is_active: bool = True


class SessionRecord(BaseModel):
    model_config = {"use_enum_values": True}

    halaxy_appointment_id: str
    practitioner_id: uuid.UUID
    client_id: uuid.UUID
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    session_number: int = Field(ge=1)
    status: SessionStatus = SessionStatus.SCHEDULED
    session_type: Optional[str] = None
    location_type: LocationType = LocationType.IN_PERSON
    notes: Optional[str] = None
    fee: Optional[Decimal] = None
    fee_currency: str = "AUD"
    is_paid: bool = False


class SlotRecord(BaseModel):
    """Availability slot; read-through only, never persisted."""

    model_config = {"use_enum_values": True}

    halaxy_slot_id: str
    practitioner_id: Optional[uuid.UUID] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str = "free"
    location_type: LocationType = LocationType.IN_PERSON
    service_type: Optional[str] = None
