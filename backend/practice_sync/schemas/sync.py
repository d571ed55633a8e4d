"""
PracticeSync — Sync Request/Response Schemas
==============================================

What:  Pydantic models for sync results, status reports and the HTTP
       contract of the trigger, webhook and health endpoints.
Who:   Returned by SyncService / SyncLogWriter and serialized by the routes.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from practice_sync.models.enums import SyncHealth
from practice_sync.models.mixins import utc_now
from practice_sync.schemas.records import SlotRecord


# ══════════════════════════════════════════════════════════════════════════
# Sync Results
# ══════════════════════════════════════════════════════════════════════════


class SyncErrorItem(BaseModel):
    """One non-fatal (or the single fatal) failure inside a sync run."""

    entity_type: str = Field(description="practitioner, client, session or all")
    entity_id: str = Field(description="Remote id of the entity that failed")
    operation: str = Field(description="create, update, delete or full_sync")
    message: str
    timestamp: datetime = Field(default_factory=utc_now)


class SyncResult(BaseModel):
    """
    Outcome of one full or incremental sync.

    status distinguishes three cases:
        completed       the run happened; `success` says whether it succeeded
        not_configured  credentials missing, nothing was attempted
    """

    success: bool
    status: str = Field(default="completed", description="completed or not_configured")
    sync_log_id: Optional[uuid.UUID] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_deleted: int = 0
    errors: List[SyncErrorItem] = Field(default_factory=list)
    duration_ms: int = 0

    @classmethod
    def not_configured(cls) -> "SyncResult":
        return cls(success=False, status="not_configured")


class SyncStatusResponse(BaseModel):
    practitioner_id: uuid.UUID
    last_full_sync: Optional[datetime] = None
    last_incremental_sync: Optional[datetime] = None
    status: SyncHealth
    error_message: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Manual Trigger
# ══════════════════════════════════════════════════════════════════════════


class PractitionerSyncSummary(BaseModel):
    practitioner_id: str = Field(description="Halaxy practitioner id")
    name: str
    success: bool
    records_processed: int
    duration_ms: int
    errors: List[str] = Field(default_factory=list)


class ManualSyncResponse(BaseModel):
    message: str
    total_duration_ms: int = 0
    practitioners: List[PractitionerSyncSummary] = Field(default_factory=list)


class NotConfiguredResponse(BaseModel):
    error: str = "not_configured"
    message: str
    details: Dict[str, bool]


# ══════════════════════════════════════════════════════════════════════════
# Webhook
# ══════════════════════════════════════════════════════════════════════════


class WebhookPayload(BaseModel):
    """
    Inbound change notification from Halaxy.

    `event` is kept as free text: unknown kinds are acknowledged and ignored
    rather than rejected, so Halaxy does not keep redelivering them.
    """

    event: str = Field(min_length=1)
    timestamp: Optional[str] = None
    data: Dict[str, Any]
    signature: Optional[str] = None


class WebhookResponse(BaseModel):
    success: bool
    event: str
    records_processed: int
    duration_ms: int
    errors: List[SyncErrorItem] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════
# Availability / Health / Errors
# ══════════════════════════════════════════════════════════════════════════


class AvailabilityResponse(BaseModel):
    slots: List[SlotRecord]
    total_count: int


class TokenStatus(BaseModel):
    has_token: bool
    expires_at: Optional[datetime] = None
    is_expired: bool


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="connected or disconnected")
    halaxy: str = Field(description="configured or not_configured")
    token: Optional[TokenStatus] = None
    uptime_seconds: float


class ErrorResponse(BaseModel):
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")
