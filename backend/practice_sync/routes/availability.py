"""
PracticeSync — Availability Route
===================================

GET /api/availability: free Halaxy slots in a time window, read straight
through from Halaxy. Slots change by the minute and are never stored.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from practice_sync.exceptions import ValidationError
from practice_sync.routes.deps import get_sync_service
from practice_sync.schemas.sync import AvailabilityResponse, ErrorResponse
from practice_sync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Availability"])

# Longest window one request may ask for
MAX_WINDOW = timedelta(days=31)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    responses={
        400: {"description": "Invalid window", "model": ErrorResponse},
        502: {"description": "Halaxy unreachable", "model": ErrorResponse},
    },
    summary="List free appointment slots",
)
async def list_availability(
    start: datetime = Query(description="Window start (ISO 8601)"),
    end: datetime = Query(description="Window end (ISO 8601)"),
    practitioner_id: Optional[str] = Query(
        default=None,
        description="Halaxy practitioner id; omit for every practitioner",
    ),
    service: SyncService = Depends(get_sync_service),
) -> AvailabilityResponse:
    start, end = _as_utc(start), _as_utc(end)
    if end <= start:
        raise ValidationError("'end' must be after 'start'", field="end")
    if end - start > MAX_WINDOW:
        raise ValidationError(f"Window may span at most {MAX_WINDOW.days} days", field="end")

    return await service.get_availability(start, end, practitioner_id)
