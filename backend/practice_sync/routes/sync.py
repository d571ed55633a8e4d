"""
PracticeSync — Sync Route Handlers
====================================

What:  HTTP entry points into the sync engine.
How:   Thin handlers. Failures surface as PracticeSyncError subclasses and
       are turned into JSON by the handlers registered in main.py.

Endpoints:
    POST /api/sync/trigger                  manual full sync (all or one practitioner)
    POST /api/sync/webhook                  Halaxy change notification
    GET  /api/sync/status/{practitioner_id} health of one practitioner's sync
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Optional
from uuid import UUID

import pydantic
from fastapi import APIRouter, Depends, Query, Request

from practice_sync.config import Settings
from practice_sync.exceptions import ConfigurationError, ValidationError, WebhookSignatureError
from practice_sync.middleware.request_id import request_id_var
from practice_sync.schemas.sync import (
    ErrorResponse,
    ManualSyncResponse,
    NotConfiguredResponse,
    SyncStatusResponse,
    WebhookPayload,
    WebhookResponse,
)
from practice_sync.routes.deps import get_settings, get_sync_service
from practice_sync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Sync"])

SIGNATURE_HEADERS = ("x-halaxy-signature", "x-webhook-signature")


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Check the HMAC-SHA256 hex digest of the raw body.

    Raises:
        WebhookSignatureError: Signature missing or not matching.
    """
    if not signature:
        raise WebhookSignatureError("Missing webhook signature")
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise WebhookSignatureError()


@router.post(
    "/trigger",
    response_model=ManualSyncResponse,
    responses={
        502: {"description": "Halaxy unreachable or rejected the request", "model": ErrorResponse},
        503: {"description": "Halaxy credentials not configured", "model": NotConfiguredResponse},
    },
    summary="Run a full sync now",
)
async def trigger_sync(
    practitioner_id: Optional[str] = Query(
        default=None,
        description="Halaxy practitioner id; omit to sync every active practitioner",
    ),
    service: SyncService = Depends(get_sync_service),
) -> ManualSyncResponse:
    """
    Full sync of every Halaxy practitioner, one after another.

    Individual practitioner failures are reported in the body with a 200;
    only a failure to list practitioners at all is an error response.
    """
    rid = request_id_var.get("")
    logger.info("[%s] Manual sync triggered (practitioner=%s)", rid, practitioner_id or "all")
    return await service.sync_all_practitioners(practitioner_id)


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        400: {"description": "Malformed payload", "model": ErrorResponse},
        401: {"description": "Bad signature", "model": ErrorResponse},
    },
    summary="Receive a Halaxy change notification",
)
async def receive_webhook(
    request: Request,
    service: SyncService = Depends(get_sync_service),
    settings: Settings = Depends(get_settings),
) -> WebhookResponse:
    start_time = time.perf_counter()
    body = await request.body()

    if settings.halaxy_webhook_secret:
        signature = next(
            (request.headers[name] for name in SIGNATURE_HEADERS if name in request.headers),
            None,
        )
        verify_webhook_signature(body, signature, settings.halaxy_webhook_secret)

    try:
        raw = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Request body is not valid JSON") from e

    try:
        payload = WebhookPayload.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Webhook payload must contain 'event' and 'data'",
            context={"errors": [err["loc"] for err in e.errors()]},
        ) from e

    if not service.is_configured:
        raise ConfigurationError("Halaxy integration not configured")

    logger.info("Webhook received: %s", payload.event)
    result = await service.incremental_sync(payload.event, payload.data)
    duration_ms = int((time.perf_counter() - start_time) * 1000)
    logger.info(
        "Webhook %s processed in %dms (success=%s, records=%d)",
        payload.event,
        duration_ms,
        result.success,
        result.records_processed,
    )

    return WebhookResponse(
        success=result.success,
        event=payload.event,
        records_processed=result.records_processed,
        duration_ms=duration_ms,
        errors=result.errors,
    )


@router.get(
    "/status/{practitioner_id}",
    response_model=SyncStatusResponse,
    summary="Sync health for one practitioner",
)
async def get_sync_status(
    practitioner_id: UUID,
    service: SyncService = Depends(get_sync_service),
) -> SyncStatusResponse:
    return await service.sync_log.get_sync_status(practitioner_id)
