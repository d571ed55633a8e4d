"""
PracticeSync — Custom Exception Hierarchy
===========================================

What:  Application-specific exceptions for the sync engine and its HTTP surface.
Why:   The sync engine has to tell apart failures it can shrug off (a single
       client row) from failures that end a run (practitioner identity), and
       the HTTP layer has to map each to the right status code.
How:   Each exception carries a message and optional context dict.
       Global exception handlers (registered in main.py) turn them into
       structured JSON responses.
Who:   Raised by the Halaxy client, the sync store and the routes.

Exception Hierarchy:
    PracticeSyncError (base)
    ├── ConfigurationError      → 503 Service Unavailable (credentials missing)
    ├── TokenAcquisitionError   → 502 Bad Gateway (OAuth token endpoint failed)
    ├── RemoteApiError          → 502 Bad Gateway (FHIR call returned non-2xx)
    ├── ResolutionError         → per-record sync error (reference not resolvable)
    ├── PersistenceError        → 500 Internal Server Error
    ├── ValidationError         → 400 Bad Request
    └── WebhookSignatureError   → 401 Unauthorized
"""

from typing import Any, Dict, Optional

# Response bodies attached to RemoteApiError are cut to this many characters
MAX_ERROR_BODY_LENGTH = 200


class PracticeSyncError(Exception):
    """
    Base exception for all PracticeSync application errors.

    Attributes:
        message:  Human-readable error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(PracticeSyncError):
    """
    Raised when Halaxy credentials are missing.

    Detected before any network call; sync entry points turn it into a
    "not configured" result instead of a failed run.
    """

    def __init__(
        self,
        message: str = "Halaxy integration is not configured",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class TokenAcquisitionError(PracticeSyncError):
    """
    Raised when the OAuth client-credential exchange fails.

    Kept separate from RemoteApiError: a bad secret needs an operator, a bad
    resource fetch usually does not.
    """

    def __init__(
        self,
        message: str = "Failed to acquire Halaxy access token",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class RemoteApiError(PracticeSyncError):
    """
    Raised when a Halaxy FHIR call returns a non-2xx response.

    Carries the HTTP status and a truncated response body so the sync log
    holds something actionable without storing whole error pages.
    """

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        response_body: str = "",
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        body = (response_body or "")[:MAX_ERROR_BODY_LENGTH]
        message = f"Halaxy API error: {status_code} {reason}".rstrip()
        if body:
            message = f"{message} - {body}"
        ctx = context or {}
        ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code
        self.response_body = body
        self.retry_after = retry_after

    @property
    def is_retryable(self) -> bool:
        return self.status_code in (429, 502, 503, 504)


class ResolutionError(PracticeSyncError):
    """
    Raised when a remote reference cannot be mapped to a local entity.

    Example: an appointment with no Patient participant, or a patient whose
    practitioner is unknown both locally and in the payload.
    """

    def __init__(
        self,
        message: str = "Could not resolve remote reference",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PersistenceError(PracticeSyncError):
    """
    Raised when a local store write fails during an upsert.

    The message stays generic in HTTP responses; the SQL error is logged.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ValidationError(PracticeSyncError):
    """Raised when an inbound payload fails validation (400)."""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class WebhookSignatureError(PracticeSyncError):
    """Raised when a webhook body does not match its HMAC signature (401)."""

    def __init__(
        self,
        message: str = "Invalid webhook signature",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)

