"""
PracticeSync — FastAPI Application Factory
============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() assembles middleware, exception handlers and routers;
       lifespan() builds the engine, the Halaxy client and the SyncService
       once and parks them on app.state.
Who:   uvicorn (`uvicorn practice_sync.main:app`) and the route tests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                     FastAPI App                          │
    │                                                          │
    │  Middleware:  RateLimit(trigger) → RequestID → Logging   │
    │                                                          │
    │  Routes:      /api/sync/trigger   /api/sync/webhook      │
    │               /api/sync/status    /api/availability      │
    │               /health                                    │
    │                                                          │
    │  Exception Handlers:                                     │
    │    Validation→400  Signature→401  Persistence→500        │
    │    Token/Remote→502  Configuration→503                   │
    └──────────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from practice_sync import __version__
from practice_sync.config import Settings, settings as default_settings
from practice_sync.database import create_engine_from_settings, create_session_factory, dispose_engine
from practice_sync.exceptions import (
    ConfigurationError,
    PersistenceError,
    PracticeSyncError,
    RemoteApiError,
    ResolutionError,
    TokenAcquisitionError,
    ValidationError,
    WebhookSignatureError,
)
from practice_sync.middleware.logging import RequestLoggingMiddleware
from practice_sync.middleware.rate_limit import RateLimitMiddleware
from practice_sync.middleware.request_id import RequestIDMiddleware, request_id_var
from practice_sync.routes import availability, health, sync
from practice_sync.services.halaxy_client import HalaxyClient
from practice_sync.services.sync_service import SyncService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure the root logger once per process (API or CLI).

    Format: 2024-01-15T12:00:00 [INFO] practice_sync.services.sync_service: ...
    """
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-request and per-statement chatter
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings

    setup_logging(settings.log_level)
    logger.info("=" * 60)
    logger.info("PracticeSync %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health and the 503 bodies tell operators what is missing
        logger.error("Configuration error: %s", str(e))

    engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(engine)
    remote = HalaxyClient(settings)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.sync_service = SyncService.create(remote, session_factory, settings)

    logger.info("Halaxy FHIR base: %s (configured=%s)", settings.halaxy_fhir_url, remote.is_configured)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("PracticeSync shutting down...")
    await remote.aclose()
    await dispose_engine(engine)
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details: Optional[dict] = None) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details,
        "request_id": request_id_var.get(""),
    }


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the PracticeSyncError hierarchy onto HTTP responses.

    Handler hierarchy:
        ValidationError         → 400
        WebhookSignatureError   → 401
        ResolutionError         → 422
        PersistenceError        → 500 (details logged, not returned)
        TokenAcquisitionError   → 502
        RemoteApiError          → 502 (Retry-After forwarded when Halaxy sent one)
        ConfigurationError      → 503 (body says which credentials are set)
        PracticeSyncError       → 500
        Exception               → 500
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(status_code=400, content=_error_body("validation_error", exc.message, exc.context))

    @app.exception_handler(WebhookSignatureError)
    async def handle_signature_error(request: Request, exc: WebhookSignatureError):
        logger.warning("[%s] Webhook rejected: %s", request_id_var.get(""), exc.message)
        return JSONResponse(status_code=401, content=_error_body("invalid_signature", exc.message))

    @app.exception_handler(ResolutionError)
    async def handle_resolution_error(request: Request, exc: ResolutionError):
        return JSONResponse(status_code=422, content=_error_body("unresolved_reference", exc.message, exc.context))

    @app.exception_handler(PersistenceError)
    async def handle_persistence_error(request: Request, exc: PersistenceError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(TokenAcquisitionError)
    async def handle_token_error(request: Request, exc: TokenAcquisitionError):
        logger.error("[%s] Halaxy authentication failed: %s", request_id_var.get(""), exc.message)
        return JSONResponse(status_code=502, content=_error_body("halaxy_auth_error", exc.message, exc.context))

    @app.exception_handler(RemoteApiError)
    async def handle_remote_error(request: Request, exc: RemoteApiError):
        logger.error("[%s] Halaxy API error: %s", request_id_var.get(""), exc.message)
        headers = {}
        if exc.retry_after:
            headers["Retry-After"] = str(int(exc.retry_after))
        return JSONResponse(
            status_code=502,
            content=_error_body("halaxy_api_error", exc.message, exc.context),
            headers=headers,
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        settings: Settings = request.app.state.settings
        return JSONResponse(
            status_code=503,
            content=_error_body("not_configured", exc.message, settings.credential_report()),
        )

    @app.exception_handler(PracticeSyncError)
    async def handle_practice_sync_error(request: Request, exc: PracticeSyncError):
        logger.error("[%s] Unhandled application error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(status_code=500, content=_error_body("server_error", exc.message))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title="PracticeSync API",
        description="Keeps the local practice database in sync with Halaxy.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Last added runs first: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware, settings=settings)

    register_exception_handlers(app)

    app.include_router(sync.router)
    app.include_router(availability.router)
    app.include_router(health.router)

    return app


app = create_app()
