"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Token Verification:
- All environments use SupabaseJwksVerifier; only env values change
- Tests pass their own verifier or skip the auth middleware

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Shared Resources (lifespan):
- One httpx.AsyncClient, shared by the provider adapters and blob store
- ProviderRegistry built from CLOUD_PROVIDERS_ENABLED (missing provider
  credentials fail startup)
- SyncOrchestrator owning the in-process active-sync guard
- Runs left in_progress by a previous process are finalized as error
Anything already present on app.state before startup is kept, so tests can
inject fakes.
"""

import json
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from casesync.api.routes import create_api_router
from casesync.auth.middleware import AuthMiddleware
from casesync.auth.verifier import SupabaseJwksVerifier, TokenVerifier
from casesync.config import get_settings
from casesync.db.session import get_session_factory
from casesync.errors import ApiError, ApiErrorCode
from casesync.logging import configure_logging, get_logger
from casesync.middleware.request_id import RequestIDMiddleware
from casesync.providers.errors import CloudStorageError
from casesync.providers.registry import ProviderRegistry
from casesync.responses import (
    api_error_handler,
    cloud_storage_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from casesync.services.orchestrator import SyncOrchestrator
from casesync.storage.client import create_blob_store

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_token_verifier() -> SupabaseJwksVerifier:
    """Create the token verifier using Supabase JWKS.

    Returns:
        SupabaseJwksVerifier configured with settings from environment.
    """
    settings = get_settings()

    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources."""
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )

    if getattr(app.state, "provider_registry", None) is None:
        app.state.provider_registry = ProviderRegistry.from_settings(
            app.state.httpx_client, settings
        )

    if getattr(app.state, "orchestrator", None) is None:
        session_factory = get_session_factory()
        app.state.orchestrator = SyncOrchestrator(
            app.state.provider_registry,
            create_blob_store(app.state.httpx_client, settings),
            session_factory,
            settings,
        )

        db = session_factory()
        try:
            app.state.orchestrator.recover_interrupted_runs(db)
        finally:
            db.close()

    logger.info("orchestrator_initialized", providers=settings.enabled_provider_list)

    yield

    await app.state.orchestrator.shutdown()
    await app.state.httpx_client.aclose()
    logger.info("httpx_client_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Casesync API",
        description="Cloud storage sync and document ingestion for case files",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(CloudStorageError, cloud_storage_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request"),
        )

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    # Use router factory to avoid import-time settings loading
    app.include_router(create_api_router())

    # Add auth middleware (runs on all requests except public paths)
    if not skip_auth_middleware:
        verifier = token_verifier or create_token_verifier()
        app.add_middleware(AuthMiddleware, verifier=verifier)
        logger.info("auth_middleware_enabled", env=settings.casesync_env.value)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
