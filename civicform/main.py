"""
CivicForm Middleware - FastAPI Application Factory
====================================================

What:  Builds the FastAPI application: middleware, error handlers, routes and
       the startup/shutdown lifecycle.
Who:   uvicorn (`uvicorn civicform.main:app`) or the `civicform-middleware`
       console script.

Application Architecture:
    ┌───────────────────────────────────────────────────────────┐
    │                       FastAPI App                         │
    │                                                           │
    │  Middleware: Request ID → Logging → Rate Limit → GZip →   │
    │              CORS                                         │
    │                                                           │
    │  Routes:                                                  │
    │    /api/webform/{id}/structure   structure cache          │
    │    /api/webform/{id}/submission  submission queue         │
    │    /api/submissions/...          collector drain / ack    │
    │    /api/settings, analytics, logs                         │
    │    /health                                                │
    │                                                           │
    │  Exception Handlers:                                      │
    │    Validation→400  Auth→401  NotFound→404  RateLimit→429  │
    │    Database→500    anything else→500                      │
    └───────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check, table creation (optional),
              default runtime settings
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from civicform import __version__
from civicform.config import settings
from civicform.database import async_session_factory, dispose_engine, init_models
from civicform.exceptions import (
    AuthenticationError,
    CivicFormError,
    DatabaseError,
    NotFoundError,
    RateLimitExceededError,
    ValidationError,
)
from civicform.middleware.client_info import get_client_ip, get_user_agent
from civicform.middleware.logging import RequestLoggingMiddleware
from civicform.middleware.rate_limit import RateLimitMiddleware
from civicform.middleware.request_id import RequestIDMiddleware, request_id_var
from civicform.routes import admin, health, structures, submissions
from civicform.services.app_setting_service import app_setting_service
from civicform.services.log_service import error_log_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, at startup.

    Format: 2025-01-15T12:00:00 [INFO] civicform.access: GET /api/... 200 3.1ms
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Per-request noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("CivicForm Middleware %s starting up...", __version__)

    # Missing secrets are reported, not fatal: the gates fail closed and
    # /health keeps answering.
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
    if settings.allow_unauthenticated:
        logger.warning(
            "ALLOW_UNAUTHENTICATED is enabled: groups without a secret accept unauthenticated requests"
        )

    if settings.auto_create_tables:
        await init_models()

    async with async_session_factory() as session:
        added = await app_setting_service.seed_defaults(session)
        await session.commit()
    if added:
        logger.info("Seeded %d default app settings", added)

    logger.info("Submission delivery mode: %s", settings.submission_delivery_mode)
    logger.info(
        "Rate limit: %d requests per %ds per client IP",
        settings.rate_limit_requests,
        settings.rate_limit_window,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("CivicForm Middleware shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": error, "message": message}
    if details:
        body["details"] = details
    body["request_id"] = request_id_var.get("") or None
    return body


def _request_summary(request: Request) -> str:
    return "%s %s from %s (%s)" % (
        request.method,
        request.url.path,
        get_client_ip(request),
        get_user_agent(request) or "-",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to HTTP responses with one body shape:

        {"error": code, "message": text, "details": {...}?, "request_id": id}

    ValidationError / RequestValidationError → 400 validation_error
    AuthenticationError                      → 401 unauthorized
    NotFoundError / unknown route            → 404 not_found
    RateLimitExceededError                   → 429 rate_limit_exceeded
    DatabaseError                            → 500 server_error
    Exception (fallback)                     → 500 internal_server_error

    5xx bodies never carry exception text; it is logged and persisted to
    error_logs instead.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s | %s", rid, exc.message, _request_summary(request))
        await error_log_service.record("warn", f"Validation error: {exc.message}", request=request)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        rid = request_id_var.get("")
        errors = [
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        logger.warning("[%s] Malformed request: %s | %s", rid, errors, _request_summary(request))
        await error_log_service.record("warn", "Malformed request body or parameters", request=request)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", "Invalid request", {"errors": errors}),
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        # Already logged and persisted by the gate
        return JSONResponse(
            status_code=401,
            content=_error_body("unauthorized", exc.message),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        rid = request_id_var.get("")
        logger.info("[%s] Not found: %s", rid, exc.message)
        await error_log_service.record("info", exc.message, request=request)
        return JSONResponse(
            status_code=404,
            content=_error_body("not_found", exc.message, exc.context),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        rid = request_id_var.get("")
        if exc.status_code == 404:
            logger.info("[%s] Route not found: %s %s", rid, request.method, request.url.path)
            await error_log_service.record(
                "info", f"404 - Route not found: {request.url.path}", request=request
            )
            return JSONResponse(
                status_code=404,
                content=_error_body("not_found", "Endpoint not found"),
            )
        logger.warning("[%s] HTTP %d: %s", rid, exc.status_code, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body("http_error", str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=429,
            content=_error_body("rate_limit_exceeded", exc.message, exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        await error_log_service.record("error", f"Database error: {exc.context}", error=exc, request=request)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(CivicFormError)
    async def handle_civicform_error(request: Request, exc: CivicFormError):
        rid = request_id_var.get("")
        logger.error("[%s] Application error: %s | Context: %s", rid, exc.message, exc.context)
        await error_log_service.record("error", exc.message, error=exc, request=request)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        await error_log_service.record("error", "Unexpected error", error=exc, request=request)
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

def create_app() -> FastAPI:
    app = FastAPI(
        title="CivicForm Middleware",
        description=(
            "Store-and-forward middleware between a public form frontend and a "
            "backend that cannot receive traffic directly: a cache of form "
            "structures and a queue of submissions drained by a polling collector."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → RateLimit → GZip → CORS

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_origins_list != ["*"],
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "Retry-After",
        ],
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.add_middleware(RateLimitMiddleware)

    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(structures.router)
    app.include_router(submissions.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve `app` with uvicorn on BACKEND_HOST:BACKEND_PORT."""
    import uvicorn

    uvicorn.run(
        "civicform.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        log_level=settings.log_level.lower(),
    )
