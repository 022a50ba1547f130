"""
api/main.py -- FastAPI application entry point for usergate.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- CORS headers for the configured SPA origins
                          (credentials allowed: the refresh token is a cookie)
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds the engine, stores and services once, hangs them on
app.state, starts the refresh-token purge task, and tears everything down
symmetrically on shutdown. Tests replace the lifespan and call
wire_services() with their own engine and clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.clock import Clock, utcnow
from auth.dependencies import get_current_user
from auth.errors import (
    AuthError,
    ExpiredRefreshToken,
    ExpiredToken,
    IdentityNotFound,
    IdentityTaken,
    IncorrectPassword,
    InfrastructureError,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidToken,
)
from auth.events import UserEventBroadcaster
from auth.models import User
from auth.passwords import PasswordHasher
from auth.refresh import RefreshTokenService
from auth.service import AuthenticationService
from auth.store import AuditStore, RefreshTokenStore, UserStore, open_engine
from auth.tokens import TokenSigner
from core.config import Settings, get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_settings = get_settings()

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("usergate.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, engine: Engine, settings: Settings, clock: Clock = utcnow) -> None:
    """Build every auth component on top of `engine` and publish it on app.state.

    Raises ConfigurationError (fatal) if the hasher or signer rejects the
    configured parameters.
    """
    hasher = PasswordHasher(iterations=settings.password_hash_iterations)
    signer = TokenSigner(settings.secret_key, expire_seconds=settings.access_token_expire_seconds, clock=clock)
    refresh = RefreshTokenService(
        RefreshTokenStore(engine),
        validity_days=settings.refresh_token_expire_days,
        clock=clock,
    )
    events = UserEventBroadcaster()
    app.state.engine = engine
    app.state.settings = settings
    app.state.token_signer = signer
    app.state.user_events = events
    app.state.auth_service = AuthenticationService(
        UserStore(engine),
        AuditStore(engine),
        refresh,
        signer,
        hasher,
        events=events,
        clock=clock,
        temporary_password_length=settings.temporary_password_length,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh tokens every 6 hours.

    Expired rows are already unusable; this only keeps the table small.
    CancelledError from task.cancel() during shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(6 * 60 * 60)
        try:
            removed = await asyncio.to_thread(app.state.auth_service.purge_expired_refresh_tokens)
        except InfrastructureError:
            continue  # already logged with traceback by the service
        if removed:
            logger.info("Purged %d expired refresh token(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("usergate API starting up")
    settings = get_settings()
    engine = open_engine(settings.database_url)
    wire_services(app, engine, settings)
    logger.info("Auth initialized (access ttl=%ss, refresh ttl=%sd)",
                settings.access_token_expire_seconds, settings.refresh_token_expire_days)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    engine.dispose()
    logger.info("usergate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="usergate API",
    description="Account registration, login, refresh-token rotation and admin user management.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by auth-protected routes.
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    who = "-"
    signer: TokenSigner | None = getattr(request.app.state, "token_signer", None)
    auth_header = request.headers.get("Authorization", "")
    if signer is not None and auth_header.startswith("Bearer "):
        who = signer.extract_identity(auth_header[7:]) or "-"
    logger.info(
        "%s %s %d %.1fms %s %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        who,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="usergate API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="usergate API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------

_AUTH_ERROR_STATUS: dict[type[AuthError], int] = {
    InvalidCredentials: 401,
    IdentityTaken: 409,
    IncorrectPassword: 403,
    InvalidToken: 401,
    ExpiredToken: 401,
    InvalidRefreshToken: 401,
    ExpiredRefreshToken: 401,
    IdentityNotFound: 404,
    InfrastructureError: 500,
}


def _status_for(exc: AuthError) -> int:
    for cls in type(exc).__mro__:
        if cls in _AUTH_ERROR_STATUS:
            return _AUTH_ERROR_STATUS[cls]
    return 400


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError with its stable code.

    Infrastructure failures were already logged with traceback by the service;
    the client only gets the generic message.
    """
    status = _status_for(exc)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    if status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict; use it
    directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
