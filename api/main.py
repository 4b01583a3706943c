"""
api/main.py -- FastAPI application entry point for the PayFlow auth API.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the web client's origin
  3. log_requests          -- one log line per request with status and latency

Lifespan owns the process-wide resources and tears them down symmetrically:
the database Engine (one connection pool, injected into both stores), the
AuthService built on top of it, and the background sweep of expired OTPs.

Every error leaves through one of the exception handlers below, all of which
emit the same ErrorResponse envelope.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.db import create_db_engine, ping
from auth.delivery import build_delivery
from auth.errors import AuthError, InfrastructureError, ValidationError
from auth.otp_store import OtpStore
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("payflow.api")

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired OTP records every `interval` seconds.

    Nothing depends on this running: find_valid() already ignores expired
    rows. The sweep only keeps the table small. The delete runs in a worker
    thread so it never blocks the event loop. CancelledError from
    task.cancel() during shutdown unwinds the loop at the sleep.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.auth_service.sweep_expired_otps)
        except InfrastructureError:
            # Already logged with full detail by the service; try again next round.
            logger.warning("OTP sweep failed; retrying in %ds", interval)
        except Exception:
            # The task is never awaited; an escaping error would stop it unnoticed.
            logger.exception("OTP sweep crashed; retrying in %ds", interval)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the Engine, stores and service on startup; dispose them on shutdown.

    Startup order matters:
      1. Engine first -- creates the tables the stores rely on.
      2. Stores and service -- both stores share the one Engine (one pool).
      3. Sweep task last -- references app.state.auth_service.
    """
    logger.info("PayFlow auth API starting up")
    app.state.engine = create_db_engine(_settings.database_url)
    app.state.user_store = UserStore(app.state.engine)
    app.state.otp_store = OtpStore(app.state.engine)
    app.state.auth_service = AuthService(
        app.state.user_store,
        app.state.otp_store,
        delivery=build_delivery(_settings.otp_delivery),
        otp_ttl_minutes=_settings.otp_ttl_minutes,
        token_expire_seconds=_settings.token_expire_seconds,
    )
    logger.info(
        "Auth initialized (users=%d, otp_delivery=%s, otp_ttl=%dm)",
        app.state.user_store.count(),
        _settings.otp_delivery,
        _settings.otp_ttl_minutes,
    )
    app.state.sweep_task = None
    if _settings.otp_sweep_interval_seconds > 0:
        app.state.sweep_task = asyncio.create_task(_sweep_loop(app, _settings.otp_sweep_interval_seconds))

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
    app.state.engine.dispose()
    logger.info("PayFlow auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PayFlow Auth API",
    description="Email/password signup and two-step (password + OTP) login issuing bearer tokens.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() call (@app.middleware included) wraps everything
# registered before it, so registration runs innermost first:
# log_requests -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render the auth/errors.py taxonomy.

    InfrastructureError carries only a generic message; the underlying
    database error was logged by the service and is not repeated here.
    """
    fields = exc.fields if isinstance(exc, ValidationError) and exc.fields else None
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, fields=fields)).model_dump(),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages when the body is missing fields or malformed.

    Field names are the JSON keys the client sent (e.g. confirmPassword).
    """
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = loc[-1] if loc else "body"
        if err.get("type") == "missing":
            fields.setdefault(field, f"{field} is required")
        else:
            fields.setdefault(field, err.get("msg", "Invalid value"))
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(code="validation_error", message="Request validation failed.", fields=fields)
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions (404, 405, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
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
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database = "ok" if ping(request.app.state.engine) else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
