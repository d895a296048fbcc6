"""
api/main.py -- FastAPI application entry point for CropCase.

Exposes the authentication session lifecycle (signup, login, refresh,
logout), the crop catalog and crop cases over HTTP.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, optional crop seeding, token purge task)
and shutdown (cancel purge task, dispose engines) symmetrically.

Error rendering: every AppError raised anywhere below a route (stores, auth
helpers, dependencies, handlers) is turned into the ErrorResponse envelope by
app_error_handler. Route handlers never build error JSON by hand.
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
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldErrorModel, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.cases import router as cases_router
from api.routes.v1.crops import router as crops_router
from api.routes.v1.users import router as users_router
from auth.store import SessionStore, UserStore
from core.config import get_settings
from core.database import connect
from core.errors import AppError, StorageUnavailable
from plans.catalog import default_crops
from plans.store import PlanStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cropcase.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh tokens every TOKEN_PURGE_INTERVAL_SECONDS.

    Runs as a background asyncio task started in lifespan startup. The
    blocking store call is pushed to a worker thread so the event loop keeps
    serving requests. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    A failed sweep is logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(_settings.token_purge_interval_seconds)
        try:
            removed = await asyncio.to_thread(app.state.session_store.delete_expired)
        except StorageUnavailable:
            logger.warning("Expired session purge skipped: storage unavailable")
            continue
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. User store first -- refresh_tokens has a foreign key to users, so
         the users table must exist before the session store creates its own.
      2. Session store and plan store.
      3. Purge task last -- references app.state.session_store.
    """
    # Startup
    logger.info("CropCase API starting up")
    db_url = _settings.database_url
    timeout = _settings.db_timeout_seconds
    app.state.user_store = UserStore(db_url, timeout)
    app.state.session_store = SessionStore(db_url, timeout)
    app.state.plan_store = PlanStore(db_url, timeout)
    if _settings.seed_crops:
        inserted = app.state.plan_store.seed_crops(default_crops())
        logger.info("Crop catalog seeded (%d new entries)", inserted)
    logger.info("Stores initialized")
    if not app.state.user_store.has_users():
        logger.warning("No accounts yet. Create an admin with: python main.py create-user EMAIL --role ADMIN")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.plan_store.close()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("CropCase API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CropCase API",
    description="Crop planning for farmers: accounts, crop catalog and shareable crop cases.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the last one added is the
# outermost. Requests meet TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time around call_next gives latency on every response.
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


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(crops_router, prefix="/api/v1", tags=["Crops"])
app.include_router(cases_router, prefix="/api/v1", tags=["Cases"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(by_alias=True, exclude_none=True),
    )


def _field_name(loc: tuple) -> str:
    """("body", "crops", 0, "weight") -> "crops.0.weight". Location prefixes are dropped."""
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render any taxonomy exception with its own status and code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path)
    fields = [FieldErrorModel(field=f.field, message=f.message) for f in exc.fields] or None
    return _error_response(exc.status_code, ErrorDetail(code=exc.code, message=exc.message, fields=fields))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(
        429,
        ErrorDetail(code="rate_limited", message="Too many requests. Please try again later."),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 validation_error with one entry per offending field.

    Pydantic prefixes ValueError messages from custom validators with
    "Value error, "; that prefix is stripped so messages read naturally.
    """
    fields = []
    for err in exc.errors():
        message = str(err.get("msg", "Invalid value."))
        fields.append(
            FieldErrorModel(field=_field_name(err.get("loc", ())), message=message.removeprefix("Value error, "))
        )
    return _error_response(
        400,
        ErrorDetail(code="validation_error", message="Request validation failed.", fields=fields or None),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for framework-raised HTTP exceptions (404 route, 405 method)."""
    return _error_response(
        exc.status_code,
        ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(
        500,
        ErrorDetail(code="internal_error", message="An unexpected error occurred."),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability.

    The database probe is a SELECT 1 through the user store's engine. A
    failed probe degrades the status instead of failing the request so
    monitors can tell "process up, database down" apart from "process down".
    """
    components = {"database": "ok"}
    try:
        with connect(request.app.state.user_store.engine) as conn:
            conn.execute(text("SELECT 1"))
    except StorageUnavailable:
        components["database"] = "unavailable"
    status = "ok" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
