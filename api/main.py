"""
api/main.py -- FastAPI application entry point for the Tigra auth service.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces rate limits from api.limiter

Lifespan handles startup (engine + stores, admin seed, purge task) and
shutdown (cancel purge task, dispose engine) symmetrically.

Errors:
  Every failure leaves the app through one of the exception handlers below
  and is rendered with api.models.error_envelope(), so clients parse a single
  shape: {"success": false, "message", "data": null, "error": {"code", "message"}}.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter, retry_after_seconds
from api.models import HealthResponse, error_envelope
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.resources import router as resources_router
from auth.credentials import CredentialValidator
from auth.rotation import RotationProtocol
from auth.store import RefreshTokenStore, UserStore, create_store_engine
from core import clock
from core.config import get_settings
from core.errors import AppError, RateLimited, ServiceUnavailable
from resources.store import ResourceStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tigra.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Store wiring
# ---------------------------------------------------------------------------


def attach_stores(app: FastAPI, engine: Engine) -> None:
    """Build every store and service on one engine and hang them on app.state.

    Route handlers reach the stores only through request.app.state, so tests
    can wire their own engine through this same function.
    """
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.refresh_token_store = RefreshTokenStore(engine)
    app.state.resource_store = ResourceStore(engine)
    app.state.credentials = CredentialValidator(app.state.user_store)
    app.state.rotation = RotationProtocol(app.state.user_store, app.state.refresh_token_store)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


def purge_refresh_tokens(refresh_tokens: RefreshTokenStore) -> int:
    """Delete refresh records that expired more than the retention period ago."""
    cutoff = clock.utcnow() - timedelta(seconds=get_settings().refresh_token_retention_seconds)
    removed = refresh_tokens.purge_expired(cutoff)
    logger.info("Purged %d dead refresh token records", removed)
    return removed


async def _purge_loop(app: FastAPI) -> None:
    """Purge dead refresh tokens every PURGE_INTERVAL_SECONDS.

    The store call is blocking, so it runs in a worker thread. A database
    hiccup skips one cycle; CancelledError from shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(get_settings().purge_interval_seconds)
        try:
            await asyncio.to_thread(purge_refresh_tokens, app.state.refresh_token_store)
        except SQLAlchemyError:
            logger.exception("Refresh token purge failed; retrying next cycle")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine and stores -- everything else reads app.state.
      2. Admin seed -- needs the credential validator.
      3. Purge task last -- references app.state.refresh_token_store.
    """
    logger.info("Tigra auth API starting up")
    engine = create_store_engine(settings.database_url, timeout=settings.store_timeout_seconds)
    attach_stores(app, engine)
    if settings.admin_email and settings.admin_password:
        app.state.credentials.ensure_admin(settings.admin_email, settings.admin_password, name="Administrator")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    engine.dispose()
    logger.info("Tigra auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Tigra Auth API",
    description="Authentication, refresh-token rotation, RBAC and rate limiting.",
    version=settings.app_version,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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

app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])
app.include_router(admin_router, prefix=settings.api_prefix, tags=["Admin"])
app.include_router(resources_router, prefix=settings.api_prefix, tags=["Resources"])


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(exc: AppError) -> JSONResponse:
    response = JSONResponse(status_code=exc.status_code, content=error_envelope(exc.code, exc.message))
    if isinstance(exc, RateLimited):
        response.headers["Retry-After"] = str(exc.retry_after)
    elif isinstance(exc, ServiceUnavailable):
        response.headers["Retry-After"] = "1"
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return _error_response(exc)


# Plain def: SlowAPIMiddleware calls this handler synchronously when a
# default limit trips before routing.
@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After set to the seconds left in the window."""
    retry_after = retry_after_seconds(request, exc)
    logger.warning("Rate limit exceeded on %s %s (%s)", request.method, request.url.path, exc.detail)
    return _error_response(RateLimited(retry_after=retry_after))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first failing field when body or query params fail validation."""
    errors = exc.errors()
    message = "Request validation failed."
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(status_code=400, content=error_envelope("validation_error", message))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors (unknown path, wrong method) in the same envelope."""
    codes = {404: "not_found", 405: "method_not_allowed"}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(codes.get(exc.status_code, f"http_{exc.status_code}"), str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """A store timeout or lost connection. The driver message stays in the log."""
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error_response(ServiceUnavailable())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_envelope("internal_error", "An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Exempt from rate limiting --
# load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get(f"{settings.api_prefix}/health", tags=["Health"])
@limiter.exempt
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database round-trip check."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        database = "unavailable"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=settings.app_version,
        components={
            "app": "ok",
            "database": database,
            "rate_limiter": "enabled" if limiter.enabled else "disabled",
        },
    )
