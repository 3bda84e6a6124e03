"""
api/main.py -- FastAPI application entry point for homegate.

Install deps:  pip install -e .
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed gateway session cookie (request.session)

Lifespan builds every store, the credential cipher and the per-service bridges
on startup and closes them on shutdown. Nothing reads app.state before
lifespan has run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import requests
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.credentials import router as credentials_router
from api.routes.v1.support import router as support_router
from api.routes.v1.users import router as users_router
from audit.store import AuditLog
from auth.store import UserStore
from bridge import build_bridges
from cache.store import CredentialCache
from core.config import get_settings
from core.errors import GatewayError
from core.services import build_service_configs
from vault.crypto import CredentialCipher
from vault.store import CredentialVault

VERSION = "0.1.0"

SESSION_COOKIE = "homegate_session"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("homegate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop expired cache entries, audit rows and sessions every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        purged_cache = app.state.cache.purge_expired()
        purged_audit = app.state.audit.purge_expired()
        purged_sessions = app.state.user_store.purge_sessions(app.state.settings.session_max_age)
        if purged_cache or purged_audit or purged_sessions:
            logger.info(
                "Purged %d cache entries, %d audit rows, %d sessions", purged_cache, purged_audit, purged_sessions
            )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build stores, cipher and bridges on startup; close them on shutdown.

    Startup order matters:
      1. Cipher first -- a bad CREDENTIAL_ENCRYPTION_KEY must stop startup
         before any store is opened.
      2. Stores next -- the bridges hold references to vault, cache and audit.
      3. Bridges, then the purge task, which references cache and audit.
    """
    settings = get_settings()
    logger.info("homegate starting up")
    cipher = CredentialCipher(settings.credential_encryption_key)

    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.vault = CredentialVault(cipher, settings.database_url)
    app.state.audit = AuditLog(settings.database_url, retention_days=settings.audit_retention_days)
    app.state.cache = CredentialCache(settings.cache_db_path, default_ttl=settings.cache_default_ttl)
    logger.info("Stores initialized")

    app.state.services = build_service_configs(settings)
    app.state.http = requests.Session()
    app.state.bridges = build_bridges(
        app.state.services,
        app.state.vault,
        app.state.cache,
        app.state.audit,
        http=app.state.http,
        timeout=settings.backend_timeout_seconds,
    )
    if app.state.services:
        logger.info("Bridging services: %s", ", ".join(sorted(app.state.services)))
    else:
        logger.warning("No backend services configured -- set *_BASE_URL to enable one")
    if not app.state.user_store.has_users():
        logger.warning("No accounts yet -- run `python main.py create-admin` to create one")

    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.http.close()
    app.state.cache.close()
    app.state.audit.close()
    app.state.vault.close()
    app.state.user_store.close()
    logger.info("homegate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="homegate",
    description="Session gateway that signs users into self-hosted media services.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI -> Session.
# ---------------------------------------------------------------------------

_settings = get_settings()

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# The gateway session. Login stores the user id here; the front door and
# every authenticated API route read it back through auth.session.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie=SESSION_COOKIE,
    max_age=_settings.session_max_age,
    same_site="lax",
    https_only=_settings.secure_cookies,
    domain=_settings.cookie_domain or None,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    # Path only: front-door redirects carry bearer tokens in their query.
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
app.include_router(credentials_router, prefix="/api/v1", tags=["Credentials"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])
app.include_router(support_router, prefix="/api/v1", tags=["Support"])
# The per-service front door is mounted by asgi.py, not here.
# api/ and gateway/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Map a domain error to its status code and error code.

    5xx errors are logged with the exception; their message is still safe to
    return because GatewayError messages never include secrets.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )


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

    Route handlers raise HTTPException with detail={"code": ..., "message": ...}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
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
# Defined directly in main.py so it is reachable regardless of router
# registration. No rate limit and no auth: monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database answers."""
    components = {
        "app": "ok",
        "database": "ok" if request.app.state.user_store.ping() and request.app.state.audit.ping() else "error",
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
