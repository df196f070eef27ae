"""
api/main.py -- FastAPI application entry point for authkit.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- method, path, status, latency
  5. access_guard          -- redirects cookie-less requests for protected paths

Lifespan owns every long-lived collaborator: the store (engine pool), the
password hasher, the email sender and the Google client are built here and
injected into AuthActions, which routes reach via app.state.auth. Nothing in
auth/ creates a global client of its own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.actions import AuthActions
from auth.dependencies import get_current_user
from auth.email import ResendEmailSender
from auth.guard import Redirect, check_access
from auth.models import User
from auth.oauth import GoogleOAuthProvider
from auth.oauth_flow import GoogleOAuthFlow
from auth.passwords import PasswordHasher
from auth.reset import ResetTokenService
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authkit.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_actions(settings: Settings, store: UserStore) -> AuthActions:
    """Assemble AuthActions and its collaborators from settings.

    Google sign-in is only wired when both client id and secret are set;
    otherwise sign_in_with_google() redirects back with an error flag.
    """
    sessions = SessionManager(store, settings)
    google = None
    if settings.google_enabled:
        google = GoogleOAuthFlow(GoogleOAuthProvider.from_settings(settings), store, sessions, settings)
        logger.info("Google OAuth provider registered")
    return AuthActions(
        store=store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        sessions=sessions,
        resets=ResetTokenService(store, settings),
        email_sender=ResendEmailSender(settings.resend_api_key, timeout=settings.http_timeout_seconds),
        settings=settings,
        google=google,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions and reset tokens every 6 hours.

    Expired rows are already ignored by validation; this only keeps the
    tables small. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(6 * 60 * 60)
        try:
            sessions, tokens = await asyncio.to_thread(app.state.user_store.purge_expired, datetime.now(timezone.utc))
            logger.info("Purged %d expired sessions and %d expired reset tokens", sessions, tokens)
        except Exception:
            logger.exception("Purge of expired auth rows failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("authkit API starting up")
    settings = get_settings()
    app.state.user_store = UserStore(db_url=settings.database_url)
    app.state.auth = build_actions(settings, app.state.user_store)
    logger.info("Auth initialized (google=%s)", settings.google_enabled)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.auth.email_sender.close()
    app.state.user_store.close()
    logger.info("authkit API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authkit API",
    description="Email/password and Google sign-in, server-side sessions, password reset by email.",
    version=VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc; auth-protected equivalents are below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Access guard and request logging
#
# @app.middleware("http") functions wrap in reverse registration order, so
# log_requests (registered last) is the outer of the two and also logs the
# guard's redirects.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def access_guard(request: Request, call_next):
    """Redirect cookie-less requests for protected paths to the signin page.

    Presence check only (see auth/guard.py); the protected page validates the
    session itself.
    """
    settings = get_settings()
    decision = check_access(request.url.path, request.cookies, settings.protected_paths, settings.signin_path)
    if isinstance(decision, Redirect):
        return RedirectResponse(decision.target, status_code=302)
    return await call_next(request)


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
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST call is outermost.
# Registered innermost-first: SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Web router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="authkit API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="authkit API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


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
    """Return 422 with structured error when the body is not even the right shape."""
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
# Defined directly in main.py so it is always reachable. No rate limit --
# load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
