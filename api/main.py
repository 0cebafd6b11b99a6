"""
api/main.py -- FastAPI application factory for Keyward.

create_app() is the single place where collaborators are constructed and
wired: stores, hasher, token verifier and AuthService are built here (or
passed in by tests) and placed on app.state. Nothing in auth/ reaches for a
process-wide singleton.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. SessionMiddleware  -- signed session cookie carrying the session id
  2. log_requests       -- method/path/status/latency for every request

Lifespan runs the expired-session purge task and disposes both stores on
shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.user import recovery_router
from api.routes.v1.user import router as user_router
from auth.exceptions import AuthError
from auth.hashing import BcryptHasher
from auth.interfaces import PasswordHasher, TokenVerifier
from auth.service import AuthService
from auth.store import SessionStore, UserStore
from auth.two_factor import TotpVerifier
from core.config import ConfigurationError, Settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("keyward.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired session rows every ``interval`` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = await asyncio.to_thread(app.state.session_store.purge_expired)
        if removed:
            logger.info("Purged %d expired sessions", removed)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the purge task on startup; cancel it and close stores on shutdown."""
    logger.info("Keyward API starting up")
    app.state.purge_task = asyncio.create_task(_purge_loop(app, app.state.settings.session_purge_interval))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    app.state.session_store.close()
    logger.info("Keyward API shutdown complete")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError subclass with its own status code and error code."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(**exc.to_dict())).model_dump(),
    )


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


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions.

    Registered on the Starlette base class so router-level 404/405 responses
    are covered as well as HTTPException raised by FastAPI code.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


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
# Request logging middleware
# ---------------------------------------------------------------------------


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
# Factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings,
    user_store: UserStore | None = None,
    session_store: SessionStore | None = None,
    hasher: PasswordHasher | None = None,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Build the Keyward app from explicit collaborators.

    Stores default to SQLAlchemy stores on settings.database_url. Raises
    ConfigurationError when settings carry no secret key -- the session
    cookie cannot be signed without one.
    """
    if not settings.secret_key:
        raise ConfigurationError("Keyward settings.secret_key cannot be empty.")

    user_store = user_store or UserStore(settings.database_url)
    session_store = session_store or SessionStore(settings.database_url, max_age=settings.session_max_age)

    app = FastAPI(
        title="Keyward API",
        description="Session-based username/password authentication with optional TOTP 2FA.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.session_store = session_store
    app.state.auth = AuthService(
        users=user_store,
        sessions=session_store,
        hasher=hasher or BcryptHasher(),
        token_verifier=token_verifier or TotpVerifier(),
        field_options=settings.user_field_options,
    )

    app.middleware("http")(log_requests)
    # Registered last so it is the outermost layer: request.session must be
    # populated before any dependency runs. Cookie policy passes through as-is.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        same_site=settings.same_site,
        https_only=settings.secure_cookies,
    )

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(user_router, prefix="/api/v1", tags=["User"])
    if settings.expose_temp_password_route:
        app.include_router(recovery_router, prefix="/api/v1", tags=["Recovery"])
        logger.warning("Temp-password route is exposed; responses contain plaintext credentials")

    @app.get("/api/v1/health", tags=["Health"])
    async def health() -> HealthResponse:
        """Return API liveness and current version."""
        return HealthResponse(version=__version__)

    return app
