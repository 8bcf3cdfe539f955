"""
api/main.py -- FastAPI application entry point for VetClinic.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (user store, auth services, sweep task) and
shutdown (cancel sweep task, close DB connection) symmetrically.

Error translation:
  auth/ raises typed AuthError subclasses. auth_error_handler below is the
  single place that maps them to status codes and the ErrorResponse envelope.
  Every error is logged server-side; stack traces and secrets never reach
  the response body.
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
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import LoginRateLimiter, limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.credentials import SeedUser, ensure_seed_users
from auth.dependencies import get_current_user
from auth.errors import AuthError, AuthenticationError
from auth.models import Role, User
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import TokenService
from auth.two_factor import TwoFactorService
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vetclinic.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Auth service wiring
# ---------------------------------------------------------------------------


def init_auth_state(app: FastAPI, user_store: UserStore, settings: Settings) -> None:
    """Build the auth services around `user_store` and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same
    graph. In-memory token/session/2FA stores are created fresh here.
    """
    token_service = TokenService(
        settings.secret_key,
        user_store.get_by_id,
        access_ttl_seconds=settings.access_token_expire_seconds,
        refresh_ttl_days=settings.refresh_token_expire_days,
    )
    app.state.user_store = user_store
    app.state.token_service = token_service
    app.state.session_registry = SessionRegistry(token_service, idle_timeout_seconds=settings.session_idle_seconds)
    app.state.two_factor = TwoFactorService(issuer=settings.totp_issuer, valid_window=settings.totp_valid_window)
    app.state.login_limiter = LoginRateLimiter(settings.login_max_attempts, settings.login_lockout_seconds)


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval_seconds: int) -> None:
    """Expire idle sessions and purge dead tokens every `interval_seconds`.

    The sweep itself runs in a worker thread so a large session table never
    stalls the event loop. A failing sweep is logged and retried on the next
    tick; CancelledError from shutdown propagates out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.session_registry.sweep_expired)
        except Exception:
            logger.exception("Session sweep failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. User store first -- auth services need it as their user loader.
      2. Optional seed admin -- only on an empty users table.
      3. Sweep task last -- references app.state.session_registry.
    """
    settings = get_settings()
    logger.info("VetClinic API starting up")
    user_store = UserStore(settings.database_url)
    if settings.has_seed_admin:
        created = ensure_seed_users(
            user_store,
            [
                SeedUser(
                    username=settings.seed_admin_username,
                    email=settings.seed_admin_email,
                    password=settings.seed_admin_password,
                    role=Role.admin.value,
                )
            ],
        )
        if created:
            logger.info("Seeded initial admin account %s", settings.seed_admin_username)
    init_auth_state(app, user_store, settings)
    logger.info("Auth initialized (access ttl=%ss)", settings.access_token_expire_seconds)
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_seconds))

    yield

    app.state.sweep_task.cancel()
    app.state.user_store.close()
    logger.info("VetClinic API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="VetClinic API",
    description="Veterinary clinic management: authentication, sessions and role-based access.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs is replaced below by an auth-protected equivalent.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Session-Id"],
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="VetClinic API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _envelope(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate a typed auth-layer error into its status code and envelope."""
    logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    response = _envelope(
        exc.status_code,
        ErrorDetail(code=exc.code, message=exc.message, errors=getattr(exc, "errors", None)),
    )
    if isinstance(exc, AuthenticationError):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a slowapi route limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit exceeded on %s %s", request.method, request.url.path)
    response = _envelope(
        429,
        ErrorDetail(code="RATE_LIMITED", message="Too many requests.", detail=str(exc), retry_after=retry_after),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or incomplete request bodies are validation errors (400)."""
    logger.warning("Request validation failed on %s %s", request.method, request.url.path)
    errors = [f"{'.'.join(str(p) for p in e['loc'] if p != 'body')}: {e['msg']}" for e in exc.errors()]
    return _envelope(400, ErrorDetail(code="VALIDATION_ERROR", message="Request validation failed.", errors=errors))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    logger.warning("HTTP %d on %s %s", exc.status_code, request.method, request.url.path)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _envelope(exc.status_code, ErrorDetail(code=f"HTTP_{exc.status_code}", message=str(exc.detail)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged with its traceback, never written to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, ErrorDetail(code="INTERNAL_ERROR", message="An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must always reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database round-trip check."""
    database = "ok"
    try:
        request.app.state.user_store.has_users()
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
