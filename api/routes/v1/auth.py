"""
api/routes/v1/auth.py -- Authentication, session and two-factor REST endpoints.

Routes:
  POST /api/v1/auth/login                -- password (+2FA) login; opens a session
  POST /api/v1/auth/register             -- create an account
  GET  /api/v1/auth/me                   -- current user, fresh from the store
  POST /api/v1/auth/refresh              -- rotate refresh token, new access token
  POST /api/v1/auth/logout               -- blacklist bearer, end session
  POST /api/v1/auth/password             -- change own password
  POST /api/v1/auth/2fa/setup            -- start TOTP enrolment
  POST /api/v1/auth/2fa/verify           -- confirm TOTP enrolment
  GET  /api/v1/auth/sessions             -- list own active sessions
  POST /api/v1/auth/sessions/terminate   -- end one of own sessions

Security:
  [H2] POST /login is locked per (client IP, login) after LOGIN_MAX_ATTEMPTS
       attempts within LOGIN_LOCKOUT_SECONDS. Every attempt counts; a
       successful login clears the counter. Lockout is a 429 response with
       Retry-After, returned directly -- not an exception.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Sessions can only be listed/terminated by their owner.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    PasswordChangeRequest,
    RefreshRequest,
    RegisterRequest,
    SessionInfo,
    SessionListResponse,
    SessionTerminateRequest,
    TwoFactorSetupResponse,
    TwoFactorVerifyRequest,
    UserEnvelope,
    UserResponse,
)
from auth.credentials import authenticate_user, change_password, register_user
from auth.dependencies import SESSION_HEADER, get_current_user, try_get_current_user
from auth.errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from auth.models import User
from auth.permissions import Capability, has
from auth.sessions import IssuedSession
from core.config import get_settings

logger = logging.getLogger("vetclinic.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/login, /auth/register, /auth/refresh:  public
# - everything else:                                  requires a valid bearer token
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, **extra)).model_dump(exclude_none=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _token_response(request: Request, issued: IssuedSession, user: User) -> JSONResponse:
    expires_in = int(request.app.state.token_service.access_ttl.total_seconds())
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=issued.access_token,
            refresh_token=issued.refresh_token,
            session_id=issued.session_id,
            expires_in=expires_in,
            user=UserResponse.from_user(user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username-or-email and password; open a session.

    Returns the same generic error for unknown login and wrong password to
    avoid leaking which accounts exist.
    """
    state = request.app.state
    client_ip = get_remote_address(request)

    decision = state.login_limiter.hit(client_ip, body.login)
    if not decision.allowed:
        logger.warning("Login locked out for %r from %s (retry in %ds)", body.login, client_ip, decision.retry_after)
        resp = _error(
            429,
            "RATE_LIMITED",
            "Too many login attempts. Try again later.",
            retry_after=decision.retry_after,
        )
        resp.headers["Retry-After"] = str(decision.retry_after)
        return resp

    user = authenticate_user(state.user_store, body.login, body.password)
    if user is None:
        logger.warning("Login failed for %r from %s", body.login, client_ip)
        return _error(401, "AUTHENTICATION_ERROR", "Invalid credentials.")

    if state.two_factor.is_enabled(user.id):
        if not body.code:
            return _error(401, "TWO_FACTOR_REQUIRED", "Two-factor code required.")
        if not state.two_factor.verify(user.id, body.code):
            logger.warning("Invalid two-factor code for user_id=%s from %s", user.id, client_ip)
            return _error(401, "AUTHENTICATION_ERROR", "Invalid two-factor code.")

    state.login_limiter.clear(client_ip, body.login)
    state.user_store.update_last_login(user.id)
    issued = state.session_registry.create_session(user, client_ip, request.headers.get("User-Agent", "unknown"))
    logger.info("Login succeeded: %s (%s) from %s", user.username, user.role.value, client_ip)
    return _token_response(request, issued, user)


@limiter.limit(_settings.register_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=UserEnvelope, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserEnvelope:
    """Create a new account.

    When SELF_REGISTRATION_ENABLED is false, only callers holding
    manage_users may register accounts.
    """
    if not _settings.self_registration_enabled:
        caller = try_get_current_user(request)
        if caller is None:
            raise AuthenticationError("Registration requires an administrator.")
        if not has(caller.role, Capability.manage_users):
            raise AuthorizationError("Registration requires an administrator.")

    user = register_user(request.app.state.user_store, body.username, body.email, body.password, body.role)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair (single use)."""
    state = request.app.state
    issued = state.session_registry.refresh(body.refresh_token)
    if issued is None:
        raise AuthenticationError("Invalid or expired refresh token.")
    user = state.token_service.verify_access_token(issued.access_token)
    return _token_response(request, issued, user)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserEnvelope)
def me(request: Request, current_user: User = Depends(get_current_user)) -> UserEnvelope:
    """Return the current user as stored now, not as encoded in the token."""
    user = request.app.state.user_store.get_by_id(current_user.id)
    if user is None:
        raise NotFoundError("User not found.")
    return UserEnvelope(user=UserResponse.from_user(user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Blacklist the presented access token and end a session.

    The session named in the body is ended; without one, the session the
    bearer token belongs to is ended, which also revokes its refresh token.
    A session id that does not belong to the caller is ignored.
    """
    state = request.app.state
    registry = state.session_registry
    access_token = request.state.access_token
    state.token_service.blacklist(access_token)
    if body is not None and body.session_id:
        session = registry.get(body.session_id)
    else:
        session = registry.find_by_access_token(access_token)
    if session is not None and session.user_id == current_user.id:
        registry.terminate(session.id)
    logger.info("Logout: user_id=%s", current_user.id)
    return MessageResponse(message="Logged out successfully")


@router.post("/auth/password", response_model=MessageResponse)
def update_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    change_password(request.app.state.user_store, current_user.id, body.current_password, body.new_password)
    return MessageResponse(message="Password updated successfully")


@router.post("/auth/2fa/setup", response_model=TwoFactorSetupResponse)
def two_factor_setup(request: Request, current_user: User = Depends(get_current_user)) -> TwoFactorSetupResponse:
    """Generate a TOTP secret and backup codes. 2FA stays off until /2fa/verify succeeds."""
    setup = request.app.state.two_factor.begin_setup(current_user.id, current_user.email)
    return TwoFactorSetupResponse(
        secret=setup.secret,
        provisioning_uri=setup.provisioning_uri,
        backup_codes=setup.backup_codes,
    )


@router.post("/auth/2fa/verify", response_model=MessageResponse)
def two_factor_verify(
    request: Request,
    body: TwoFactorVerifyRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    if not request.app.state.two_factor.enable(current_user.id, body.code):
        raise ValidationError("Invalid verification code")
    return MessageResponse(message="Two-factor authentication enabled successfully")


@router.get("/auth/sessions", response_model=SessionListResponse)
def list_sessions(request: Request, current_user: User = Depends(get_current_user)) -> SessionListResponse:
    """List the caller's active sessions. X-Session-Id marks which one is current."""
    current_id = request.headers.get(SESSION_HEADER)
    sessions = request.app.state.session_registry.list_active(current_user.id)
    return SessionListResponse(sessions=[SessionInfo.from_session(s, current_id) for s in sessions])


@router.post("/auth/sessions/terminate", response_model=MessageResponse)
def terminate_session(
    request: Request,
    body: SessionTerminateRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """End one of the caller's sessions. Other users' session ids look like unknown ids."""
    registry = request.app.state.session_registry
    session = registry.get(body.session_id)
    if session is None or session.user_id != current_user.id:
        raise NotFoundError("Session not found.")
    registry.terminate(body.session_id)
    return MessageResponse(message="Session terminated successfully")
