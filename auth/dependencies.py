"""
auth/dependencies.py -- FastAPI Depends() helpers: the request auth chain.

Every protected route walks the same chain:
  Unauthenticated -> TokenExtracted -> Verified -> Authorized -> handler

  try_get_current_user()  extract "Authorization: Bearer <token>" and verify
                          it. Soft: returns None on any failure.
  get_current_user()      hard variant. Raises AuthenticationError (401) when
                          the header is missing/malformed or the token fails.
  require_roles(...)      get_current_user() + role membership, else
                          AuthorizationError (403).
  require_capability(c)   get_current_user() + permissions.has(role, c),
                          else AuthorizationError (403).

Role shortcuts (require_admin, require_vet_or_admin, require_any_role) and
capability shortcuts (require_medical_access, require_user_management,
require_delete_permission) are just pre-built predicates for the last step.

The verified principal is returned to the route AND attached to
request.state.user so middleware and logging can see who made the call.

Layer rule: may import from fastapi (Request) because this module is part of
the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request

from auth.errors import AuthenticationError, AuthorizationError
from auth.models import Role, User
from auth.permissions import Capability, has

logger = logging.getLogger("vetclinic.auth.dependencies")

SESSION_HEADER = "X-Session-Id"


def extract_bearer_token(request: Request) -> str | None:
    """Return the token from "Authorization: Bearer <token>", or None if absent/malformed."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request from its bearer token.

    Returns the principal on success, None on any failure. Never raises --
    callers that need a hard 401 should use get_current_user().
    """
    token = extract_bearer_token(request)
    if token is None:
        return None
    user = request.app.state.token_service.verify_access_token(token)
    if user is None:
        return None
    request.state.user = user
    request.state.access_token = token
    _touch_session(request, user)
    return user


def _touch_session(request: Request, user: User) -> None:
    """Record activity on the caller's session when it names one of its own."""
    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        return
    registry = request.app.state.session_registry
    session = registry.get(session_id)
    if session is not None and session.user_id == user.id:
        registry.touch(session_id)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    if extract_bearer_token(request) is None:
        raise AuthenticationError("Authorization token required.")
    user = try_get_current_user(request)
    if user is None:
        raise AuthenticationError("Invalid or expired token.")
    return user


def require_roles(*roles: Role) -> Callable[[Request], User]:
    """Build a dependency that admits only the given roles."""
    allowed = frozenset(roles)
    names = ", ".join(r.value for r in roles)

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in allowed:
            logger.warning(
                "Denied %s %s to user_id=%s (role=%s, need one of: %s)",
                request.method,
                request.url.path,
                user.id,
                user.role.value,
                names,
            )
            raise AuthorizationError(f"Access denied. Required role: {names}.")
        return user

    return dependency


def require_capability(capability: Capability) -> Callable[[Request], User]:
    """Build a dependency that admits roles granted `capability`."""

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if not has(user.role, capability):
            logger.warning(
                "Denied %s %s to user_id=%s (role=%s lacks %s)",
                request.method,
                request.url.path,
                user.id,
                user.role.value,
                capability.value,
            )
            raise AuthorizationError("Insufficient permissions.")
        return user

    return dependency


require_admin = require_roles(Role.admin)
require_vet_or_admin = require_roles(Role.admin, Role.vet)
require_any_role = require_roles(Role.admin, Role.vet, Role.assistant)

require_medical_access = require_capability(Capability.manage_medical_records)
require_user_management = require_capability(Capability.manage_users)
require_delete_permission = require_capability(Capability.delete_records)
