"""
auth/errors.py -- Typed errors raised by the auth layer.

Each class carries the HTTP status and the machine-readable code the API
boundary translator (api/main.py) puts into the error envelope. Domain code
raises these; only api/main.py turns them into responses.

Token verification and login rate limiting never raise -- they return a
sentinel (None / a RateLimitDecision) so callers must branch explicitly.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for auth-layer errors mapped to HTTP responses."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Input failed validation (400). errors lists every individual problem."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation failed."

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("Validation failed: " + ", ".join(self.errors))


class AuthenticationError(AuthError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"
    default_message = "Authentication required."


class AuthorizationError(AuthError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"
    default_message = "Insufficient permissions."


class NotFoundError(AuthError):
    status_code = 404
    code = "NOT_FOUND_ERROR"
    default_message = "Resource not found."


class ConflictError(AuthError):
    status_code = 409
    code = "CONFLICT_ERROR"
    default_message = "Resource already exists."
