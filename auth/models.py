"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of clinic roles.

    Anything outside this enum is rejected at every boundary: the store row
    mapper, token issuance, token verification and registration.
    """

    admin = "admin"
    vet = "vet"
    assistant = "assistant"

    @classmethod
    def parse(cls, value: object) -> Role | None:
        """Return the matching Role, or None for unknown or non-string values."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class User:
    """An authenticated identity (principal).

    The password hash is deliberately absent. It lives only in the store's
    hashed_password column and is read through UserStore.get_password_hash(),
    so a User can be serialized anywhere without leaking credentials.
    """

    username: str
    email: str
    role: Role
    id: int | None = None
    created_at: str | None = None
    is_active: bool = True
    last_login: str | None = None


@dataclass
class RefreshToken:
    """Server-side record for an opaque refresh token.

    The token string itself carries no claims; it must be looked up here.
    """

    token: str
    user_id: int
    expires_at: datetime
    created_at: datetime
    id: str = ""
    is_revoked: bool = False


@dataclass
class LoginSession:
    """A tracked login on one device/client."""

    id: str
    user_id: int
    access_token: str
    refresh_token: str
    ip_address: str
    user_agent: str
    created_at: datetime
    last_activity: datetime
    is_active: bool = True


@dataclass
class TwoFactorCredential:
    """TOTP secret plus single-use backup codes for one user.

    is_enabled stays False until the user proves possession of the secret
    with a valid code (TwoFactorService.enable).
    """

    user_id: int
    secret: str
    created_at: datetime
    is_enabled: bool = False
    backup_codes: list[str] = field(default_factory=list)
