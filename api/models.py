"""
API request and response models for VetClinic REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import LoginSession, User

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    errors: Optional[list[str]] = None
    retry_after: Optional[int] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = {}


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. There is no password field to leak."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role.value,
            created_at=user.created_at,
        )


class UserEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]


# ---------------------------------------------------------------------------
# Auth requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. `login` is a username or an email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    login: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=128)
    code: Optional[str] = Field(default=None, max_length=16)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Only presence and length caps are enforced here. Content rules (username
    length, email format, password policy, role) are checked by
    auth.credentials.register_user so every problem is reported together.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=128)
    role: str = Field(min_length=1, max_length=30)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=256)


class LogoutRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=64)

    model_config = ConfigDict(populate_by_name=True)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class TwoFactorVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=1, max_length=16)


class SessionTerminateRequest(BaseModel):
    session_id: str = Field(alias="sessionId", min_length=1, max_length=64)

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth responses
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for a successful login or refresh."""

    model_config = ConfigDict(frozen=True)

    token: str
    refresh_token: str
    session_id: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class TwoFactorSetupResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    secret: str
    provisioning_uri: str = Field(alias="provisioningUri")
    backup_codes: list[str]
    message: str = "Two-factor authentication setup initiated"


class SessionInfo(BaseModel):
    """One active session. Token values are never included."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    ip_address: str
    user_agent: str
    created_at: datetime
    last_activity: datetime
    is_current: bool = Field(alias="isCurrent")

    @classmethod
    def from_session(cls, session: LoginSession, current_id: Optional[str]) -> "SessionInfo":
        return cls(
            id=session.id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
            last_activity=session.last_activity,
            is_current=session.id == current_id,
        )


class SessionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    sessions: list[SessionInfo]
