"""
API request and response models for usergate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class _Credentials(BaseModel):
    """Username + password pair. Usernames are trimmed; passwords are taken verbatim."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value


class LoginRequest(_Credentials):
    """Request body for POST /api/v1/auth/login."""


class RegisterRequest(_Credentials):
    """Request body for POST /api/v1/auth/register."""


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/me/change-password."""

    old_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: str
    force_password_reset: bool


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    role: str
    force_password_reset: bool


class LastLoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    last_login: Optional[datetime]


class LogoutAllResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    revoked: int


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """One row in GET /api/v1/admin/users. Never includes salt or hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    force_password_reset: bool
    last_login: Optional[datetime]

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            username=user.username,
            role=user.role.value,
            force_password_reset=user.force_password_reset,
            last_login=user.last_login,
        )


class DeletedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    deleted: int


class TempPasswordResponse(BaseModel):
    """The one and only time a temporary password is shown."""

    model_config = ConfigDict(frozen=True)

    temp_password: str


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    ip: Optional[str]
    timestamp: datetime
