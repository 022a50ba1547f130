"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. USER is the lowest privilege."""

    ADMIN = "ADMIN"
    USER = "USER"


@dataclass
class User:
    """A credential record.

    salt and password_hash are base64 text produced by auth.passwords. Either
    may be None only for rows inserted by hand; such accounts cannot log in.

    force_password_reset is set by an admin reset and cleared by the user's
    next successful password change.
    """

    username: str
    role: Role = Role.USER
    id: int | None = None
    salt: str | None = None
    password_hash: str | None = None
    last_login: datetime | None = None
    force_password_reset: bool = False
    created_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted, opaque, single-use refresh credential.

    There is no status column: a row exists while the token is ACTIVE, and
    deleting it is how the token reaches ROTATED, REVOKED or EXPIRED.
    """

    token: str
    username: str
    expires_at: datetime
    id: int | None = None


@dataclass
class LoginAudit:
    """Append-only record of one successful login."""

    username: str
    ip: str | None
    timestamp: datetime
    id: int | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Verified contents of an access token. Never persisted."""

    subject: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    force_password_reset: bool
    username: str
    role: Role


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
