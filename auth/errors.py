"""
auth/errors.py -- Caller-facing failure kinds for the authentication core.

Every failure that leaves auth/service.py is one of these. Each class carries
a stable machine-readable `code` (the api/ layer copies it into the error
envelope) and a default human-readable message.

InvalidCredentials deliberately covers both "unknown username" and "wrong
password" so login responses cannot be used to enumerate accounts. All other
kinds are specific.

Layer rule: no imports from api/ -- HTTP status mapping lives in api/main.py.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every authentication failure."""

    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidCredentials(AuthError):
    code = "bad_credentials"
    message = "Invalid username or password."


class IdentityTaken(AuthError):
    code = "identity_taken"
    message = "Username is already in use."


class IncorrectPassword(AuthError):
    code = "incorrect_password"
    message = "Current password is incorrect."


class IdentityNotFound(AuthError):
    code = "identity_not_found"
    message = "User not found."


class InvalidToken(AuthError):
    code = "invalid_token"
    message = "Access token is invalid."


class ExpiredToken(AuthError):
    code = "expired_token"
    message = "Access token has expired."


class InvalidRefreshToken(AuthError):
    code = "invalid_refresh_token"
    message = "Refresh token is invalid."


class ExpiredRefreshToken(AuthError):
    code = "expired_refresh_token"
    message = "Refresh token has expired."


class InfrastructureError(AuthError):
    """Persistence or environment failure. Never caused by caller input."""

    code = "internal_error"
    message = "An unexpected error occurred."


class ConfigurationError(InfrastructureError):
    """Unusable configuration (hash primitive, key, parameters). Fatal at startup."""

    code = "configuration_error"
    message = "Authentication is misconfigured."
