"""
auth/tokens.py -- Access-token signing/verification and auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the username as `sub`, the role,
       `iat` and `exp`. The whole claim set is covered by the signature, so
       any edit invalidates the token. Only HS256 is accepted on decode,
       which rules out algorithm-substitution tricks ("none", RS/HS mixups).

  Lifetime: short (default 5 minutes) because access tokens are not
       revocable. Refresh tokens (auth/refresh.py) carry the long session.

  Expiry check: jose's own exp check is disabled and expiry is compared
       against the injected clock instead. The signature is always checked
       first, so a forged token is InvalidToken even when it is also stale.

  SECRET_KEY: injected once at construction (from core.config.get_settings()
       in production wiring) and never mutated.

Layer rule: no imports from api/. The cookie helpers take a duck-typed
Starlette response so this module does not depend on FastAPI.
"""

from __future__ import annotations

from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.clock import Clock, utcnow
from auth.errors import ConfigurationError, ExpiredToken, InvalidToken
from auth.models import AccessClaims, Role

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


class TokenSigner:
    """Issues and verifies short-lived HS256 access tokens.

    Usage:
        signer = TokenSigner(settings.secret_key, expire_seconds=300)
        token = signer.issue("alice", Role.USER)
        claims = signer.verify(token)          # AccessClaims or raises
        signer.extract_identity(token)         # "alice" or None
    """

    def __init__(self, secret_key: str, expire_seconds: int = 300, clock: Clock = utcnow) -> None:
        if len(secret_key) < 32:
            raise ConfigurationError("Token signing key must be at least 32 characters.")
        if expire_seconds <= 0:
            raise ConfigurationError("Access token lifetime must be positive.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    def issue(self, identity: str, role: Role | str) -> str:
        issued_at = int(self._clock().timestamp())
        payload = {
            "sub": identity,
            "role": Role(role).value,
            "iat": issued_at,
            "exp": issued_at + self.expire_seconds,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> AccessClaims:
        """Return the verified claims.

        Raises:
            InvalidToken: bad signature, malformed token, or missing/unknown claims.
            ExpiredToken: signature is valid but the clock is past `exp`.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidToken() from exc

        subject = payload.get("sub")
        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(subject, str) or not subject:
            raise InvalidToken()
        if not isinstance(exp, int) or not isinstance(iat, int):
            raise InvalidToken()
        try:
            role = Role(payload.get("role"))
        except ValueError as exc:
            raise InvalidToken() from exc

        if self._clock().timestamp() > exp:
            raise ExpiredToken()
        return AccessClaims(
            subject=subject,
            role=role,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    def extract_identity(self, token: str) -> str | None:
        """Best-effort subject lookup: the username, or None if the token does not verify."""
        try:
            return self.verify(token).subject
        except (InvalidToken, ExpiredToken):
            return None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(
    response,
    access_token: str,
    refresh_token: str | None,
    *,
    access_max_age: int,
    refresh_max_age: int,
    secure: bool,
) -> None:
    """Write the access and (optionally) refresh tokens as httpOnly cookies.

    httponly=True: JS cannot read either cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true (the default).
    The refresh cookie is scoped to /api/v1/auth so it only travels to the
    endpoints that consume it.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=access_max_age,
        path="/",
    )
    if refresh_token is not None:
        response.set_cookie(
            REFRESH_COOKIE,
            value=refresh_token,
            httponly=True,
            samesite="lax",
            secure=secure,
            max_age=refresh_max_age,
            path="/api/v1/auth",
        )


def clear_auth_cookies(response, *, secure: bool) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/", httponly=True, samesite="lax", secure=secure)
    response.delete_cookie(REFRESH_COOKIE, path="/api/v1/auth", httponly=True, samesite="lax", secure=secure)
