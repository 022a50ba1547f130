"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens are accepted from two places, checked in order:
  1. Authorization: Bearer <token> header -- API clients and the SPA.
  2. "access_token" cookie -- set by POST /auth/login and /auth/refresh.
     Also used when the header says "Bearer " but carries no token.

Both converge on a User re-read from the store, so a deleted account stops
working immediately even while its access token is still unexpired.

get_current_user() raises: HTTP 401 when no token was sent, or the
InvalidToken / ExpiredToken AuthError (rendered as 401 by api/main.py) so
clients can tell "log in" from "refresh".
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidToken
from auth.models import Role, User
from auth.service import AuthenticationService
from auth.tokens import ACCESS_COOKIE, TokenSigner


def _bearer_or_cookie(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_COOKIE) or None


def _resolve(request: Request, token: str) -> User:
    signer: TokenSigner = request.app.state.token_signer
    service: AuthenticationService = request.app.state.auth_service
    claims = signer.verify(token)
    user = service.find_user(claims.subject)
    if user is None:
        raise InvalidToken()
    return user


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_or_cookie(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return _resolve(request, token)


def require_admin(request: Request) -> User:
    """Require the ADMIN role. 401 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    if user.role != Role.ADMIN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
