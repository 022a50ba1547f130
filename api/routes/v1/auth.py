"""
api/routes/v1/auth.py -- Authentication and self-service account endpoints.

Routes:
  POST /api/v1/auth/login                 -- password login; sets access + refresh cookies
  POST /api/v1/auth/register              -- create a USER account (no auto-login)
  POST /api/v1/auth/refresh               -- rotate the refresh cookie, mint a new access token
  POST /api/v1/auth/logout                -- revoke the refresh cookie's token, clear cookies
  GET  /api/v1/auth/me                    -- current user info (requires auth)
  GET  /api/v1/auth/me/last-login         -- most recent successful login time (requires auth)
  POST /api/v1/auth/me/change-password    -- change own password (requires auth)
  POST /api/v1/auth/me/logout-all         -- revoke every refresh token of the caller

Security:
  POST /login is rate-limited per client address (LOGIN_RATE_LIMIT).
  Login failures are one generic bad_credentials error; the service already
  equalizes timing between unknown and known usernames.
  Cache-Control: no-store on every response that carries a token.
  The refresh token only travels as an httpOnly cookie, never in a body.

Handlers are plain `def`: the auth stores are synchronous, so FastAPI runs
them in its thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ChangePasswordRequest,
    LastLoginResponse,
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    MeResponse,
    RefreshResponse,
    RegisterRequest,
    UserSummary,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.network import client_ip
from auth.service import AuthenticationService
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from core.config import Settings

# Auth policy:
# - POST /auth/login, /auth/register, /auth/refresh, /auth/logout: public
# - everything under /auth/me: requires auth (get_current_user)
router = APIRouter()


def _service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _write_cookies(request: Request, resp: JSONResponse, access_token: str, refresh_token: str) -> None:
    settings = _settings(request)
    set_auth_cookies(
        resp,
        access_token,
        refresh_token,
        access_max_age=settings.access_token_expire_seconds,
        refresh_max_age=settings.refresh_token_expire_days * 24 * 3600,
        secure=settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set access and refresh cookies.

    The access token is also returned in the body for clients that send it
    as a Bearer header. force_password_reset tells the client to route the
    user to the change-password screen before anything else.
    """
    ip = client_ip(
        request.headers.get("X-Forwarded-For"),
        request.client.host if request.client else None,
    )
    result = _service(request).login(body.username, body.password, ip)
    resp = JSONResponse(
        content=LoginResponse(
            access_token=result.access_token,
            expires_in=_settings(request).access_token_expire_seconds,
            username=result.username,
            role=result.role.value,
            force_password_reset=result.force_password_reset,
        ).model_dump(),
    )
    _write_cookies(request, resp, result.access_token, result.refresh_token)
    return resp


@router.post("/auth/register", response_model=UserSummary, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserSummary:
    """Create a USER account. The caller must log in separately afterwards."""
    if not _settings(request).self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    user = _service(request).register(body.username, body.password)
    return UserSummary.from_user(user)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and a new refresh cookie.

    The presented refresh token is consumed whether or not this response
    reaches the client; replaying it fails with invalid_refresh_token.
    """
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "missing_refresh_token", "message": "No refresh token supplied."},
        )
    pair = _service(request).refresh(token)
    resp = JSONResponse(
        content=RefreshResponse(
            access_token=pair.access_token,
            expires_in=_settings(request).access_token_expire_seconds,
        ).model_dump(),
    )
    _write_cookies(request, resp, pair.access_token, pair.refresh_token)
    return resp


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Revoke the refresh token (if any) and clear both cookies.

    The access token cannot be revoked; it lapses on its own within minutes.
    """
    _service(request).logout(request.cookies.get(REFRESH_COOKIE))
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookies(resp, secure=_settings(request).secure_cookies)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        role=current_user.role.value,
        force_password_reset=current_user.force_password_reset,
    )


@router.get("/auth/me/last-login", response_model=LastLoginResponse)
def last_login(request: Request, current_user: User = Depends(get_current_user)) -> LastLoginResponse:
    return LastLoginResponse(last_login=_service(request).last_login(current_user.username))


@router.post("/auth/me/change-password", status_code=204)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> None:
    """Change the caller's password. 403 incorrect_password if old_password is wrong."""
    _service(request).change_password(current_user.username, body.old_password, body.new_password)


@router.post("/auth/me/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Revoke every refresh token the caller owns (all devices) and clear cookies here."""
    revoked = _service(request).logout_everywhere(current_user.username)
    resp = JSONResponse(content=LogoutAllResponse(revoked=revoked).model_dump())
    clear_auth_cookies(resp, secure=_settings(request).secure_cookies)
    return resp

