"""
api/routes/v1/admin.py -- Administrative user management endpoints.

Routes (all require the ADMIN role):
  GET    /api/v1/admin/users                          -- list every account
  DELETE /api/v1/admin/users/{user_id}                -- delete an account, revoke its refresh tokens
  POST   /api/v1/admin/users/{user_id}/reset-password -- set a temporary password, force a change
  GET    /api/v1/admin/audit                          -- login audit trail (?username= to filter)
  GET    /api/v1/admin/events                         -- SSE stream of "users-changed" events

Delete and reset publish "users-changed" so open admin consoles can reload
their user list. The stream carries no user data; clients re-fetch
GET /admin/users when an event arrives.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from api.models import AuditEntry, DeletedResponse, TempPasswordResponse, UserSummary
from auth.dependencies import require_admin
from auth.models import User
from auth.service import AuthenticationService

logger = logging.getLogger("usergate.api")

router = APIRouter()

# Events buffered per SSE connection; a slow client loses the overflow.
_STREAM_BUFFER = 32


def _service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


@router.get("/admin/users", response_model=list[UserSummary])
def list_users(request: Request, admin: User = Depends(require_admin)) -> list[UserSummary]:
    return [UserSummary.from_user(u) for u in _service(request).list_users()]


@router.delete("/admin/users/{user_id}", response_model=DeletedResponse)
def delete_user(user_id: int, request: Request, admin: User = Depends(require_admin)) -> DeletedResponse:
    """Delete an account. Admins cannot delete themselves (400 self_delete)."""
    if user_id == admin.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "You cannot delete your own account."},
        )
    _service(request).delete_user(user_id)
    logger.info("Admin %s deleted user id=%d", admin.username, user_id)
    return DeletedResponse(deleted=user_id)


@router.post("/admin/users/{user_id}/reset-password", response_model=TempPasswordResponse)
def reset_password(user_id: int, request: Request, admin: User = Depends(require_admin)) -> JSONResponse:
    """Replace the user's password with a generated temporary one.

    The temporary password appears in this response only; it is not stored
    in plaintext and is never logged.
    """
    service = _service(request)
    target = service.get_user(user_id)
    temporary = service.admin_reset_password(target.username)
    logger.info("Admin %s reset the password of %s", admin.username, target.username)
    resp = JSONResponse(content=TempPasswordResponse(temp_password=temporary).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/admin/audit", response_model=list[AuditEntry])
def audit(
    request: Request,
    username: Optional[str] = None,
    admin: User = Depends(require_admin),
) -> list[AuditEntry]:
    entries = _service(request).login_history(username)
    return [AuditEntry(username=e.username, ip=e.ip, timestamp=e.timestamp) for e in entries]


@router.get("/admin/events")
async def events(request: Request, admin: User = Depends(require_admin)) -> EventSourceResponse:
    """Stream "users-changed" notifications to an admin console.

    publish() runs on whichever worker thread handled the mutating request,
    so the subscriber callback hops onto this connection's event loop with
    call_soon_threadsafe before touching the queue.
    """
    broadcaster = request.app.state.user_events
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str] = asyncio.Queue(maxsize=_STREAM_BUFFER)

    def _offer(event: str) -> None:
        if not queue.full():
            queue.put_nowait(event)

    def _deliver(event: str) -> None:
        loop.call_soon_threadsafe(_offer, event)

    unsubscribe = broadcaster.subscribe(_deliver)
    logger.info("Admin %s subscribed to user events", admin.username)

    async def _stream():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=15)
                except asyncio.TimeoutError:
                    continue
                yield {"event": event, "data": "refresh"}
        finally:
            unsubscribe()
            logger.info("Admin %s unsubscribed from user events", admin.username)

    return EventSourceResponse(_stream())
