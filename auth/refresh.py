"""
auth/refresh.py -- Long-lived refresh token lifecycle.

Lifecycle per token:  ACTIVE -> ROTATED | REVOKED | EXPIRED

Only ACTIVE is ever stored. Reaching any terminal state deletes the row, so
a token string that has left ACTIVE can never validate or rotate again.

Security design decisions:
  Token value: secrets.token_urlsafe(64) -- 64 random bytes (512 bits),
       base64url without padding (86 chars). Safe in cookies and URLs and
       infeasible to guess. secrets draws from the OS CSPRNG and needs no
       locking across request threads.

  Rotation: single use. The old row is deleted and the new one inserted in
       one transaction (RefreshTokenStore.replace). The DELETE is the
       serialization point: whichever caller's DELETE removes the row wins,
       every other concurrent caller gets InvalidRefreshToken. The old token is
       dead even if the winner never receives the new one.

  validate() returns None for both "unknown" and "expired" so callers cannot
       tell which one happened.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from auth.clock import Clock, utcnow
from auth.errors import ExpiredRefreshToken, InvalidRefreshToken
from auth.models import RefreshToken
from auth.store import RefreshTokenStore

logger = logging.getLogger("usergate.auth")

TOKEN_BYTES = 64


class RefreshTokenService:
    """Creates, validates, rotates and revokes refresh tokens.

    Usage:
        refresh = RefreshTokenService(RefreshTokenStore(engine))
        token = refresh.create("alice")
        refresh.validate(token)          # "alice"
        new_token = refresh.rotate(token)
        refresh.rotate(token)            # raises InvalidRefreshToken
    """

    def __init__(self, store: RefreshTokenStore, validity_days: int = 30, clock: Clock = utcnow) -> None:
        self.store = store
        self.validity = timedelta(days=validity_days)
        self._clock = clock

    def _new_record(self, username: str) -> RefreshToken:
        return RefreshToken(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            username=username,
            expires_at=self._clock() + self.validity,
        )

    def create(self, username: str) -> str:
        record = self._new_record(username)
        self.store.save(record)
        return record.token

    def validate(self, token: str) -> str | None:
        """Return the owning username iff the token exists and expires strictly after now."""
        record = self.store.get(token)
        if record is None or record.expires_at <= self._clock():
            return None
        return record.username

    def rotate(self, old_token: str) -> str:
        """Consume old_token and return a fresh token for the same user.

        Raises:
            InvalidRefreshToken: no such token, or another caller consumed it first.
            ExpiredRefreshToken: the token existed but had expired (it is deleted).
        """
        record = self.store.get(old_token)
        if record is None:
            raise InvalidRefreshToken()
        if record.expires_at <= self._clock():
            self.store.delete(old_token)
            raise ExpiredRefreshToken()
        replacement = self._new_record(record.username)
        if not self.store.replace(old_token, replacement):
            logger.warning("Refresh token for %s was consumed concurrently; rotation refused", record.username)
            raise InvalidRefreshToken()
        return replacement.token

    def revoke(self, token: str) -> None:
        """Delete the token if it exists. Unknown tokens are not an error."""
        self.store.delete(token)

    def revoke_all(self, username: str) -> int:
        """Delete every refresh token owned by username. Returns the number removed."""
        removed = self.store.delete_for_user(username)
        if removed:
            logger.info("Revoked %d refresh token(s) for %s", removed, username)
        return removed

    def purge_expired(self) -> int:
        return self.store.delete_expired(self._clock())
