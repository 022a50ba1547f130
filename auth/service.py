"""
auth/service.py -- Login, registration and account maintenance.

AuthenticationService is the only entry point the api/ layer uses for
authentication work. It composes:

  PasswordHasher       -- salted PBKDF2 hashing and verification
  TokenSigner          -- short-lived HS256 access tokens
  RefreshTokenService  -- long-lived, single-use refresh tokens
  UserStore/AuditStore -- credential records and the login audit trail
  EventPublisher       -- best-effort "users-changed" notifications

Error contract:
  Every failure leaving this module is an auth.errors.AuthError. SQLAlchemy
  errors are logged with traceback and re-raised as InfrastructureError, so
  no driver or SQL detail reaches a client.

  login() raises the same InvalidCredentials for an unknown username and for
  a wrong password. Unknown usernames still pay for one PBKDF2 run against a
  dummy record so response time does not reveal which usernames exist.

Secrets never logged: passwords, temporary passwords, token values.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.clock import Clock, utcnow
from auth.errors import (
    IdentityNotFound,
    IdentityTaken,
    IncorrectPassword,
    InfrastructureError,
    InvalidCredentials,
    InvalidRefreshToken,
)
from auth.events import USERS_CHANGED, EventPublisher
from auth.models import LoginAudit, LoginResult, Role, TokenPair, User
from auth.network import normalize_ip
from auth.passwords import PasswordHasher, generate_temporary_password
from auth.refresh import RefreshTokenService
from auth.store import AuditStore, UserStore
from auth.tokens import TokenSigner

logger = logging.getLogger("usergate.auth")

_DUMMY_PASSWORD = "usergate_timing_dummy"


@contextlib.contextmanager
def _storage(action: str) -> Iterator[None]:
    """Convert persistence failures into InfrastructureError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Storage failure during %s", action)
        raise InfrastructureError() from exc


class AuthenticationService:
    """Orchestrates credential checks, token issuance and audit recording.

    All collaborators are injected so tests can supply in-memory stores and a
    controllable clock. The instance itself holds no per-request state and is
    shared by every request thread.
    """

    def __init__(
        self,
        users: UserStore,
        audit: AuditStore,
        refresh_tokens: RefreshTokenService,
        signer: TokenSigner,
        hasher: PasswordHasher,
        *,
        events: EventPublisher | None = None,
        clock: Clock = utcnow,
        temporary_password_length: int = 12,
    ) -> None:
        self.users = users
        self.audit = audit
        self.refresh_tokens = refresh_tokens
        self.signer = signer
        self.hasher = hasher
        self.events = events
        self._clock = clock
        self.temporary_password_length = temporary_password_length
        # Computed once so the first failed login is not measurably slower.
        self._dummy_salt = hasher.generate_salt()
        self._dummy_hash = hasher.hash(_DUMMY_PASSWORD, self._dummy_salt)

    # ------------------------------------------------------------------
    # Login / token lifecycle
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, source_ip: str | None = None) -> LoginResult:
        ip = normalize_ip(source_ip)
        with _storage("login"):
            user = self.users.get_by_username(username)
            if user is None:
                # Equalize timing -- do NOT return before running PBKDF2.
                self.hasher.verify(password, self._dummy_salt, self._dummy_hash)
                logger.info("Failed login for unknown user from %s", ip)
                raise InvalidCredentials()
            if not self.hasher.verify(password, user.salt, user.password_hash):
                logger.info("Failed login for %s from %s", user.username, ip)
                raise InvalidCredentials()

            now = self._clock()
            self.users.update_user(user.id, last_login=now)
            self.audit.append(LoginAudit(username=user.username, ip=ip, timestamp=now))
            access_token = self.signer.issue(user.username, user.role)
            refresh_token = self.refresh_tokens.create(user.username)

        logger.info("Login succeeded for %s from %s", user.username, ip)
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            force_password_reset=user.force_password_reset,
            username=user.username,
            role=user.role,
        )

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate refresh_token and mint a new access token for its owner.

        The role comes from the user record at refresh time, so a role change
        takes effect within one access-token lifetime.
        """
        with _storage("refresh"):
            username = self.refresh_tokens.validate(refresh_token)
            new_refresh = self.refresh_tokens.rotate(refresh_token)
            user = self.users.get_by_username(username) if username else None
            if user is None:
                # Owner deleted between issue and refresh.
                self.refresh_tokens.revoke(new_refresh)
                raise InvalidRefreshToken()
            access_token = self.signer.issue(user.username, user.role)
        return TokenPair(access_token=access_token, refresh_token=new_refresh)

    def logout(self, refresh_token: str | None) -> None:
        if not refresh_token:
            return
        with _storage("logout"):
            self.refresh_tokens.revoke(refresh_token)

    def logout_everywhere(self, username: str) -> int:
        with _storage("logout_everywhere"):
            return self.refresh_tokens.revoke_all(username)

    def purge_expired_refresh_tokens(self) -> int:
        with _storage("purge"):
            return self.refresh_tokens.purge_expired()

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------

    def register(self, username: str, password: str) -> User:
        """Create a USER account. Does not log the new user in."""
        with _storage("register"):
            if self.users.exists(username):
                raise IdentityTaken()
            user = self._new_user(username, password, Role.USER)
            try:
                user.id = self.users.create_user(user)
            except IntegrityError as exc:
                # Lost a race with a concurrent registration of the same name.
                raise IdentityTaken() from exc
        logger.info("Registered user %s", username)
        return user

    def ensure_admin(self, username: str, password: str, *, force_password_reset: bool = False) -> bool:
        """Create an ADMIN account unless the username exists. Returns True if created."""
        with _storage("ensure_admin"):
            if self.users.exists(username):
                return False
            user = self._new_user(username, password, Role.ADMIN)
            user.force_password_reset = force_password_reset
            try:
                self.users.create_user(user)
            except IntegrityError:
                logger.info("Admin %s was created concurrently", username)
                return False
        logger.info("Created admin user %s", username)
        return True

    def change_password(self, username: str, old_password: str, new_password: str) -> None:
        """Change the caller's own password and clear the force-reset flag.

        Raises IncorrectPassword (not InvalidCredentials) because the caller
        is already authenticated -- there is nothing to enumerate.
        """
        with _storage("change_password"):
            user = self.users.get_by_username(username)
            if user is None:
                raise IdentityNotFound()
            if not self.hasher.verify(old_password, user.salt, user.password_hash):
                raise IncorrectPassword()
            salt = self.hasher.generate_salt()
            self.users.update_user(
                user.id,
                salt=salt,
                password_hash=self.hasher.hash(new_password, salt),
                force_password_reset=False,
            )
        logger.info("Password changed for %s", username)

    def admin_reset_password(self, username: str) -> str:
        """Replace the user's password with a temporary one and return it.

        The plaintext is returned exactly once and is neither stored nor
        logged. The account must change it at next login
        (force_password_reset=True).
        """
        with _storage("admin_reset_password"):
            user = self.users.get_by_username(username)
            if user is None:
                raise IdentityNotFound()
            temporary = generate_temporary_password(self.temporary_password_length)
            salt = self.hasher.generate_salt()
            self.users.update_user(
                user.id,
                salt=salt,
                password_hash=self.hasher.hash(temporary, salt),
                force_password_reset=True,
            )
        logger.info("Password reset by admin for %s", username)
        self._notify()
        return temporary

    def delete_user(self, user_id: int) -> None:
        """Delete an account and revoke every refresh token it owned."""
        with _storage("delete_user"):
            user = self.users.get_by_id(user_id)
            if user is None or not self.users.delete_user(user_id):
                raise IdentityNotFound()
            self.refresh_tokens.revoke_all(user.username)
        logger.info("Deleted user %s", user.username)
        self._notify()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> User:
        with _storage("get_user"):
            user = self.users.get_by_id(user_id)
        if user is None:
            raise IdentityNotFound()
        return user

    def find_user(self, username: str) -> User | None:
        with _storage("find_user"):
            return self.users.get_by_username(username)

    def list_users(self) -> list[User]:
        with _storage("list_users"):
            return self.users.list_users()

    def last_login(self, username: str) -> datetime | None:
        user = self.find_user(username)
        if user is None:
            raise IdentityNotFound()
        return user.last_login

    def login_history(self, username: str | None = None) -> list[LoginAudit]:
        """Audit rows oldest first; all users when username is None."""
        with _storage("login_history"):
            return self.audit.list_entries(username=username)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_user(self, username: str, password: str, role: Role) -> User:
        salt = self.hasher.generate_salt()
        return User(
            username=username,
            role=role,
            salt=salt,
            password_hash=self.hasher.hash(password, salt),
        )

    def _notify(self) -> None:
        if self.events is not None:
            self.events.publish(USERS_CHANGED)
