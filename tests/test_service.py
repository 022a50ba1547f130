"""Unit tests for auth/service.py -- AuthenticationService end to end over in-memory stores.

Covers:
- register -> login -> refresh -> replay scenario
- duplicate registration is IdentityTaken
- unknown user and wrong password fail identically
- admin reset: temporary password works, old one does not, reset flag set then cleared
- change_password with a wrong old password is IncorrectPassword
- delete_user revokes refresh tokens and publishes users-changed
- audit rows store normalized addresses
- storage failures surface as InfrastructureError
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import (
    ExpiredRefreshToken,
    IdentityNotFound,
    IdentityTaken,
    IncorrectPassword,
    InfrastructureError,
    InvalidCredentials,
    InvalidRefreshToken,
)
from auth.events import USERS_CHANGED, UserEventBroadcaster
from auth.models import Role
from auth.passwords import READABLE_ALPHABET
from auth.service import AuthenticationService
from tests.conftest import FakeClock


class TestLoginScenario:
    def test_register_login_refresh_replay(self, auth_service: AuthenticationService) -> None:
        """The full happy path, then a replay of the consumed refresh token."""
        user = auth_service.register("alice", "pw1")
        assert user.id is not None
        assert user.role is Role.USER

        result = auth_service.login("alice", "pw1", "::1")
        assert result.username == "alice"
        assert result.role is Role.USER
        assert result.force_password_reset is False
        assert auth_service.signer.verify(result.access_token).subject == "alice"

        pair = auth_service.refresh(result.refresh_token)
        assert pair.refresh_token != result.refresh_token
        assert auth_service.signer.verify(pair.access_token).subject == "alice"

        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(result.refresh_token)

    def test_duplicate_registration(self, auth_service: AuthenticationService) -> None:
        auth_service.register("alice", "pw1")
        with pytest.raises(IdentityTaken):
            auth_service.register("alice", "other")

    def test_unknown_user_and_wrong_password_look_the_same(self, auth_service: AuthenticationService) -> None:
        auth_service.register("alice", "pw1")
        with pytest.raises(InvalidCredentials) as unknown:
            auth_service.login("mallory", "pw1")
        with pytest.raises(InvalidCredentials) as wrong:
            auth_service.login("alice", "nope")
        assert unknown.value.code == wrong.value.code == "bad_credentials"
        assert str(unknown.value) == str(wrong.value)

    def test_failed_login_records_nothing(self, auth_service: AuthenticationService) -> None:
        auth_service.register("alice", "pw1")
        with pytest.raises(InvalidCredentials):
            auth_service.login("alice", "nope")
        assert auth_service.last_login("alice") is None
        assert auth_service.login_history("alice") == []
        assert auth_service.refresh_tokens.store.list_tokens("alice") == []

    def test_login_records_last_login_and_audit(
        self, auth_service: AuthenticationService, clock: FakeClock
    ) -> None:
        """IPv6 loopback is stored as 127.0.0.1."""
        auth_service.register("alice", "pw1")
        auth_service.login("alice", "pw1", "0:0:0:0:0:0:0:1")
        assert auth_service.last_login("alice") == clock.now
        history = auth_service.login_history("alice")
        assert len(history) == 1
        assert history[0].ip == "127.0.0.1"
        assert history[0].timestamp == clock.now

    def test_refresh_uses_current_role(self, auth_service: AuthenticationService) -> None:
        auth_service.register("alice", "pw1")
        result = auth_service.login("alice", "pw1")
        user = auth_service.find_user("alice")
        auth_service.users.update_user(user.id, role=Role.ADMIN)
        pair = auth_service.refresh(result.refresh_token)
        assert auth_service.signer.verify(pair.access_token).role is Role.ADMIN

    def test_refresh_with_expired_token(self, auth_service: AuthenticationService, clock: FakeClock) -> None:
        auth_service.register("alice", "pw1")
        result = auth_service.login("alice", "pw1")
        clock.advance(days=31)
        with pytest.raises(ExpiredRefreshToken):
            auth_service.refresh(result.refresh_token)

    def test_refresh_after_owner_deleted(self, auth_service: AuthenticationService) -> None:
        """A token whose owner vanished without revocation cannot mint access tokens."""
        auth_service.register("alice", "pw1")
        result = auth_service.login("alice", "pw1")
        user = auth_service.find_user("alice")
        auth_service.users.delete_user(user.id)
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(result.refresh_token)
        assert auth_service.refresh_tokens.store.list_tokens("alice") == []

    def test_logout_revokes_refresh_token(self, auth_service: AuthenticationService) -> None:
        auth_service.register("alice", "pw1")
        result = auth_service.login("alice", "pw1")
        auth_service.logout(result.refresh_token)
        auth_service.logout(None)
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(result.refresh_token)


class TestPasswordManagement:
    def test_admin_reset_scenario(self, auth_service: AuthenticationService) -> None:
        auth_service.register("bob", "original")
        temporary = auth_service.admin_reset_password("bob")
        assert len(temporary) == 12
        assert set(temporary) <= set(READABLE_ALPHABET)

        with pytest.raises(InvalidCredentials):
            auth_service.login("bob", "original")
        result = auth_service.login("bob", temporary)
        assert result.force_password_reset is True

        auth_service.change_password("bob", temporary, "chosen-by-bob")
        assert auth_service.login("bob", "chosen-by-bob").force_password_reset is False

    def test_reset_unknown_user(self, auth_service: AuthenticationService) -> None:
        with pytest.raises(IdentityNotFound):
            auth_service.admin_reset_password("ghost")

    def test_change_password_with_wrong_old_password(self, auth_service: AuthenticationService) -> None:
        auth_service.register("alice", "pw1")
        with pytest.raises(IncorrectPassword):
            auth_service.change_password("alice", "wrong", "pw2")
        # Unchanged.
        assert auth_service.login("alice", "pw1").username == "alice"

    def test_change_password_unknown_user(self, auth_service: AuthenticationService) -> None:
        with pytest.raises(IdentityNotFound):
            auth_service.change_password("ghost", "a", "b")


class TestAccountManagement:
    def test_delete_user_revokes_tokens_and_notifies(
        self, auth_service: AuthenticationService, events: UserEventBroadcaster
    ) -> None:
        received: list[str] = []
        events.subscribe(received.append)
        auth_service.register("carol", "pw")
        result = auth_service.login("carol", "pw")
        user = auth_service.find_user("carol")

        auth_service.delete_user(user.id)

        assert auth_service.find_user("carol") is None
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(result.refresh_token)
        assert received == [USERS_CHANGED]

    def test_delete_unknown_user(self, auth_service: AuthenticationService) -> None:
        with pytest.raises(IdentityNotFound):
            auth_service.delete_user(9999)

    def test_reset_publishes_users_changed(
        self, auth_service: AuthenticationService, events: UserEventBroadcaster
    ) -> None:
        received: list[str] = []
        events.subscribe(received.append)
        auth_service.register("dave", "pw")
        auth_service.admin_reset_password("dave")
        assert received == [USERS_CHANGED]

    def test_ensure_admin_is_idempotent(self, auth_service: AuthenticationService) -> None:
        assert auth_service.ensure_admin("root", "rootpw") is True
        assert auth_service.ensure_admin("root", "other") is False
        assert auth_service.find_user("root").role is Role.ADMIN
        assert auth_service.login("root", "rootpw").role is Role.ADMIN

    def test_list_users_sorted(self, auth_service: AuthenticationService) -> None:
        auth_service.register("zed", "pw")
        auth_service.register("amy", "pw")
        assert [u.username for u in auth_service.list_users()] == ["amy", "zed"]

    def test_get_user_unknown(self, auth_service: AuthenticationService) -> None:
        with pytest.raises(IdentityNotFound):
            auth_service.get_user(12345)


class TestInfrastructureFailures:
    def test_storage_error_becomes_infrastructure_error(self, auth_service: AuthenticationService) -> None:
        """Driver errors never leak: the caller sees InfrastructureError."""
        boom = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
        with patch.object(auth_service.users, "get_by_username", side_effect=boom):
            with pytest.raises(InfrastructureError) as exc_info:
                auth_service.login("alice", "pw1")
        assert exc_info.value.code == "internal_error"
        assert "disk" not in str(exc_info.value)
