"""
tests/conftest.py -- Shared test fixtures for usergate.

This module provides:
  - FakeClock / clock: a controllable time source injected into every component
  - engine: a plain in-memory SQLite engine for single-threaded unit tests
  - hasher / signer / refresh_service / auth_service: wired on top of engine
  - api_client: TestClient against the real app with a patched lifespan
  - admin_headers / user_headers helpers for authenticated requests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for TestClient because it runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any project import: DEBUG=true so
get_settings() auto-generates SECRET_KEY, SECURE_COOKIES=false because the
test client talks plain http://testserver and would drop Secure cookies, and
a generous login rate limit so repeated logins do not trip slowapi.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

# CRITICAL: Set before any auth/core/api import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, wire_services
from auth.events import UserEventBroadcaster
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.refresh import RefreshTokenService
from auth.service import AuthenticationService
from auth.store import AuditStore, RefreshTokenStore, UserStore, open_engine
from auth.tokens import TokenSigner
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"


class FakeClock:
    """Callable clock frozen at `now` until a test moves it with advance()."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = open_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture
def signer(clock: FakeClock) -> TokenSigner:
    return TokenSigner(TEST_SECRET, expire_seconds=300, clock=clock)


@pytest.fixture
def refresh_service(engine: Engine, clock: FakeClock) -> RefreshTokenService:
    return RefreshTokenService(RefreshTokenStore(engine), validity_days=30, clock=clock)


@pytest.fixture
def events() -> UserEventBroadcaster:
    return UserEventBroadcaster()


@pytest.fixture
def auth_service(
    engine: Engine,
    refresh_service: RefreshTokenService,
    signer: TokenSigner,
    hasher: PasswordHasher,
    events: UserEventBroadcaster,
    clock: FakeClock,
) -> AuthenticationService:
    return AuthenticationService(
        UserStore(engine),
        AuditStore(engine),
        refresh_service,
        signer,
        hasher,
        events=events,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


class ApiContext(NamedTuple):
    client: TestClient
    clock: FakeClock
    admin_id: int


def _patch_lifespan(db_url: str, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires an isolated test database and the fake clock into app.state so
    TestClient routes never touch the configured production database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        engine = open_engine(db_url)
        wire_services(app, engine, get_settings(), clock=clock)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        engine.dispose()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield (client, clock, admin_id) for API integration tests.

    Each test module gets its own named in-memory database. The admin
    account (testadmin / testpass123) is created once the lifespan has
    wired the services.
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    db_url = f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true"
    clock = FakeClock()
    app.router.lifespan_context = _patch_lifespan(db_url, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        service: AuthenticationService = app.state.auth_service
        service.ensure_admin(ADMIN_USERNAME, ADMIN_PASSWORD)
        admin = service.find_user(ADMIN_USERNAME)
        yield ApiContext(client, clock, admin.id)


def bearer(username: str, role: Role) -> dict[str, str]:
    """Authorization header with a freshly signed token at the app's current clock."""
    token = app.state.token_signer.issue(username, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(api_client: ApiContext) -> dict[str, str]:
    return bearer(ADMIN_USERNAME, Role.ADMIN)
