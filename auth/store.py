"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore, RefreshTokenStore and
AuditStore are the repositories; the _row_to_* functions are the mappers.
Service code never touches SQL directly.

One engine backs all three stores (open_engine()). Each public method runs in
its own connection and commits before returning, so every mutation is a
single transaction.

Security:
  All queries use bound parameters. No f-strings in SQL.

  refresh_tokens.token is UNIQUE. RefreshTokenStore.replace() deletes the old
  row and inserts the new one in one transaction, and only inserts if the
  DELETE actually removed a row. Two concurrent rotations of one token
  therefore cannot both succeed.

Timestamps are stored as ISO 8601 UTC text (same convention as created_at)
and parsed back into aware datetimes by the mappers.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine

from auth.models import LoginAudit, RefreshToken, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("salt", Text),
    Column("password_hash", Text),
    Column("role", String(16), nullable=False, server_default=Role.USER.value),
    Column("last_login", Text),  # ISO 8601, NULL until first login
    Column("force_password_reset", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("username", String(255), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
)

_login_audit = Table(
    "login_audit",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, index=True),
    Column("ip", String(64)),
    Column("timestamp", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def open_engine(db_url: str) -> Engine:
    """Create the engine shared by all auth stores and ensure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        # Concurrent writers wait for the lock instead of failing immediately.
        connect_args["timeout"] = 30
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for credential records.

    Usage:
        engine = open_engine("sqlite:///auth.db")
        users = UserStore(engine)
        users.create_user(User(username="alice", salt=s, password_hash=h))
        user = users.get_by_username("alice")
    """

    # Columns a caller may change through update_user(). Validated before any
    # SQL is built so column names never come from caller input.
    _UPDATABLE: frozenset = frozenset({"salt", "password_hash", "role", "last_login", "force_password_reset"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def exists(self, username: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.username == username)).fetchone()
        return row is not None

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        The service turns that into IdentityTaken -- it is the authoritative
        check when two registrations race past exists().
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    salt=user.salt,
                    password_hash=user.password_hash,
                    role=Role(user.role).value,
                    last_login=_to_iso(user.last_login) if user.last_login else None,
                    force_password_reset=1 if user.force_password_reset else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: salt, password_hash, role, last_login (datetime),
        force_password_reset (bool). Unknown fields raise ValueError.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "force_password_reset" in fields:
            fields["force_password_reset"] = 1 if fields["force_password_reset"] else 0
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if fields.get("last_login") is not None:
            fields["last_login"] = _to_iso(fields["last_login"])
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Refresh tokens are not touched here; the service revokes them.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0


class RefreshTokenStore:
    """Repository for refresh tokens: lookup, save, delete, list, replace."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def save(self, record: RefreshToken) -> int:
        """Insert a token row. Raises IntegrityError on a duplicate token string."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token=record.token,
                    username=record.username,
                    expires_at=_to_iso(record.expires_at),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def delete(self, token: str) -> bool:
        """Delete one token. Returns True only for the caller that removed the row."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def replace(self, old_token: str, new_record: RefreshToken) -> bool:
        """Atomically swap old_token for new_record.

        DELETE runs first inside the transaction. If it removes nothing (the
        token was already rotated or revoked by someone else) the transaction
        ends without inserting and False is returned.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == old_token))
            if deleted.rowcount != 1:
                return False
            conn.execute(
                _refresh_tokens.insert().values(
                    token=new_record.token,
                    username=new_record.username,
                    expires_at=_to_iso(new_record.expires_at),
                )
            )
        return True

    def list_tokens(self, username: str | None = None) -> list[RefreshToken]:
        query = _refresh_tokens.select().order_by(_refresh_tokens.c.id)
        if username is not None:
            query = query.where(_refresh_tokens.c.username == username)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def delete_for_user(self, username: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.username == username))
            conn.commit()
        return result.rowcount

    def delete_expired(self, now: datetime) -> int:
        """Delete rows whose expiry is at or before `now`.

        ISO 8601 UTC strings with the same offset sort chronologically, so the
        comparison can run in SQL.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _to_iso(now)))
            conn.commit()
        return result.rowcount


class AuditStore:
    """Append-only repository for login audit rows."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def append(self, entry: LoginAudit) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _login_audit.insert().values(
                    username=entry.username,
                    ip=entry.ip,
                    timestamp=_to_iso(entry.timestamp),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_entries(self, username: str | None = None) -> list[LoginAudit]:
        """Return audit rows oldest first, optionally only those for one username."""
        query = _login_audit.select().order_by(_login_audit.c.id)
        if username is not None:
            query = query.where(_login_audit.c.username == username)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        salt=row.salt,
        password_hash=row.password_hash,
        role=Role(row.role),
        last_login=_from_iso(row.last_login),
        force_password_reset=bool(row.force_password_reset),
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        username=row.username,
        expires_at=_from_iso(row.expires_at),
    )


def _row_to_audit(row) -> LoginAudit:
    return LoginAudit(
        id=row.id,
        username=row.username,
        ip=row.ip,
        timestamp=_from_iso(row.timestamp),
    )
