"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; _row_to_* are the mappers.
Service, dependency and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  temp_passwords.user_id is UNIQUE. create_temp_password() relies on the
  database to reject a second row for the same user, so two concurrent
  recovery requests cannot both succeed. The IntegrityError is translated to
  TempPasswordAlreadyActive here, where the constraint is known.

  field_exists() only accepts real column names of the users table. The
  caller's allow-list is checked first by the service; this is the second
  gate before a column reference is built.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.exceptions import TempPasswordAlreadyActive
from auth.models import Session, SessionStatus, TempPassword, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("two_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("two_factor_secret", String(64)),  # base32 TOTP seed, NULL unless enabled
    Column("created_at", String(32), nullable=False),
)

_temp_passwords = Table(
    "temp_passwords",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, unique=True),  # at most one per user
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("expires", String(32), nullable=False),
    Column("user_id", Integer),  # NULL while logged out
)

# Columns a field-existence probe may target. Secrets are never probeable.
_PROBEABLE_COLUMNS = frozenset({"username", "email"})


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now().isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Users and temp passwords
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and TempPassword entities.

    Usage:
        store = UserStore("sqlite:///keyward.db")
        store.create_user(User(username="alice", hashed_password=hasher.hash("secret")))
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = _make_engine(db_url)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    two_factor_enabled=1 if user.two_factor_enabled else 0,
                    two_factor_secret=user.two_factor_secret,
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
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and its temp password. Returns True if the user existed.

        Sessions bound to the user are left in place; the next current-user
        lookup on such a session reports InvalidUserId.
        """
        with self.engine.connect() as conn:
            conn.execute(_temp_passwords.delete().where(_temp_passwords.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def field_exists(self, key: str, value: str) -> bool:
        """Return True if any user has ``key == value``.

        Raises ValueError for a key outside _PROBEABLE_COLUMNS -- the column
        name is never taken from raw input.
        """
        if key not in _PROBEABLE_COLUMNS:
            raise ValueError(f"Unknown user field: {key!r}")
        column = _users.c[key]
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(column == value).limit(1)).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Temp passwords
    # ------------------------------------------------------------------

    def get_temp_password(self, user_id: int) -> TempPassword | None:
        """Return the user's active temp password, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_temp_passwords.select().where(_temp_passwords.c.user_id == user_id)).fetchone()
        return _row_to_temp_password(row) if row is not None else None

    def create_temp_password(self, temp_password: TempPassword) -> int:
        """Insert a temp password and return its ID.

        Raises TempPasswordAlreadyActive when the UNIQUE(user_id) constraint
        rejects the row -- either a record already existed or a concurrent
        request committed one between the caller's check and this insert.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _temp_passwords.insert().values(
                        user_id=temp_password.user_id,
                        hashed_password=temp_password.hashed_password,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise TempPasswordAlreadyActive() from exc

    def delete_temp_password(self, user_id: int) -> bool:
        """Remove the user's temp password. Returns True if one was deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(_temp_passwords.delete().where(_temp_passwords.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for server-side Session rows.

    A session is created in memory by new() and only written on save(), so
    anonymous requests that never log in do not leave rows behind. save()
    refreshes the expiry; load() treats an expired row as absent.
    """

    def __init__(self, db_url: str, max_age: int = 24 * 3600) -> None:
        self.engine: Engine = _make_engine(db_url)
        self.max_age = max_age

    def _expiry(self) -> str:
        return (_now() + timedelta(seconds=self.max_age)).isoformat(timespec="seconds")

    def new(self) -> Session:
        return Session(id=secrets.token_urlsafe(32), expires_at=self._expiry())

    def load(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        if datetime.fromisoformat(row.expires) <= _now():
            return None
        return _row_to_session(row)

    def save(self, session: Session) -> None:
        session.expires_at = self._expiry()
        values = {"expires": session.expires_at, "user_id": session.user_id}
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(_sessions.c.id == session.id).values(**values))
            if result.rowcount == 0:
                conn.execute(_sessions.insert().values(id=session.id, **values))
            conn.commit()

    def delete(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires <= _now_iso()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        two_factor_enabled=bool(row.two_factor_enabled),
        two_factor_secret=row.two_factor_secret,
        created_at=row.created_at,
    )


def _row_to_temp_password(row) -> TempPassword:
    return TempPassword(
        id=row.id,
        user_id=row.user_id,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    status = SessionStatus.LOGGED_IN if row.user_id is not None else SessionStatus.LOGGED_OUT
    return Session(id=row.id, expires_at=row.expires, status=status, user_id=row.user_id)
