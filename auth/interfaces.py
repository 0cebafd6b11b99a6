"""
auth/interfaces.py -- Collaborator contracts consumed by the auth core.

AuthService depends on these protocols, not on the concrete SQLAlchemy stores
or the bcrypt/pyotp wrappers. The application factory constructs the concrete
implementations and passes them in; tests may pass fakes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from auth.models import Session, TempPassword, User


@runtime_checkable
class PasswordHasher(Protocol):
    def hash(self, plain: str) -> str: ...

    def verify(self, plain: str, hashed: str) -> bool: ...


@runtime_checkable
class TokenVerifier(Protocol):
    def verify(self, secret: str, token: str) -> bool: ...


@runtime_checkable
class UserRepository(Protocol):
    """User lookups plus temp-password persistence."""

    def get_by_username(self, username: str) -> User | None: ...

    def get_by_id(self, user_id: int) -> User | None: ...

    def field_exists(self, key: str, value: str) -> bool: ...

    def get_temp_password(self, user_id: int) -> TempPassword | None: ...

    def create_temp_password(self, temp_password: TempPassword) -> int:
        """Insert atomically.

        Raises:
            TempPasswordAlreadyActive: a record already exists for the user,
                including one committed by a concurrent request.
        """
        ...

    def delete_temp_password(self, user_id: int) -> bool: ...


@runtime_checkable
class SessionRepository(Protocol):
    def new(self) -> Session:
        """Return a fresh LOGGED_OUT session. Not persisted until save()."""
        ...

    def load(self, session_id: str) -> Session | None:
        """Return the session, or None if unknown or expired."""
        ...

    def save(self, session: Session) -> None:
        """Upsert the session and refresh its expiry."""
        ...

    def delete(self, session_id: str) -> None:
        """Remove the row if present. Unknown ids are ignored."""
        ...

    def purge_expired(self) -> int: ...
