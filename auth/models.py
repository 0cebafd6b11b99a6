"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores and
services do the work; these classes own domain shape.

Two types carry a little behaviour because their invariants are the point:

  Session keeps status and user_id consistent. user_id is populated only in
  the LOGGED_IN state and the only transitions are log_in() / log_out().

  SanitizedUser is a distinct type with no password-hash field. The only way
  to build one from a User is SanitizedUser.from_user(), so a hash can never
  leak by forgetting to delete a key.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass
class User:
    """A local account.

    two_factor_secret is the base32 TOTP seed and is None unless
    two_factor_enabled is True. email is optional and unique when present.
    """

    username: str
    hashed_password: str
    id: int | None = None
    email: str | None = None
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None
    created_at: str | None = None


@dataclass
class TempPassword:
    """A recovery credential. At most one row per user (UNIQUE user_id)."""

    user_id: int
    hashed_password: str
    id: int | None = None
    created_at: str | None = None


class SessionStatus(str, Enum):
    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


@dataclass
class Session:
    """Server-side session row: opaque id, expiry and the bound user.

    The client only ever holds the id (inside the signed session cookie).
    """

    id: str
    expires_at: str
    status: SessionStatus = SessionStatus.LOGGED_OUT
    user_id: int | None = None

    def __post_init__(self) -> None:
        if self.status is SessionStatus.LOGGED_IN and self.user_id is None:
            raise ValueError("LOGGED_IN session requires a user_id")
        if self.status is SessionStatus.LOGGED_OUT and self.user_id is not None:
            raise ValueError("LOGGED_OUT session cannot carry a user_id")

    @property
    def is_logged_in(self) -> bool:
        return self.status is SessionStatus.LOGGED_IN

    def log_in(self, user_id: int) -> None:
        self.status = SessionStatus.LOGGED_IN
        self.user_id = user_id

    def log_out(self) -> None:
        self.status = SessionStatus.LOGGED_OUT
        self.user_id = None


@dataclass(frozen=True)
class SanitizedUser:
    """External representation of a User: no password hash, no TOTP seed."""

    id: int
    username: str
    email: str | None
    two_factor_enabled: bool
    created_at: str | None

    @classmethod
    def from_user(cls, user: User) -> SanitizedUser:
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            two_factor_enabled=user.two_factor_enabled,
            created_at=user.created_at,
        )
