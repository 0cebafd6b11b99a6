"""
auth/service.py -- Credential verification and session issuance.

Components (leaves first):
  CredentialVerifier  -- username/password -> User; primary password first,
                         then the user's active temp password.
  TwoFactorGate       -- passes unless the user enabled 2FA and the token fails.
  TempPasswordIssuer  -- creates the single outstanding recovery password.
  SessionManager      -- binds/unbinds a user on the caller's session.
  UserView            -- sanitized projection and field-existence probe.

AuthService composes them into the request-level flows. Every flow is
strictly ordered and stops at the first failure: a wrong password is reported
before a missing 2FA token, and nothing is written to the session until all
checks have passed.

Temp-password lifetime: single use. verify()/match() are read-only; the login
flows delete the temp password only after the session has been attached.

Layer rule: no imports from api/ or core/. Collaborators arrive by
constructor (see auth/interfaces.py).
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable
from dataclasses import dataclass

from auth.exceptions import (
    AlreadyLoggedOut,
    Invalid2FA,
    InvalidCredentials,
    InvalidField,
    InvalidUserId,
    NeedsLogin,
    TempPasswordAlreadyActive,
    UnknownUser,
)
from auth.hashing import DUMMY_HASH
from auth.interfaces import PasswordHasher, SessionRepository, TokenVerifier, UserRepository
from auth.models import SanitizedUser, Session, TempPassword, User

logger = logging.getLogger("keyward.auth")

DEFAULT_FIELD_OPTIONS = ("username", "email")


@dataclass(frozen=True)
class CredentialMatch:
    """Result of a successful credential check.

    temp_password is set when the presented password matched the user's temp
    password rather than the primary one.
    """

    user: User
    temp_password: TempPassword | None = None

    @property
    def used_temp_password(self) -> bool:
        return self.temp_password is not None


@dataclass(frozen=True)
class IssuedTempPassword:
    """Plaintext temp password plus its owner. The plaintext is never stored."""

    temp_password: str
    user: User


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


class CredentialVerifier:
    def __init__(self, users: UserRepository, hasher: PasswordHasher) -> None:
        self._users = users
        self._hasher = hasher

    def match(self, username: str, password: str) -> CredentialMatch:
        """Identify the user behind a username/password pair.

        Every failure runs the hasher exactly twice (primary slot, temp slot),
        substituting DUMMY_HASH for a missing user or temp record. Response
        time then reveals neither whether the account exists [C1] nor whether
        a temp password is outstanding.

        Raises:
            InvalidCredentials: for an unknown username, or when neither the
                primary nor the temp password matches.
        """
        user = self._users.get_by_username(username)
        if user is None:
            self._hasher.verify(password, DUMMY_HASH)
            self._hasher.verify(password, DUMMY_HASH)
            raise InvalidCredentials()

        if self._hasher.verify(password, user.hashed_password):
            return CredentialMatch(user=user)

        temp = self._users.get_temp_password(user.id)
        if temp is None:
            self._hasher.verify(password, DUMMY_HASH)
        elif self._hasher.verify(password, temp.hashed_password):
            return CredentialMatch(user=user, temp_password=temp)

        raise InvalidCredentials()

    def verify(self, username: str, password: str) -> User:
        return self.match(username, password).user


class TwoFactorGate:
    def __init__(self, token_verifier: TokenVerifier) -> None:
        self._token_verifier = token_verifier

    def check(self, user: User, token: str | None) -> None:
        """Raise Invalid2FA unless 2FA is off or the token verifies."""
        if not user.two_factor_enabled:
            return
        if not token or not user.two_factor_secret:
            raise Invalid2FA()
        if not self._token_verifier.verify(user.two_factor_secret, token):
            raise Invalid2FA()


class TempPasswordIssuer:
    # 12 random bytes -> 16 URL-safe characters.
    TOKEN_BYTES = 12

    def __init__(self, users: UserRepository, hasher: PasswordHasher) -> None:
        self._users = users
        self._hasher = hasher

    def create(self, username: str) -> IssuedTempPassword:
        """Create the user's recovery password and return it in plaintext.

        The pre-check gives the common case a clear answer without hashing;
        the store's UNIQUE(user_id) insert is what actually guarantees one
        active record when two requests race past the check.

        Raises:
            UnknownUser: username does not resolve.
            TempPasswordAlreadyActive: a temp password already exists.
        """
        user = self._users.get_by_username(username)
        if user is None:
            raise UnknownUser(username)

        if self._users.get_temp_password(user.id) is not None:
            raise TempPasswordAlreadyActive()

        plain = secrets.token_urlsafe(self.TOKEN_BYTES)
        self._users.create_temp_password(TempPassword(user_id=user.id, hashed_password=self._hasher.hash(plain)))
        logger.info("Temp password issued for user_id=%s", user.id)
        return IssuedTempPassword(temp_password=plain, user=user)


class UserView:
    def __init__(self, users: UserRepository, field_options: Iterable[str] = DEFAULT_FIELD_OPTIONS) -> None:
        self._users = users
        self.field_options = frozenset(field_options)

    @staticmethod
    def sanitize(user: User) -> SanitizedUser:
        return SanitizedUser.from_user(user)

    def field_exists(self, key: str, value: str) -> bool:
        if key not in self.field_options:
            raise InvalidField(key)
        return self._users.field_exists(key, value)


class SessionManager:
    """Reads and writes the current-user binding of one session.

    LOGGED_OUT --attach--> LOGGED_IN --clear--> LOGGED_OUT. clear() on a
    LOGGED_OUT session is an error, not a no-op.
    """

    def __init__(self, users: UserRepository, sessions: SessionRepository) -> None:
        self._users = users
        self._sessions = sessions

    def attach(self, session: Session, user: User) -> SanitizedUser:
        """Bind the user to a newly issued session id.

        The id the caller arrived with is retired, so a cookie planted before
        login never becomes an authenticated one. Callers must write
        session.id back to the client.
        """
        self._sessions.delete(session.id)
        session.id = self._sessions.new().id
        session.log_in(user.id)
        self._sessions.save(session)
        return SanitizedUser.from_user(user)

    def clear(self, session: Session) -> None:
        if not session.is_logged_in:
            raise AlreadyLoggedOut()
        session.log_out()
        self._sessions.save(session)

    def require_logged_in(self, session: Session) -> int:
        """Return the bound user id, or raise NeedsLogin."""
        if not session.is_logged_in:
            raise NeedsLogin()
        return session.user_id

    def current_user(self, session: Session) -> SanitizedUser:
        user_id = self.require_logged_in(session)
        user = self._users.get_by_id(user_id)
        if user is None:
            raise InvalidUserId()
        return SanitizedUser.from_user(user)


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class AuthService:
    """Request-level authentication flows.

    Usage:
        auth = AuthService(UserStore(url), SessionStore(url), BcryptHasher(), TotpVerifier())
        user = auth.login(session, "alice", "secret")
    """

    def __init__(
        self,
        users: UserRepository,
        sessions: SessionRepository,
        hasher: PasswordHasher,
        token_verifier: TokenVerifier,
        field_options: Iterable[str] = DEFAULT_FIELD_OPTIONS,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.credentials = CredentialVerifier(users, hasher)
        self.two_factor = TwoFactorGate(token_verifier)
        self.temp_passwords = TempPasswordIssuer(users, hasher)
        self.session_manager = SessionManager(users, sessions)
        self.view = UserView(users, field_options)

    def _finish_login(self, session: Session, match: CredentialMatch) -> SanitizedUser:
        result = self.session_manager.attach(session, match.user)
        if match.used_temp_password:
            self.users.delete_temp_password(match.user.id)
            logger.info("Temp password consumed by login for user_id=%s", match.user.id)
        logger.info("Login succeeded for user_id=%s", match.user.id)
        return result

    def login(self, session: Session, username: str, password: str) -> SanitizedUser:
        """Plain login: credentials only. The 2FA gate is never consulted."""
        try:
            match = self.credentials.match(username, password)
        except InvalidCredentials:
            logger.warning("Login failed: invalid credentials")
            raise
        return self._finish_login(session, match)

    def login_2fa(self, session: Session, username: str, password: str, token: str | None) -> SanitizedUser:
        """2FA-aware login: credentials, then the 2FA gate, then the session."""
        try:
            match = self.credentials.match(username, password)
        except InvalidCredentials:
            logger.warning("Login failed: invalid credentials")
            raise
        try:
            self.two_factor.check(match.user, token)
        except Invalid2FA:
            logger.warning("Login failed: invalid 2FA token for user_id=%s", match.user.id)
            raise
        return self._finish_login(session, match)

    def logout(self, session: Session) -> None:
        self.session_manager.clear(session)

    def require_logged_in(self, session: Session) -> int:
        return self.session_manager.require_logged_in(session)

    def current_user(self, session: Session) -> SanitizedUser:
        return self.session_manager.current_user(session)

    def create_temp_password(self, username: str) -> IssuedTempPassword:
        return self.temp_passwords.create(username)

    def field_exists(self, key: str, value: str) -> bool:
        return self.view.field_exists(key, value)
