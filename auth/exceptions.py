"""
auth/exceptions.py -- Error taxonomy for the authentication core.

Every failure the core can report is a distinct AuthError subclass with a
stable machine-readable code. The API layer renders them through one
exception handler (api/main.py) into the ErrorResponse envelope, so route
code raises and never builds error JSON itself.

InvalidCredentials is deliberately undifferentiated: unknown username, wrong
password and wrong temp password all produce the same code and message.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for recoverable, caller-facing authentication errors."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to the ErrorDetail shape used by the API."""
        return {
            "code": self.code,
            "message": self.message,
            "detail": str(self.details) if self.details else None,
        }


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    default_message = "Incorrect username or password."


class Invalid2FA(AuthError):
    code = "invalid_2fa"
    default_message = "Invalid 2FA token."


class AlreadyLoggedOut(AuthError):
    code = "already_logged_out"
    default_message = "Already logged out."


class InvalidUserId(AuthError):
    """The session points at a user that no longer exists (stale session)."""

    code = "invalid_user_id"
    default_message = "Invalid user id."


class NeedsLogin(AuthError):
    code = "needs_login"
    status_code = 401
    default_message = "You must be logged in."


class UnknownUser(AuthError):
    code = "unknown_user"

    def __init__(self, username: str) -> None:
        super().__init__(f"Invalid username: {username}", details={"username": username})


class TempPasswordAlreadyActive(AuthError):
    code = "temp_password_already_active"
    default_message = "A temporary password has already been created. Please try again at a later time."


class InvalidField(AuthError):
    code = "invalid_field"

    def __init__(self, key: str) -> None:
        super().__init__(f'Invalid user field: "{key}"', details={"key": key})
