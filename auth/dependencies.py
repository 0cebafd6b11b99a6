"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

The signed session cookie (Starlette SessionMiddleware, keyed by SECRET_KEY)
carries one value: the opaque session id under "sid". Everything else --
expiry and the bound user -- lives server-side in the sessions table.

get_session() resolves that id to a Session, starting a fresh LOGGED_OUT one
when the cookie is absent, tampered with, or points at an expired row.
require_login() and get_current_user() build on it for protected routes.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import SanitizedUser, Session
from auth.service import AuthService

_SESSION_KEY = "sid"


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_session(request: Request, auth: AuthService = Depends(get_auth)) -> Session:
    """Return the caller's Session, creating an unsaved one if needed.

    A new session id is written into the cookie immediately; the row itself
    is only persisted when the session is attached to a user.
    """
    session_id = request.session.get(_SESSION_KEY)
    session = auth.sessions.load(session_id) if session_id else None
    if session is None:
        session = auth.sessions.new()
        remember_session(request, session)
    return session


def remember_session(request: Request, session: Session) -> None:
    """Write the session id into the signed cookie. Login issues a new id."""
    request.session[_SESSION_KEY] = session.id


def require_login(session: Session = Depends(get_session), auth: AuthService = Depends(get_auth)) -> int:
    """Access-control precondition for other routes. Raises NeedsLogin.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user_id: int = Depends(require_login)): ...
    """
    return auth.require_logged_in(session)


def get_current_user(
    request: Request,
    session: Session = Depends(get_session),
    auth: AuthService = Depends(get_auth),
) -> SanitizedUser:
    """Resolve the session's user once per request and cache it on request.state.

    Raises NeedsLogin when logged out and InvalidUserId for a stale session.
    """
    cached = getattr(request.state, "user", None)
    if cached is not None:
        return cached
    user = auth.current_user(session)
    request.state.user = user
    return user
