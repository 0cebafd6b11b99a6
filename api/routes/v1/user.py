"""
api/routes/v1/user.py -- Session login, logout and user endpoints.

Routes:
  POST /api/v1/user/login            -- plain login (credentials only); binds session
  POST /api/v1/user/login/2fa        -- 2FA-aware login; binds session
  POST /api/v1/user/logout           -- unbinds session; 400 if already logged out
  GET  /api/v1/user                  -- current user (requires login)
  POST /api/v1/user/field-exists     -- is a username/email taken (allow-listed keys)
  POST /api/v1/user/temp-password    -- issue recovery password (recovery_router)

Both login variants are always mounted. Clients of accounts that may have 2FA
enabled must call /user/login/2fa; /user/login never consults the 2FA gate.

recovery_router is separate because its response contains a plaintext
credential. api.main.create_app() mounts it only when
Settings.expose_temp_password_route is true.

Errors: routes raise AuthError subclasses; the handler in api/main.py renders
them. [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    FieldExistsRequest,
    FieldExistsResponse,
    LoginRequest,
    TempPasswordRequest,
    TempPasswordResponse,
    TwoFactorLoginRequest,
    UserResponse,
)
from auth.dependencies import get_auth, get_current_user, get_session, remember_session
from auth.models import SanitizedUser, Session
from auth.service import AuthService

router = APIRouter()
recovery_router = APIRouter()


@router.post("/user/login", response_model=UserResponse)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
    auth: AuthService = Depends(get_auth),
) -> UserResponse:
    """Authenticate with username and password (or temp password)."""
    user = auth.login(session, body.username, body.password)
    remember_session(request, session)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return UserResponse.from_sanitized(user)


@router.post("/user/login/2fa", response_model=UserResponse)
def login_2fa(
    body: TwoFactorLoginRequest,
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
    auth: AuthService = Depends(get_auth),
) -> UserResponse:
    """Authenticate, then require a valid TOTP code for 2FA-enabled accounts."""
    user = auth.login_2fa(session, body.username, body.password, body.two_factor)
    remember_session(request, session)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return UserResponse.from_sanitized(user)


@router.post("/user/logout")
def logout(session: Session = Depends(get_session), auth: AuthService = Depends(get_auth)) -> dict:
    auth.logout(session)
    return {}


@router.get("/user", response_model=UserResponse)
def current_user(user: SanitizedUser = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_sanitized(user)


@router.post("/user/field-exists", response_model=FieldExistsResponse)
def field_exists(body: FieldExistsRequest, auth: AuthService = Depends(get_auth)) -> FieldExistsResponse:
    """Report whether a user with key == value exists (e.g. username taken)."""
    return FieldExistsResponse(exists=auth.field_exists(body.key, body.value))


@recovery_router.post("/user/temp-password", response_model=TempPasswordResponse, status_code=201)
def create_temp_password(body: TempPasswordRequest, auth: AuthService = Depends(get_auth)) -> TempPasswordResponse:
    """Issue the user's one outstanding temp password. Plaintext is returned ONCE."""
    issued = auth.create_temp_password(body.username)
    return TempPasswordResponse(
        temp_password=issued.temp_password,
        user=UserResponse.from_sanitized(auth.view.sanitize(issued.user)),
    )
