"""
API request and response models for Keyward REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import SanitizedUser

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/user/login.

    max_length keeps passwords well below bcrypt's 72-byte truncation point
    for typical input and bounds hashing work per request.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class TwoFactorLoginRequest(LoginRequest):
    """Request body for POST /api/v1/user/login/2fa. two_factor is the TOTP code."""

    two_factor: Optional[str] = Field(default=None, max_length=16)


class TempPasswordRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)


class FieldExistsRequest(BaseModel):
    key: str = Field(min_length=1, max_length=64)
    value: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Sanitized user as returned across the trust boundary."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: Optional[str] = None
    two_factor_enabled: bool
    created_at: Optional[str] = None

    @classmethod
    def from_sanitized(cls, user: SanitizedUser) -> "UserResponse":
        """Build a UserResponse from the domain SanitizedUser.

        Only SanitizedUser is accepted, so no route can serialize a raw User.
        """
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            two_factor_enabled=user.two_factor_enabled,
            created_at=user.created_at,
        )


class TempPasswordResponse(BaseModel):
    """Response for POST /api/v1/user/temp-password. temp_password is shown once."""

    model_config = ConfigDict(frozen=True)

    temp_password: str
    user: UserResponse


class FieldExistsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    exists: bool


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
