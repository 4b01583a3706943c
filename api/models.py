"""
API request and response models for the PayFlow auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON keys are camelCase (confirmPassword, expiresIn, createdAt) because that
is what the web client sends and reads; Python attributes stay snake_case via
field aliases. populate_by_name lets tests and handlers use either form.

Request models only enforce presence and sane upper bounds. The real rules
(name charset, email syntax, password policy) live in auth/validation.py so
that the service enforces them for every caller, not just HTTP ones.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=255)
    confirm_password: str = Field(alias="confirmPassword", min_length=1, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=255)


class VerifyOtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-otp.

    The password is sent again on purpose: step 2 re-verifies credentials so a
    leaked code alone cannot complete a login.
    """

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=255)
    otp: str = Field(min_length=1, max_length=16)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword", min_length=1, max_length=255)
    new_password: str = Field(alias="newPassword", min_length=1, max_length=255)
    confirm_password: str = Field(alias="confirmPassword", min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public projection of an account. The password hash never appears here."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    name: str
    email: str
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method: the domain -> transport mapping lives with the output model."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class AuthResponse(BaseModel):
    """Response for signup and verify-otp: the user plus a bearer token."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    token: str


class LoginResponse(BaseModel):
    """Response for login step 1.

    otp is None when the configured delivery channel keeps the code out of
    the response.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    otp: Optional[str] = None
    expires_in: str = Field(alias="expiresIn")


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields carries per-field messages for validation failures only.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
