"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot-password.

    No email format validation: a malformed address gets the same
    "invalid_email" answer as an unknown one.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(default="", max_length=255)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password/{token}.

    Length rules are enforced by the reset service so the API and the HTML
    form report them with the same messages.
    """

    password: str = Field(default="")
    password_confirm: str = Field(default="")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for a successful POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    email_verified: bool
    username: Optional[str] = None
    avatar_url: Optional[str] = None


class MessageResponse(BaseModel):
    """Plain confirmation message."""

    model_config = ConfigDict(frozen=True)

    message: str


class ResetPasswordResponse(BaseModel):
    """Response for a successful password reset; the session cookie is set."""

    model_config = ConfigDict(frozen=True)

    redirect: str


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

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
