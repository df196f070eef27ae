"""
API request and response models for authkit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation, and from auth/forms.py, which own the
validation rules.

Request models are deliberately loose (plain strings, empty defaults): the
real constraints live in auth/forms.py so the JSON API and the browser forms
reject the same inputs with the same field messages. A strict model here
would make FastAPI answer first with its own, differently-shaped 422.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    name: str = ""
    email: str = ""
    password: str = ""


class SigninRequest(BaseModel):
    """Request body for POST /api/v1/auth/signin."""

    email: str = ""
    password: str = ""


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot-password."""

    email: str = ""


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password.

    Accepts confirm_password or the camelCase confirmPassword.
    """

    model_config = ConfigDict(populate_by_name=True)

    token: str = ""
    password: str = ""
    confirm_password: str = Field(default="", alias="confirmPassword")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash or provider subject."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    email_verified: bool
    provider: str
    created_at: str


class SigninResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    redirect_to: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields carries per-field messages for form errors; "_form" is the key for
    errors that do not belong to a single field.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, list[str]]] = None


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
