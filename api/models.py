"""
API request and response models for the library backend REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password complexity is NOT checked here: AccountService owns that rule so the
CLI and the API enforce the same policy and report it the same way.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity, Role

# Deliberately loose -- enough to reject obvious garbage without pulling in
# an email-validation dependency.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegistrationRequest(BaseModel):
    """Request body for POST /api/v1/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(max_length=255)
    confirm_password: str = Field(max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    role: Role = Role.USER


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/authentication."""

    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class LoginWithCodeRequest(LoginRequest):
    """Request body for POST /api/v1/users/auth/2fa/authentication."""

    code: str = Field(max_length=10)


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/users.

    password is required: a profile update always replaces the password hash.
    """

    password: str = Field(min_length=1, max_length=255)
    confirm_password: str = Field(max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class TokenResponse(BaseModel):
    """Response body for both login endpoints."""

    model_config = ConfigDict(frozen=True)

    token: str


class TwoFactorToggleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    two_factor_enabled: bool
    message: str


class ProfileResponse(BaseModel):
    """Public view of an identity. Never includes hashes, secrets or the avatar."""

    model_config = ConfigDict(frozen=True)

    first_name: Optional[str]
    last_name: Optional[str]
    email: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "ProfileResponse":
        return cls(first_name=identity.first_name, last_name=identity.last_name, email=identity.email)


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
