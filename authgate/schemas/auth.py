"""Pydantic schemas for authentication requests and responses."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    """Account registration payload."""

    email: EmailStr = Field(..., description="Account email; stored lower-cased.")
    password: str = Field(..., min_length=8, max_length=1024, description="At least 8 characters.")
    name: str = Field(..., min_length=2, max_length=200, description="Display name.")


class LoginRequest(BaseModel):
    """Credentials for password login."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=1024)


class ForgotPasswordRequest(BaseModel):
    """Request a password reset link."""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Consume a reset token and set a new password."""

    token: str = Field(..., min_length=3, description="Composed token '<user-id>.<secret>' from the reset link.")
    password: str = Field(..., min_length=8, max_length=1024)


class UserOut(BaseModel):
    """Public view of a user. Never carries secrets or hashes."""

    id: str
    email: str
    name: str
    email_verified: bool


class TenantOut(BaseModel):
    """Tenant the user belongs to, with the user's role in it."""

    id: str
    slug: str
    name: str
    plan: str
    role: str


class RegisterResponse(BaseModel):
    user: UserOut
    message: str


class LoginResponse(BaseModel):
    """Login result; the session secret travels only in the cookie."""

    user: UserOut
    tenant: TenantOut | None = None


class MeResponse(BaseModel):
    user: UserOut
    tenants: list[TenantOut] = Field(default_factory=list)
    current_tenant_id: str | None = Field(
        default=None,
        description="Tenant resolved from X-Tenant-Slug for this request, if any.",
    )
    role: str | None = None
    plan: str | None = None


class MessageResponse(BaseModel):
    message: str
