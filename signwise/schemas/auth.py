"""Request/response schemas for auth and user endpoints (camelCase on the wire)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from signwise.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
)


class CamelModel(BaseModel):
    """Accepts and emits camelCase field names; snake_case is accepted too."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _check_email(v: str) -> str:
    v = v.strip().lower()
    local, sep, domain = v.partition("@")
    if not sep or not local or "." not in domain:
        raise ValueError("Please provide a valid email address")
    return v


class RegisterRequest(CamelModel):
    """New local account."""

    username: str = Field(..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if len(v) < USERNAME_MIN_LEN:
            raise ValueError("Invalid username length.")
        return v


class LoginRequest(CamelModel):
    """Credentials for login. Password length is not checked here so every wrong attempt counts."""

    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1, description="Refresh token from login/register/refresh")


class UserOut(CamelModel):
    """Public user profile (no credentials)."""

    id: int
    username: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None
    role: str
    created_at: datetime | None = None


class AuthResponse(CamelModel):
    """Tokens returned after register, login and refresh."""

    access_token: str = Field(..., description="JWT access token (15 minutes)")
    refresh_token: str = Field(..., description="Single-use refresh token (7 days)")
    token_type: str = Field(default="bearer", description="Token type")
    user: UserOut


class LogoutResponse(CamelModel):
    message: str = "Logout successful"
    revoked: int = 0


class CurrentUser(CamelModel):
    """Authenticated identity taken from access-token claims."""

    id: int
    username: str
    role: str
    auth_method_id: int
    auth_type: str


class UsersListResponse(CamelModel):
    """Response for GET /users (admin only)."""

    users: list[UserOut]


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class DeleteAccountRequest(CamelModel):
    """Password confirmation for DELETE /auth/me."""

    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)


class MessageResponse(CamelModel):
    message: str
