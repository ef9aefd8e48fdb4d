"""Pydantic request/response schemas."""

from signwise.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    CurrentUser,
    DeleteAccountRequest,
    LoginRequest,
    LogoutResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    UserOut,
    UsersListResponse,
)
from signwise.schemas.health import HealthResponse

__all__ = [
    "AuthResponse",
    "ChangePasswordRequest",
    "CurrentUser",
    "DeleteAccountRequest",
    "HealthResponse",
    "LoginRequest",
    "LogoutResponse",
    "MessageResponse",
    "RefreshRequest",
    "RegisterRequest",
    "UserOut",
    "UsersListResponse",
]
