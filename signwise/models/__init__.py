"""SQLAlchemy ORM models."""

from signwise.models.auth_method import AuthMethod, AuthMethodType
from signwise.models.base import Base
from signwise.models.token import Token
from signwise.models.user import User

__all__ = ["AuthMethod", "AuthMethodType", "Base", "Token", "User"]
