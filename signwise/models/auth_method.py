"""ORM model for the ways a user can authenticate (local password or an OAuth identity)."""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from signwise.models.base import Base


class AuthMethodType(str, enum.Enum):
    """Credential kinds; OAuth providers are named after the provider."""

    LOCAL = "LOCAL"
    GOOGLE = "GOOGLE"


class AuthMethod(Base):
    """
    One credential owned by a user.

    identifier is the lower-cased email for LOCAL and the provider subject id
    for OAuth. credential holds the bcrypt hash (LOCAL only);
    provider_refresh_token holds the provider's opaque refresh token (OAuth only).
    failed_attempts/locked_until are only written by login attempts.
    """

    __tablename__ = "auth_methods"
    __table_args__ = (
        UniqueConstraint("user_id", "type", "identifier", name="uq_auth_methods_user_type_identifier"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(32), nullable=False)
    identifier = Column(String(320), nullable=False)
    credential = Column(String(255), nullable=True)
    provider_refresh_token = Column(Text, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User", back_populates="auth_methods")
    tokens = relationship(
        "Token",
        back_populates="auth_method",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
