"""ORM model for application users (identity, profile and RBAC role)."""

from sqlalchemy import Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from signwise.models.base import Base


class User(Base):
    """
    Learner or administrator account.

    role: 'admin' or 'user'. Credentials live on AuthMethod rows, one per way
    the user can sign in.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(320), nullable=False, unique=True, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    avatar_url = Column(String(2048), nullable=True)
    role = Column(String(32), nullable=False, default="user")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    auth_methods = relationship(
        "AuthMethod",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
