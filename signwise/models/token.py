"""ORM model for issued refresh tokens (rotation and revocation ledger)."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, func
from sqlalchemy.orm import relationship

from signwise.models.base import Base


class Token(Base):
    """
    Persisted refresh token. revoked only ever goes False -> True; rows are
    physically deleted by the expiry reaper.
    """

    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    auth_method_id = Column(
        Integer,
        ForeignKey("auth_methods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token = Column(Text, nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    auth_method = relationship("AuthMethod", back_populates="tokens")
