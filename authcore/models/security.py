"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index
from sqlalchemy.sql import func

from authcore.core.database import Base


class RefreshToken(Base):
    """Refresh token record for rotation/revocation, keyed by token hash."""

    __tablename__ = "refresh_tokens"

    token_hash = Column(String(64), primary_key=True)
    owner_email = Column(String(254), nullable=False, index=True)
    family_id = Column(String(64), nullable=False, index=True)
    replaced_by_hash = Column(String(64), nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_refresh_tokens_family_revoked", "family_id", "revoked"),
    )


class FailedLogin(Base):
    """Failed login counter per identity."""

    __tablename__ = "failed_logins"

    id = Column(Integer, primary_key=True)
    identity = Column(String(254), unique=True, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
