"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import relationship

from tokenkeeper.core import clock
from tokenkeeper.core.database import Base


class RefreshToken(Base):
    """Refresh token record for rotation/revocation."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token_jti = Column(String(128), unique=True, nullable=False, index=True)
    token_hash = Column(String(64), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    device_id = Column(String(128), nullable=False)
    device_name = Column(String(255), nullable=True)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    login_method = Column(String(20), nullable=False, default="email")
    issued_at = Column(DateTime, nullable=False, default=lambda: clock.utcnow())
    expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    replaced_by_jti = Column(String(128), nullable=True)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_user_device", "user_id", "device_id"),
        Index("idx_refresh_tokens_expires_at", "expires_at"),
    )

    @property
    def is_consumed(self) -> bool:
        """Revoked or already rotated away"""
        return bool(self.is_revoked) or self.replaced_by_jti is not None

    def __repr__(self):
        return f"<RefreshToken(id={self.id}, user_id={self.user_id}, device_id='{self.device_id}')>"


class LoginAttempt(Base):
    """Append-only authentication attempt log."""

    __tablename__ = "login_attempts"

    id = Column(Integer, primary_key=True, index=True)
    identifier = Column(String(255), nullable=False)
    ip_address = Column(String(64), nullable=False)
    success = Column(Boolean, nullable=False)
    reason = Column(String(64), nullable=True)
    device_id = Column(String(128), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: clock.utcnow())

    __table_args__ = (
        Index("idx_login_attempts_identifier_created", "identifier", "created_at"),
        Index("idx_login_attempts_ip_created", "ip_address", "created_at"),
    )
