"""Authentication/session models."""
import uuid
from datetime import datetime

from sqlalchemy import Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from app.database import Base, from_timestamp, to_timestamp, utcnow


class AuthSession(Base):
    """One login on one device, anchoring a rotating refresh secret."""

    __tablename__ = "auth_sessions"
    __table_args__ = (
        Index("ix_auth_sessions_user_active", "user_id", "revoked_at"),
        Index("ix_auth_sessions_expires_at", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # HMAC-SHA256 hex digest of the current refresh secret
    refresh_token_hash = Column(String(64), unique=True, nullable=False, index=True)
    device_label = Column(String(120))
    user_agent = Column(String(255))
    ip_address = Column(String(45))
    created_at = Column(String(26), nullable=False, default=lambda: to_timestamp(utcnow()))
    expires_at = Column(String(26), nullable=False)
    last_used_at = Column(String(26), nullable=False)
    revoked_at = Column(String(26))

    user = relationship("User", back_populates="sessions")

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and from_timestamp(self.expires_at) > now

    def __repr__(self):
        return f"<AuthSession id={self.id} user={self.user_id} revoked={self.revoked_at is not None}>"
