"""User model."""
import uuid

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship, validates

from app.database import Base, to_timestamp, utcnow

USER_ROLES = ("customer", "vendor", "admin", "super_admin")
STAFF_ROLES = ("admin", "super_admin")


class User(Base):
    """Marketplace account (customer, vendor or staff)."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="customer")
    # Only ever incremented; bumping it invalidates every outstanding access token
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(String(26), default=lambda: to_timestamp(utcnow()))

    # Relationships
    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")

    @validates("role")
    def validate_role(self, key, role):
        if role not in USER_ROLES:
            raise ValueError(f"Unknown role: {role}")
        return role
