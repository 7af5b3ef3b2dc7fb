"""SQLAlchemy models package."""
from app.models.user import User
from app.models.auth import AuthSession

__all__ = [
    "User",
    "AuthSession",
]
