"""Durable store for users' auth sessions and token versions.

Every mutating method is its own transaction: it either commits fully or is
rolled back before the error leaves the store. Connection, lock and timeout
failures from the database surface as ``StorageUnavailable`` so callers can
retry instead of treating them as authentication failures.
"""
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
import logging

from sqlalchemy import or_
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from app.database import to_timestamp
from app.models.auth import AuthSession
from app.models.user import User
from app.services.errors import StorageUnavailable

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class SessionStore:
    """Session table and token-version counter over one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except TRANSIENT_ERRORS as exc:
            self.db.rollback()
            logger.exception(f"Storage failure during {operation}")
            raise StorageUnavailable(operation) from exc
        except Exception:
            self.db.rollback()
            raise

    # Users

    def get_user(self, user_id: str) -> User | None:
        with self._guard("get_user"):
            return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, email: str) -> User | None:
        with self._guard("get_user_by_email"):
            return self.db.query(User).filter(User.email == email).first()

    def create_user(self, name: str, email: str, password_hash: str, role: str = "customer") -> User:
        with self._guard("create_user"):
            user = User(name=name, email=email, password_hash=password_hash, role=role)
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
            return user

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        with self._guard("update_password_hash"):
            self.db.query(User).filter(User.id == user_id).update(
                {"password_hash": password_hash},
                synchronize_session=False,
            )
            self.db.commit()

    def bump_token_version(self, user_id: str) -> int | None:
        """Atomically increment ``token_version``; returns the new value, None if no such user."""
        with self._guard("bump_token_version"):
            updated = self.db.query(User).filter(User.id == user_id).update(
                {User.token_version: User.token_version + 1},
                synchronize_session=False,
            )
            if not updated:
                self.db.rollback()
                return None
            # Read inside the same transaction, while the row is still write-locked
            new_version = self.db.query(User.token_version).filter(User.id == user_id).scalar()
            self.db.commit()
            return new_version

    # Sessions

    def create_session(
        self,
        user_id: str,
        refresh_token_hash: str,
        expires_at: datetime,
        now: datetime,
        device_label: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthSession:
        with self._guard("create_session"):
            session = AuthSession(
                user_id=user_id,
                refresh_token_hash=refresh_token_hash,
                device_label=device_label,
                user_agent=user_agent,
                ip_address=ip_address,
                created_at=to_timestamp(now),
                expires_at=to_timestamp(expires_at),
                last_used_at=to_timestamp(now),
            )
            self.db.add(session)
            self.db.commit()
            self.db.refresh(session)
            return session

    def get_session(self, session_id: str) -> AuthSession | None:
        with self._guard("get_session"):
            return self.db.query(AuthSession).filter(AuthSession.id == session_id).first()

    def find_session_by_refresh_hash(self, refresh_token_hash: str) -> AuthSession | None:
        with self._guard("find_session_by_refresh_hash"):
            return self.db.query(AuthSession).filter(
                AuthSession.refresh_token_hash == refresh_token_hash,
            ).first()

    def rotate_refresh_hash(
        self,
        session_id: str,
        current_hash: str,
        new_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Swap the refresh hash only if ``current_hash`` is still the live one.

        Returns False when another rotation or a revocation won the race.
        """
        with self._guard("rotate_refresh_hash"):
            updated = self.db.query(AuthSession).filter(
                AuthSession.id == session_id,
                AuthSession.refresh_token_hash == current_hash,
                AuthSession.revoked_at.is_(None),
            ).update(
                {
                    "refresh_token_hash": new_hash,
                    "expires_at": to_timestamp(expires_at),
                    "last_used_at": to_timestamp(now),
                },
                synchronize_session=False,
            )
            self.db.commit()
            return updated == 1

    def revoke_session(self, session_id: str, now: datetime) -> bool:
        """Mark one session revoked. Returns False if it was already revoked or missing."""
        with self._guard("revoke_session"):
            updated = self.db.query(AuthSession).filter(
                AuthSession.id == session_id,
                AuthSession.revoked_at.is_(None),
            ).update(
                {"revoked_at": to_timestamp(now)},
                synchronize_session=False,
            )
            self.db.commit()
            return updated == 1

    def revoke_user_sessions(
        self,
        user_id: str,
        now: datetime,
        except_session_id: str | None = None,
    ) -> int:
        """Revoke every not-yet-revoked session of a user in one statement."""
        with self._guard("revoke_user_sessions"):
            query = self.db.query(AuthSession).filter(
                AuthSession.user_id == user_id,
                AuthSession.revoked_at.is_(None),
            )
            if except_session_id:
                query = query.filter(AuthSession.id != except_session_id)
            updated = query.update(
                {"revoked_at": to_timestamp(now)},
                synchronize_session=False,
            )
            self.db.commit()
            return updated

    def list_active_sessions(self, user_id: str, now: datetime) -> list[AuthSession]:
        with self._guard("list_active_sessions"):
            return self.db.query(AuthSession).filter(
                AuthSession.user_id == user_id,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > to_timestamp(now),
            ).order_by(AuthSession.last_used_at.desc()).all()

    def prune_sessions(self, cutoff: datetime) -> int:
        """Physically delete sessions that ended before ``cutoff``."""
        cutoff_ts = to_timestamp(cutoff)
        with self._guard("prune_sessions"):
            deleted = self.db.query(AuthSession).filter(
                or_(
                    AuthSession.revoked_at < cutoff_ts,
                    AuthSession.expires_at < cutoff_ts,
                ),
            ).delete(synchronize_session=False)
            self.db.commit()
            return deleted
