"""Session revocation and token-version bumps."""
from collections.abc import Callable
from datetime import datetime
import logging

from app.database import utcnow
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class RevocationManager:
    def __init__(self, store: SessionStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def revoke_session(self, session_id: str) -> None:
        """Revoke one session. Revoking an already revoked or unknown session is a no-op."""
        if self.store.revoke_session(session_id, self.clock()):
            logger.info(f"Revoked session {session_id}")

    def revoke_all_sessions(self, user_id: str, except_session_id: str | None = None) -> int:
        """Revoke every session of ``user_id`` except ``except_session_id``."""
        revoked = self.store.revoke_user_sessions(user_id, self.clock(), except_session_id)
        logger.info(
            f"Revoked {revoked} sessions for user {user_id}"
            + (f" (kept {except_session_id})" if except_session_id else "")
        )
        return revoked

    def bump_token_version(self, user_id: str) -> int | None:
        """Invalidate every access token issued to ``user_id`` so far."""
        new_version = self.store.bump_token_version(user_id)
        if new_version is not None:
            logger.info(f"Bumped token version for user {user_id} to {new_version}")
        return new_version
