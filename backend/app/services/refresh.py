"""Refresh-token rotation."""
from collections.abc import Callable
from datetime import datetime
import logging

from app.config import Settings
from app.database import from_timestamp, utcnow
from app.services.credentials import generate_refresh_secret
from app.services.errors import SessionExpired, SessionNotFound, SessionRevoked
from app.services.session_store import SessionStore
from app.services.tokens import IssuedTokens, TokenIssuer

logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """Exchanges a refresh token for a new pair, invalidating the presented secret.

    The swap is one conditional update keyed on the presented hash, so two
    concurrent exchanges of the same secret can never both succeed.
    """

    def __init__(
        self,
        store: SessionStore,
        issuer: TokenIssuer,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.issuer = issuer
        self.settings = settings
        self.clock = clock

    def refresh(self, presented_refresh_token: str) -> IssuedTokens:
        if not presented_refresh_token:
            raise SessionNotFound()

        now = self.clock()
        current_hash = self.issuer.hash_refresh_token(presented_refresh_token)

        session = self.store.find_session_by_refresh_hash(current_hash)
        if session is None:
            logger.info("Refresh rejected: no session for presented token")
            raise SessionNotFound()

        session_id = session.id
        if session.revoked_at is not None:
            logger.info(f"Refresh rejected: session {session_id} is revoked")
            raise SessionRevoked()

        if from_timestamp(session.expires_at) <= now:
            self.store.revoke_session(session_id, now)
            logger.info(f"Refresh rejected: session {session_id} expired, revoked it")
            raise SessionExpired()

        user = self.store.get_user(session.user_id)
        if user is None:
            self.store.revoke_session(session_id, now)
            raise SessionNotFound()

        new_refresh_token = generate_refresh_secret()
        refresh_expires_at = now + self.issuer.refresh_ttl
        rotated = self.store.rotate_refresh_hash(
            session_id,
            current_hash=current_hash,
            new_hash=self.issuer.hash_refresh_token(new_refresh_token),
            expires_at=refresh_expires_at,
            now=now,
        )
        if not rotated:
            # Lost a race with another rotation or a revocation of this session
            latest = self.store.get_session(session_id)
            if latest is not None and latest.revoked_at is not None:
                logger.info(f"Refresh rejected: session {session_id} revoked concurrently")
                raise SessionRevoked()
            logger.info(f"Refresh rejected: session {session_id} already rotated")
            raise SessionNotFound()

        logger.info(f"Rotated refresh token for session {session_id}")
        return self.issuer.token_pair(user, session_id, new_refresh_token, refresh_expires_at, now)
