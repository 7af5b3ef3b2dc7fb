"""Access/refresh token issuance."""
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from jose import JWTError, jwt

from app.config import Settings
from app.database import utcnow
from app.models.user import User
from app.services.credentials import generate_refresh_secret, hash_refresh_secret
from app.services.errors import AccessTokenExpired, InvalidAccessToken
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime
    session_id: str


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    session_id: str | None
    token_version: int
    role: str | None
    expires_at: datetime


def create_access_token(
    user: User,
    session_id: str,
    settings: Settings,
    now: datetime,
) -> str:
    """Create a signed access token bound to the user's current token version."""
    to_encode = {
        "sub": user.id,
        "sid": session_id,
        "ver": user.token_version or 0,
        "role": user.role,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, settings: Settings, now: datetime) -> AccessClaims:
    """Verify signature and structure of an access token, without any store lookup.

    Expiry is checked against ``now`` so the whole service shares one clock.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"verify_exp": False},
        )
    except JWTError as exc:
        raise InvalidAccessToken("Invalid access token") from exc

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise InvalidAccessToken("Invalid token type")

    user_id = payload.get("sub")
    exp = payload.get("exp")
    version = payload.get("ver")
    if not user_id or not isinstance(exp, int) or not isinstance(version, int):
        raise InvalidAccessToken("Invalid access token")

    expires_at = _from_epoch(exp)
    if expires_at <= now:
        raise AccessTokenExpired("Access token expired")

    return AccessClaims(
        user_id=user_id,
        session_id=payload.get("sid"),
        token_version=version,
        role=payload.get("role"),
        expires_at=expires_at,
    )


def _from_epoch(value: int) -> datetime:
    return datetime(1970, 1, 1) + timedelta(seconds=value)


class TokenIssuer:
    """Mints access/refresh pairs and persists the refresh hash as a new session."""

    def __init__(
        self,
        store: SessionStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings
        self.clock = clock

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_expire_days)

    def hash_refresh_token(self, refresh_token: str) -> str:
        return hash_refresh_secret(refresh_token, self.settings.secret_key)

    def issue(
        self,
        user: User,
        device_label: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> IssuedTokens:
        """Start a new session for ``user`` and return its first token pair."""
        now = self.clock()
        refresh_token = generate_refresh_secret()
        refresh_expires_at = now + self.refresh_ttl

        session = self.store.create_session(
            user_id=user.id,
            refresh_token_hash=self.hash_refresh_token(refresh_token),
            expires_at=refresh_expires_at,
            now=now,
            device_label=device_label,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        logger.info(f"Issued session {session.id} for user {user.id}")

        return self.token_pair(user, session.id, refresh_token, refresh_expires_at, now)

    def token_pair(
        self,
        user: User,
        session_id: str,
        refresh_token: str,
        refresh_expires_at: datetime,
        now: datetime,
    ) -> IssuedTokens:
        return IssuedTokens(
            access_token=self.access_token(user, session_id, now),
            refresh_token=refresh_token,
            expires_in=self.settings.access_token_ttl_seconds,
            refresh_expires_at=refresh_expires_at,
            session_id=session_id,
        )

    def access_token(self, user: User, session_id: str, now: datetime | None = None) -> str:
        return create_access_token(user, session_id, self.settings, now or self.clock())
