"""Resolve a bearer credential to a caller identity."""
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.config import Settings
from app.database import utcnow
from app.services.errors import AccessTokenExpired, InvalidAccessToken, StaleTokenVersion
from app.services.session_store import SessionStore
from app.services.tokens import decode_access_token


@dataclass(frozen=True)
class Identity:
    user_id: str
    display_name: str
    role: str
    session_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass(frozen=True)
class Anonymous:
    reason: str = "missing"

    @property
    def is_authenticated(self) -> bool:
        return False


def parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


class AuthGate:
    """Never rejects a request itself: unauthenticated callers come back as ``Anonymous``.

    Storage errors are not authentication failures and propagate unchanged.
    """

    def __init__(
        self,
        store: SessionStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings
        self.clock = clock

    def authenticate(self, authorization: str | None) -> Identity | Anonymous:
        token = parse_bearer(authorization)
        if token is None:
            return Anonymous("missing" if not authorization else "malformed")

        try:
            claims = decode_access_token(token, self.settings, self.clock())
        except AccessTokenExpired:
            return Anonymous("expired")
        except InvalidAccessToken:
            return Anonymous("malformed")

        # Single read: the live user row carries token_version and role
        user = self.store.get_user(claims.user_id)
        if user is None:
            return Anonymous("unknown_user")
        if (user.token_version or 0) != claims.token_version:
            return Anonymous(StaleTokenVersion.code)

        return Identity(
            user_id=user.id,
            display_name=user.name,
            role=user.role,
            session_id=claims.session_id,
        )
