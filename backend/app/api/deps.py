"""Shared FastAPI dependencies."""
from collections.abc import Callable
from datetime import datetime

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db, utcnow
from app.services.auth_gate import Anonymous, AuthGate, Identity
from app.services.refresh import RefreshCoordinator
from app.services.revocation import RevocationManager
from app.services.session_store import SessionStore
from app.services.tokens import TokenIssuer

__all__ = [
    "get_db",
    "get_clock",
    "get_session_store",
    "get_token_issuer",
    "get_refresh_coordinator",
    "get_revocation_manager",
    "get_auth_gate",
    "get_identity",
    "require_identity",
    "require_role",
]


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_session_store(db: Session = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_token_issuer(
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TokenIssuer:
    return TokenIssuer(store, settings, clock)


def get_refresh_coordinator(
    store: SessionStore = Depends(get_session_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RefreshCoordinator:
    return RefreshCoordinator(store, issuer, settings, clock)


def get_revocation_manager(
    store: SessionStore = Depends(get_session_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RevocationManager:
    return RevocationManager(store, clock)


def get_auth_gate(
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuthGate:
    return AuthGate(store, settings, clock)


def get_identity(
    request: Request,
    gate: AuthGate = Depends(get_auth_gate),
) -> Identity | Anonymous:
    """Resolve the caller; anonymous callers pass through."""
    identity = gate.authenticate(request.headers.get("authorization"))
    request.state.identity = identity
    return identity


def require_identity(identity: Identity | Anonymous = Depends(get_identity)) -> Identity:
    """Reject anonymous callers with a 401 the client can answer with a refresh."""
    if not isinstance(identity, Identity):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_role(*roles: str):
    """Dependency factory restricting a route to the given roles."""

    def checker(identity: Identity = Depends(require_identity)) -> Identity:
        if identity.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return identity

    return checker
