"""Authentication API endpoints."""
from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError

from app.api.deps import (
    get_clock,
    get_identity,
    get_refresh_coordinator,
    get_revocation_manager,
    get_session_store,
    get_token_issuer,
    require_identity,
    require_role,
)
from app.config import Settings, get_settings
from app.database import to_timestamp
from app.models.user import STAFF_ROLES, User
from app.schemas.auth import (
    AuthResponse,
    MessageResponse,
    PasswordChange,
    PruneResponse,
    RevocationResponse,
    SessionResponse,
    Token,
    TokenRefresh,
    UserLogin,
    UserRegister,
    UserResponse,
)
from app.services.auth_gate import Anonymous, Identity
from app.services.credentials import get_password_hash, verify_password
from app.services.refresh import RefreshCoordinator
from app.services.revocation import RevocationManager
from app.services.session_store import SessionStore
from app.services.tokens import IssuedTokens, TokenIssuer

router = APIRouter(prefix="/auth", tags=["auth"])


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def describe_user_agent(user_agent: str | None) -> str:
    """Short device label such as 'Chrome on Windows' derived from a User-Agent header."""
    if not user_agent:
        return "Unknown Device"

    for marker in ("iPhone", "iPad", "Android", "Windows", "Mac", "Linux"):
        if marker in user_agent:
            device = marker
            break
    else:
        device = "Unknown"

    # Edge and most Android browsers also advertise Chrome, and Chrome also advertises Safari
    if "Chrome" in user_agent and "Edg" not in user_agent:
        browser = "Chrome"
    elif "Firefox" in user_agent:
        browser = "Firefox"
    elif "Safari" in user_agent and "Chrome" not in user_agent:
        browser = "Safari"
    elif "Edg" in user_agent:
        browser = "Edge"
    else:
        browser = "Browser"

    return f"{browser} on {device}"


def _auth_response(user: User, tokens: IssuedTokens) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.model_validate(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        refresh_expires_at=tokens.refresh_expires_at,
        session_id=tokens.session_id,
    )


def _start_session(
    user: User,
    request: Request,
    issuer: TokenIssuer,
    device_label: str | None,
) -> AuthResponse:
    user_agent = request.headers.get("user-agent")
    tokens = issuer.issue(
        user,
        device_label=device_label or describe_user_agent(user_agent),
        user_agent=user_agent[:255] if user_agent else None,
        ip_address=get_request_ip(request),
    )
    return _auth_response(user, tokens)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    user_data: UserRegister,
    request: Request,
    store: SessionStore = Depends(get_session_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Register a new user and log them in."""
    email = user_data.email.lower()
    if store.get_user_by_email(email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    try:
        user = store.create_user(
            name=user_data.name.strip(),
            email=email,
            password_hash=get_password_hash(user_data.password),
            role=user_data.role,
        )
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    return _start_session(user, request, issuer, user_data.device_label)


@router.post("/login", response_model=AuthResponse)
def login(
    user_data: UserLogin,
    request: Request,
    store: SessionStore = Depends(get_session_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Login and get a token pair for a new session."""
    user = store.get_user_by_email(user_data.email.lower())
    if not user or not verify_password(user_data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _start_session(user, request, issuer, user_data.device_label)


@router.post("/refresh", response_model=Token)
def refresh_tokens(
    body: TokenRefresh,
    coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
):
    """Rotate a refresh token. Failures are 401s carrying a machine-readable code."""
    tokens = coordinator.refresh(body.refresh_token)
    return Token(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        refresh_expires_at=tokens.refresh_expires_at,
        session_id=tokens.session_id,
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    body: TokenRefresh | None = None,
    identity: Identity | Anonymous = Depends(get_identity),
    store: SessionStore = Depends(get_session_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
    revocation: RevocationManager = Depends(get_revocation_manager),
):
    """Revoke the caller's current session.

    The session is taken from the access token, or from the refresh token in
    the body when the access token has already expired.
    """
    session_id = identity.session_id if isinstance(identity, Identity) else None
    if session_id is None and body is not None:
        session = store.find_session_by_refresh_hash(issuer.hash_refresh_token(body.refresh_token))
        session_id = session.id if session else None

    if session_id:
        revocation.revoke_session(session_id)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=RevocationResponse)
def logout_all(
    identity: Identity = Depends(require_identity),
    store: SessionStore = Depends(get_session_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
    revocation: RevocationManager = Depends(get_revocation_manager),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Log out every other device and invalidate all outstanding access tokens."""
    revoked = revocation.revoke_all_sessions(identity.user_id, except_session_id=identity.session_id)
    revocation.bump_token_version(identity.user_id)
    return RevocationResponse(
        message="Logged out from all other devices",
        revoked=revoked,
        access_token=_reissue_access_token(store, issuer, identity, clock()),
    )


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(
    identity: Identity = Depends(require_identity),
    store: SessionStore = Depends(get_session_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """List the caller's active sessions."""
    sessions = store.list_active_sessions(identity.user_id, clock())
    return [
        SessionResponse(
            id=session.id,
            device_label=session.device_label,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            last_used_at=session.last_used_at,
            created_at=session.created_at,
            is_current=session.id == identity.session_id,
        )
        for session in sessions
    ]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
def revoke_session(
    session_id: str,
    identity: Identity = Depends(require_identity),
    store: SessionStore = Depends(get_session_store),
    revocation: RevocationManager = Depends(get_revocation_manager),
):
    """Revoke one of the caller's sessions."""
    session = store.get_session(session_id)
    if not session or session.user_id != identity.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    revocation.revoke_session(session_id)
    return MessageResponse(message="Session revoked successfully")


@router.post("/sessions/prune", response_model=PruneResponse)
def prune_sessions(
    identity: Identity = Depends(require_role(*STAFF_ROLES)),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Delete sessions that ended longer ago than the retention window."""
    cutoff = clock() - timedelta(days=settings.session_retention_days)
    deleted = store.prune_sessions(cutoff)
    return PruneResponse(deleted=deleted, cutoff=to_timestamp(cutoff))


@router.get("/me", response_model=UserResponse)
def get_me(
    identity: Identity = Depends(require_identity),
    store: SessionStore = Depends(get_session_store),
):
    """Get current user info."""
    user = store.get_user(identity.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


@router.post("/change-password", response_model=RevocationResponse)
def change_password(
    body: PasswordChange,
    identity: Identity = Depends(require_identity),
    store: SessionStore = Depends(get_session_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
    revocation: RevocationManager = Depends(get_revocation_manager),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Change password, then cut off every other session and every old access token."""
    user = store.get_user(identity.user_id)
    if not user or not verify_password(body.current_password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    store.update_password_hash(user.id, get_password_hash(body.new_password))
    revoked = revocation.revoke_all_sessions(user.id, except_session_id=identity.session_id)
    revocation.bump_token_version(user.id)
    return RevocationResponse(
        message="Password changed",
        revoked=revoked,
        access_token=_reissue_access_token(store, issuer, identity, clock()),
    )


def _reissue_access_token(
    store: SessionStore,
    issuer: TokenIssuer,
    identity: Identity,
    now: datetime,
) -> str | None:
    """Fresh access token for the caller's surviving session, stamped with the new version.

    Nothing is issued when that session has been revoked or has expired.
    """
    if not identity.session_id:
        return None
    session = store.get_session(identity.session_id)
    if session is None or session.user_id != identity.user_id or not session.is_active(now):
        return None
    user = store.get_user(identity.user_id)
    if not user:
        return None
    return issuer.access_token(user, identity.session_id, now)
