"""Typed failures raised by the session and token services."""


class AuthError(Exception):
    """Base class for authentication failures that require re-authentication."""

    code = "auth_error"
    detail = "Authentication failed"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class RefreshError(AuthError):
    """A presented refresh token cannot be exchanged. Always terminal for that pair."""

    code = "refresh_failed"
    detail = "Refresh token rejected"


class SessionNotFound(RefreshError):
    code = "session_not_found"
    detail = "Invalid refresh session"


class SessionExpired(RefreshError):
    code = "session_expired"
    detail = "Refresh session expired"


class SessionRevoked(RefreshError):
    code = "session_revoked"
    detail = "Refresh session revoked"


class StaleTokenVersion(AuthError):
    code = "stale_token_version"
    detail = "Access token has been invalidated"


class StorageUnavailable(Exception):
    """Transient storage failure; the whole operation is safe to retry."""

    code = "storage_unavailable"

    def __init__(self, operation: str):
        super().__init__(f"Storage unavailable during {operation}")
        self.operation = operation


class InvalidAccessToken(Exception):
    """Access token is missing a claim, badly signed or not an access token."""


class AccessTokenExpired(InvalidAccessToken):
    pass
