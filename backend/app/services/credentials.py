"""One-way hashing of passwords and refresh secrets."""
import hashlib
import hmac
import secrets

import bcrypt

REFRESH_SECRET_BYTES = 32


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


def generate_refresh_secret() -> str:
    """Opaque URL-safe refresh secret (256 bits of entropy)."""
    return secrets.token_urlsafe(REFRESH_SECRET_BYTES)


def hash_refresh_secret(secret: str, key: str) -> str:
    """Keyed hash of a refresh secret; only this digest is ever persisted."""
    return hmac.new(
        key=key.encode("utf-8"),
        msg=secret.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()
