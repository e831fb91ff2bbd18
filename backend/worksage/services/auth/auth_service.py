"""Password and opaque-token hashing."""

import hashlib
import logging

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt only reads the first 72 bytes; newer releases raise instead of truncating
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class AuthService:
    """One-way hashing primitives shared by the trust core."""

    # Pre-computed bcrypt hash for timing-consistent password verification
    # Used when user doesn't exist to prevent email enumeration via timing attacks
    _DUMMY_HASH = "$2b$12$LQv3c1yqBWVHxkd0LHAkCOYz6TtxMQJqhN8/X4.VTtYA9dWQ6E3Ky"

    @staticmethod
    def get_dummy_hash() -> str:
        """Get a dummy password hash for timing-consistent verification."""
        return AuthService._DUMMY_HASH

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(_password_bytes(password), salt)
        return hashed.decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str | None) -> bool:
        """Verify a password against its hash. A missing or malformed hash never matches."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))
        except ValueError as e:
            logger.error(f"Password verification error: {e}")
            return False

    @staticmethod
    def hash_token(token: str) -> str:
        """Hash an opaque token using SHA-256 (refresh tokens, challenge tokens, backup codes)."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()
