"""
Boresha Reviews - Authentication

Bearer JWTs (HS256) identify users of the public endpoints; the `sub`
claim is the user's email. Internal endpoints use a shared service key
instead (see dependencies.require_internal_key).
"""
import os
import secrets
import logging
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

# JWT settings
SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))


class AuthManager:
    """Issues and verifies access tokens."""

    def __init__(self, secret_key: str = SECRET_KEY, algorithm: str = ALGORITHM):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def create_access_token(self, data: dict, expires_delta: timedelta = None) -> str:
        """Create JWT access token."""
        to_encode = data.copy()
        expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[dict]:
        """Verify JWT token. Returns the payload, or None when invalid or expired."""
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"Token verification failed: {e}")
        return None


def internal_key_matches(provided: Optional[str], expected: Optional[str] = None) -> bool:
    """Constant-time comparison against the internal service key."""
    if expected is None:
        expected = os.getenv("INTERNAL_API_KEY", "")
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


auth_manager = AuthManager()
