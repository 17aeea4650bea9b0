"""Authentication utilities for the Taakl backend.

Passwords are hashed with bcrypt. Session tokens are opaque random hex
strings; only their SHA-256 digest is stored, so a database leak does not
hand out usable tokens.
"""

import hashlib
import secrets
from typing import Annotated

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .database import Database, get_user_for_token

# Bearer token scheme; missing credentials are reported by get_current_user
security = HTTPBearer(auto_error=False)

TOKEN_BYTES = 32


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False


def generate_token() -> str:
    """Generate a session token: 64 hex chars."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """Hash a token for storage (SHA-256 hex digest)."""
    return hashlib.sha256(token.encode()).hexdigest()


class AuthContext:
    """The authenticated user of a request."""

    def __init__(
        self,
        user_id: int,
        user_uuid: str,
        username: str,
        email: str | None = None,
        token_hash: str | None = None,
    ):
        self.user_id = user_id
        self.user_uuid = user_uuid
        self.username = username
        self.email = email
        self.token_hash = token_hash

    def to_user_info(self) -> dict:
        return {
            "id": self.user_id,
            "uuid": self.user_uuid,
            "username": self.username,
            "email": self.email,
        }


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Database,
) -> AuthContext:
    """Resolve the bearer token of a request to its user."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")

    token_hash = hash_token(credentials.credentials)
    user = await get_user_for_token(db, token_hash)
    if user is None:
        raise _unauthorized("Invalid or expired token")

    return AuthContext(
        user_id=user["id"],
        user_uuid=user["uuid"],
        username=user["username"],
        email=user["email"],
        token_hash=token_hash,
    )


# Type alias for dependency injection
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
