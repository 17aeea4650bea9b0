"""Database access for the Taakl backend.

Routes get the shared SQLiteStorage through the ``Database`` dependency
and call the async helpers below; the sync core itself is reached through
``get_sync_engine``.
"""

from datetime import datetime, timedelta
from typing import Annotated

from fastapi import Depends

from taakl.storage import SQLiteStorage, SyncEngine
from taakl.storage import accounts
from taakl.types import TIMESTAMP_FORMAT

from .config import Settings, get_settings

_storage: SQLiteStorage | None = None


def get_storage(settings: Settings | None = None) -> SQLiteStorage:
    """Get the cached storage handle, opening the database on first use."""
    global _storage
    if _storage is None:
        if settings is None:
            settings = get_settings()
        _storage = SQLiteStorage(settings.database_path)
    return _storage


def close_storage() -> None:
    """Checkpoint and forget the shared handle, if one was opened."""
    global _storage
    if _storage is not None:
        _storage.close()
        _storage = None


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> SQLiteStorage:
    """FastAPI dependency for the storage handle."""
    return get_storage(settings)


# Type alias for dependency injection
Database = Annotated[SQLiteStorage, Depends(get_db)]


def _days_after(timestamp: str, days: int) -> str:
    moment = datetime.strptime(timestamp, TIMESTAMP_FORMAT) + timedelta(days=days)
    return moment.strftime(TIMESTAMP_FORMAT)


# =============================================================================
# User Operations
# =============================================================================


async def create_user(
    db: SQLiteStorage,
    username: str,
    password_hash: str,
    email: str | None = None,
) -> dict:
    """Create a new user. Raises sqlite3.IntegrityError if the username is taken."""
    with db.transaction() as conn:
        return accounts.create_user(conn, username, password_hash, db.now(), email=email)


async def get_user_by_username(db: SQLiteStorage, username: str) -> dict | None:
    with db.connect() as conn:
        return accounts.get_user_by_username(conn, username)


# =============================================================================
# Token Operations
# =============================================================================


async def create_token(db: SQLiteStorage, user_id: int, token_hash: str, expiry_days: int) -> str:
    """Store a token hash for a user; returns its expiry timestamp."""
    with db.transaction() as conn:
        now = db.now()
        expires_at = _days_after(now, expiry_days)
        accounts.create_token(conn, user_id, token_hash, expires_at, now)
    return expires_at


async def get_user_for_token(db: SQLiteStorage, token_hash: str) -> dict | None:
    """Resolve an unexpired token hash to its user."""
    with db.connect() as conn:
        return accounts.get_user_for_token(conn, token_hash, db.now())


async def revoke_token(db: SQLiteStorage, token_hash: str) -> bool:
    with db.transaction() as conn:
        return accounts.revoke_token(conn, token_hash)


async def purge_expired_tokens(db: SQLiteStorage) -> int:
    with db.transaction() as conn:
        return accounts.purge_expired_tokens(conn, db.now())


# =============================================================================
# Sync
# =============================================================================


def get_sync_engine(db: SQLiteStorage, auth) -> SyncEngine:
    """SyncEngine bound to the authenticated user of a request."""
    return SyncEngine(db, auth.user_id, auth.user_uuid)
