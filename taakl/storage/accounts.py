"""Account and bearer-token rows.

Plain functions over an open connection. Password hashing and token
generation live in the HTTP layer; only hashes reach this module.
"""

import logging
import sqlite3
import uuid
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _row_to_user(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {
        "id": row["id"],
        "uuid": row["uuid"],
        "username": row["username"],
        "email": row["email"],
        "password_hash": row["password_hash"],
    }


def create_user(
    conn: sqlite3.Connection,
    username: str,
    password_hash: str,
    now: str,
    email: Optional[str] = None,
    user_uuid: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert a user and return it. Raises sqlite3.IntegrityError on a taken username."""
    user_uuid = user_uuid or str(uuid.uuid4())
    cursor = conn.execute(
        """INSERT INTO users (uuid, username, password_hash, email, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (user_uuid, username, password_hash, email, now),
    )
    return {
        "id": cursor.lastrowid,
        "uuid": user_uuid,
        "username": username,
        "email": email,
        "password_hash": password_hash,
    }


def get_user_by_username(conn: sqlite3.Connection, username: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
    return _row_to_user(row)


def create_token(
    conn: sqlite3.Connection, user_id: int, token_hash: str, expires_at: str, now: str
) -> None:
    conn.execute(
        """INSERT INTO auth_tokens (user_id, token_hash, expires_at, created_at)
           VALUES (?, ?, ?, ?)""",
        (user_id, token_hash, expires_at, now),
    )


def get_user_for_token(
    conn: sqlite3.Connection, token_hash: str, now: str
) -> Optional[Dict[str, Any]]:
    """Resolve an unexpired token hash to its user."""
    row = conn.execute(
        """SELECT u.* FROM auth_tokens t
           JOIN users u ON t.user_id = u.id
           WHERE t.token_hash = ? AND t.expires_at > ?""",
        (token_hash, now),
    ).fetchone()
    return _row_to_user(row)


def revoke_token(conn: sqlite3.Connection, token_hash: str) -> bool:
    cursor = conn.execute("DELETE FROM auth_tokens WHERE token_hash = ?", (token_hash,))
    return cursor.rowcount > 0


def purge_expired_tokens(conn: sqlite3.Connection, now: str) -> int:
    cursor = conn.execute("DELETE FROM auth_tokens WHERE expires_at < ?", (now,))
    if cursor.rowcount:
        logger.info(f"Purged {cursor.rowcount} expired auth tokens")
    return cursor.rowcount
