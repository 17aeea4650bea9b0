"""Per-account settings.

Values are stored as text. Structured values (mappings, lists) and
non-string scalars are written as JSON; plain strings are written as-is.
Reads try JSON first and fall back to the raw text, so a string that
happens to look like JSON ("42") comes back decoded.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)


def encode_setting_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value)


def decode_setting_value(raw: Any) -> Any:
    if raw is None:
        return None
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return raw
    return raw if decoded is None else decoded


class SettingsStore:
    """Key/value settings of one account."""

    def __init__(self, conn: sqlite3.Connection, account_id: int):
        self._conn = conn
        self._account_id = account_id

    def get_all(self) -> Dict[str, Any]:
        rows = self._conn.execute(
            "SELECT setting_key, setting_value FROM settings WHERE user_id = ? ORDER BY id",
            (self._account_id,),
        ).fetchall()
        return {row["setting_key"]: decode_setting_value(row["setting_value"]) for row in rows}

    def save(self, settings: Mapping[str, Any], now: str) -> int:
        """Upsert every key; keys not mentioned are left alone."""
        for key, value in settings.items():
            self._conn.execute(
                """INSERT INTO settings (user_id, setting_key, setting_value, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id, setting_key) DO UPDATE SET
                       setting_value = excluded.setting_value,
                       updated_at = excluded.updated_at""",
                (self._account_id, str(key), encode_setting_value(value), now),
            )
        logger.debug(f"Saved {len(settings)} settings for account {self._account_id}")
        return len(settings)
