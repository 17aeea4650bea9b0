"""Per-account tree metadata: data version and root node order."""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, List

logger = logging.getLogger(__name__)

DEFAULT_DATA_VERSION = 2


@dataclass
class UserDataMeta:
    data_version: int = DEFAULT_DATA_VERSION
    root_order: List[Any] = field(default_factory=list)


def _decode_root_order(raw: Any) -> List[Any]:
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Undecodable root_order {raw!r}, treating as empty")
        return []
    return decoded if isinstance(decoded, list) else []


class UserMetaStore:
    """Reads and writes the single user_data_meta row of an account."""

    def __init__(self, conn: sqlite3.Connection, account_id: int):
        self._conn = conn
        self._account_id = account_id

    def get(self) -> UserDataMeta:
        """The account's metadata, defaults when no row exists yet."""
        row = self._conn.execute(
            "SELECT data_version, root_order FROM user_data_meta WHERE user_id = ?",
            (self._account_id,),
        ).fetchone()
        if row is None:
            return UserDataMeta()
        return UserDataMeta(
            data_version=int(row["data_version"]),
            root_order=_decode_root_order(row["root_order"]),
        )

    def save(self, meta: UserDataMeta, now: str) -> None:
        self._conn.execute(
            """INSERT INTO user_data_meta (user_id, data_version, root_order, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   data_version = excluded.data_version,
                   root_order = excluded.root_order,
                   updated_at = excluded.updated_at""",
            (self._account_id, meta.data_version, json.dumps(meta.root_order), now),
        )

    def add_to_root_order(self, uuid: str, now: str) -> bool:
        """Append a root node identifier unless already listed."""
        meta = self.get()
        if uuid in meta.root_order:
            return False
        meta.root_order.append(uuid)
        self.save(meta, now)
        return True
