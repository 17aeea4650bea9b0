"""Row writes for syncable entities."""

import sqlite3
from typing import Any, Dict, Optional

from .entities import EntityKind
from .schema import validate_table_name


def insert_row(conn: sqlite3.Connection, kind: EntityKind, columns: Dict[str, Any]) -> int:
    """Insert a row and return its id."""
    table = validate_table_name(kind.table)
    names = list(columns)
    placeholders = ", ".join("?" * len(names))
    cursor = conn.execute(
        f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
        [columns[name] for name in names],
    )
    return cursor.lastrowid


def update_row(
    conn: sqlite3.Connection, kind: EntityKind, row_id: int, columns: Dict[str, Any]
) -> int:
    """Update one row by id and return the affected row count."""
    if not columns:
        return 0
    table = validate_table_name(kind.table)
    assignments = ", ".join(f"{name} = ?" for name in columns)
    cursor = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        [*columns.values(), row_id],
    )
    return cursor.rowcount


def find_in_scope(
    conn: sqlite3.Connection, kind: EntityKind, uuid: str, owner_id: int
) -> Optional[int]:
    """Id of the row with this uuid under one owner (tombstones included), or None."""
    table = validate_table_name(kind.table)
    row = conn.execute(
        f"SELECT id FROM {table} WHERE uuid = ? AND {kind.owner_column} = ?",
        (uuid, owner_id),
    ).fetchone()
    return row["id"] if row else None


def upsert_row(
    conn: sqlite3.Connection,
    kind: EntityKind,
    uuid: str,
    owner_id: int,
    columns: Dict[str, Any],
    now: str,
) -> int:
    """Insert or overwrite a row keyed by (owner, uuid), clearing any tombstone."""
    fields = dict(columns, deleted_at=None, updated_at=now)
    existing_id = find_in_scope(conn, kind, uuid, owner_id)
    if existing_id is not None:
        update_row(conn, kind, existing_id, fields)
        return existing_id
    fields.update({"uuid": uuid, kind.owner_column: owner_id, "created_at": now})
    return insert_row(conn, kind, fields)
