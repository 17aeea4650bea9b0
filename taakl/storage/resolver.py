"""Ownership-path resolution.

Every syncable row belongs to an account through a chain of owners
(session -> task -> project -> client -> account). The resolver turns that
chain into one joined query per kind and returns a typed Ancestry, so
callers never chase owner rows one level at a time.
"""

import logging
import sqlite3
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, Optional, Tuple

from .entities import EntityKind, get_kind, ownership_path
from .schema import validate_table_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ancestry:
    """A resolved row plus the stable identifiers of its owners.

    ``chain`` runs from the account-owned root down to the direct owner,
    e.g. ``(client_uuid, project_uuid)`` for a task. It is empty for
    account-owned kinds.
    """

    kind: EntityKind
    row: sqlite3.Row
    chain: Tuple[str, ...] = ()

    @property
    def id(self) -> int:
        return self.row["id"]

    @property
    def uuid(self) -> str:
        return self.row["uuid"]

    @property
    def owner_id(self) -> int:
        return self.row[self.kind.owner_column]

    @property
    def parent_uuid(self) -> Optional[str]:
        if self.kind.parent_uuid_column:
            return self.row[self.kind.parent_uuid_column]
        return self.chain[-1] if self.chain else None

    @property
    def updated_at(self) -> str:
        return self.row["updated_at"]

    @property
    def deleted_at(self) -> Optional[str]:
        return self.row["deleted_at"]

    @property
    def is_deleted(self) -> bool:
        return self.row["deleted_at"] is not None


@lru_cache(maxsize=None)
def _select_for(kind_name: str) -> str:
    """SELECT joining a kind to its account-owned root.

    Selected columns are the row's own plus ``owner_uuid_<n>`` for the
    n-th owner up the chain. The trailing WHERE clause scopes to one
    account; callers append further conditions.
    """
    path = ownership_path(get_kind(kind_name))
    aliases = [f"t{i}" for i in range(len(path))]

    columns = [f"{aliases[0]}.*"]
    columns += [f"{aliases[i]}.uuid AS owner_uuid_{i}" for i in range(1, len(path))]

    sources = [f"{validate_table_name(path[0].table)} {aliases[0]}"]
    for i in range(1, len(path)):
        sources.append(
            f"JOIN {validate_table_name(path[i].table)} {aliases[i]} "
            f"ON {aliases[i - 1]}.{path[i - 1].owner_column} = {aliases[i]}.id"
        )

    root = aliases[-1]
    return (
        f"SELECT {', '.join(columns)} FROM {' '.join(sources)} "
        f"WHERE {root}.{path[-1].owner_column} = ?"
    )


class OwnershipResolver:
    """Resolves entities of one account by stable identifier."""

    def __init__(self, conn: sqlite3.Connection, account_id: int):
        self._conn = conn
        self._account_id = account_id

    def _to_ancestry(self, kind: EntityKind, row: sqlite3.Row) -> Ancestry:
        depth = len(ownership_path(kind))
        # owner_uuid_1 is the direct owner; the chain is stored root first
        chain = tuple(row[f"owner_uuid_{i}"] for i in range(depth - 1, 0, -1))
        return Ancestry(kind=kind, row=row, chain=chain)

    def resolve(
        self, kind: EntityKind, uuid: str, include_deleted: bool = True
    ) -> Optional[Ancestry]:
        """Find one entity by uuid within the account.

        Soft-deleted rows are found by default so conflict checks can see
        their tombstones; parent lookups pass ``include_deleted=False``.
        When an identifier is reused under different owners the oldest
        row wins.
        """
        sql = _select_for(kind.name) + " AND t0.uuid = ?"
        if not include_deleted:
            sql += " AND t0.deleted_at IS NULL"
        sql += " ORDER BY t0.id LIMIT 1"
        row = self._conn.execute(sql, (self._account_id, uuid)).fetchone()
        return self._to_ancestry(kind, row) if row else None

    def resolve_live(self, kind: EntityKind, uuid: str) -> Optional[Ancestry]:
        return self.resolve(kind, uuid, include_deleted=False)

    def scan(
        self,
        kind: EntityKind,
        updated_after: Optional[str] = None,
        live_only: bool = False,
    ) -> Iterator[Ancestry]:
        """Iterate the account's rows of one kind in row-id order."""
        sql = _select_for(kind.name)
        params: list = [self._account_id]
        if updated_after is not None:
            sql += " AND t0.updated_at > ?"
            params.append(updated_after)
        if live_only:
            sql += " AND t0.deleted_at IS NULL"
        sql += " ORDER BY t0.id"
        for row in self._conn.execute(sql, params):
            yield self._to_ancestry(kind, row)

