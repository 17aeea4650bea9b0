"""Change applier: last-write-wins acceptance of client mutations.

Each mutation is either accepted and written, or rejected without
touching the store. Rejections are ordinary return values; only faults
from the database escape, and the caller's transaction rolls them back.

Conflict baseline: a live row is compared by ``updated_at``, a
soft-deleted row by its tombstone (``deleted_at``). A mutation whose
asserted timestamp is older than the baseline loses; ties go to the
incoming mutation.
"""

import logging
import sqlite3
from typing import Any, Callable, Dict, Optional

from taakl.types import (
    ACTION_DELETE,
    ACTION_INSERT,
    ACTION_UPDATE,
    ACTIONS,
    Mutation,
    normalize_timestamp,
)

from .entities import NODE, EntityKind, coerce_flag, data_to_columns, get_kind, invalid_fields
from .records import find_in_scope, insert_row, update_row
from .resolver import Ancestry, OwnershipResolver
from .user_meta import UserMetaStore

logger = logging.getLogger(__name__)


class ChangeApplier:
    """Applies mutations for one account on an open transaction.

    Args:
        conn: Connection inside the caller's unit of work.
        account_id: Internal id of the authenticated account.
        now_fn: Server clock returning the stored wall-clock form.
    """

    def __init__(self, conn: sqlite3.Connection, account_id: int, now_fn: Callable[[], str]):
        self._conn = conn
        self._account_id = account_id
        self._now = now_fn
        self._resolver = OwnershipResolver(conn, account_id)
        self._meta = UserMetaStore(conn, account_id)

    def apply(self, mutation: Mutation) -> bool:
        """Apply one mutation. Returns True if accepted."""
        if not mutation.action or not mutation.type or not mutation.uuid:
            logger.debug(f"Rejecting incomplete mutation: {mutation!r}")
            return False
        if mutation.action not in ACTIONS:
            logger.debug(f"Rejecting unknown action {mutation.action!r} for {mutation.uuid}")
            return False
        kind = get_kind(mutation.type)
        if kind is None:
            logger.debug(f"Rejecting unknown type {mutation.type!r} for {mutation.uuid}")
            return False
        bad_fields = invalid_fields(kind, mutation.data)
        if bad_fields:
            logger.debug(
                f"Rejecting {mutation.action} {kind.name}:{mutation.uuid}, "
                f"non-scalar values for {bad_fields}"
            )
            return False

        if mutation.timestamp is None:
            asserted = self._now()
        else:
            asserted = normalize_timestamp(mutation.timestamp)
            if asserted is None:
                logger.debug(
                    f"Rejecting {mutation.action} {kind.name}:{mutation.uuid}, "
                    f"unparseable timestamp {mutation.timestamp!r}"
                )
                return False

        if mutation.action == ACTION_INSERT:
            return self._insert(kind, mutation)
        if mutation.action == ACTION_UPDATE:
            return self._update(kind, mutation, asserted)
        if mutation.action == ACTION_DELETE:
            return self._delete(kind, mutation, asserted)
        return False

    # === Helpers ===

    def _resolve_parent(self, kind: EntityKind, parent_uuid: Optional[str]) -> Optional[Ancestry]:
        if not parent_uuid:
            return None
        return self._resolver.resolve_live(get_kind(kind.parent), parent_uuid)

    def _is_stale(self, existing: Ancestry, asserted: str) -> bool:
        baseline = existing.deleted_at if existing.is_deleted else existing.updated_at
        return baseline is not None and baseline > asserted

    def _creates_cycle(self, node_uuid: str, parent_uuid: Any) -> bool:
        """True if ``node_uuid`` is ``parent_uuid`` or one of its ancestors."""
        seen = set()
        current = parent_uuid
        while current and current not in seen:
            if current == node_uuid:
                return True
            seen.add(current)
            ancestor = self._resolver.resolve(NODE, current)
            current = ancestor.parent_uuid if ancestor else None
        return False

    # === Actions ===

    def _insert(self, kind: EntityKind, mutation: Mutation) -> bool:
        data = mutation.data
        now = self._now()
        columns: Dict[str, Any] = data_to_columns(kind, data, now)
        parent_uuid: Optional[str] = None

        if kind is NODE:
            parent_uuid = mutation.parent_uuid or data.get("parentId") or None
            if parent_uuid is not None and self._resolve_parent(kind, parent_uuid) is None:
                logger.debug(f"Rejecting insert node:{mutation.uuid}, unknown parent {parent_uuid}")
                return False
            owner_id = self._account_id
            columns[kind.parent_uuid_column] = parent_uuid
        elif kind.has_parent:
            parent = self._resolve_parent(kind, mutation.parent_uuid)
            if parent is None:
                logger.debug(
                    f"Rejecting insert {kind.name}:{mutation.uuid}, "
                    f"unknown {kind.parent} {mutation.parent_uuid!r}"
                )
                return False
            owner_id = parent.id
        else:
            owner_id = self._account_id

        if find_in_scope(self._conn, kind, mutation.uuid, owner_id) is not None:
            logger.debug(f"Rejecting insert {kind.name}:{mutation.uuid}, already exists")
            return False

        columns.update(
            {
                "uuid": mutation.uuid,
                kind.owner_column: owner_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        insert_row(self._conn, kind, columns)

        if kind is NODE and parent_uuid is None:
            self._meta.add_to_root_order(mutation.uuid, now)
        return True

    def _update(self, kind: EntityKind, mutation: Mutation, asserted: str) -> bool:
        existing = self._resolver.resolve(kind, mutation.uuid)
        if existing is None:
            logger.debug(f"Rejecting update {kind.name}:{mutation.uuid}, not found")
            return False
        if self._is_stale(existing, asserted):
            logger.debug(
                f"Rejecting stale update {kind.name}:{mutation.uuid} "
                f"({asserted} older than stored state)"
            )
            return False

        data = mutation.data
        now = self._now()
        columns = data_to_columns(kind, data, now, partial=True)

        if kind is NODE and data.get("parentId") is not None:
            parent_uuid = data["parentId"]
            if self._resolve_parent(kind, parent_uuid) is None or self._creates_cycle(
                mutation.uuid, parent_uuid
            ):
                logger.debug(f"Rejecting update node:{mutation.uuid}, bad parent {parent_uuid!r}")
                return False
            columns[kind.parent_uuid_column] = parent_uuid

        if data.get("deleted") is not None:
            if coerce_flag(data["deleted"]):
                columns["deleted_at"] = existing.deleted_at or asserted
            else:
                columns["deleted_at"] = None
        elif existing.is_deleted:
            # Accepted update of a tombstoned row brings it back
            columns["deleted_at"] = None

        if not columns:
            return True

        columns["updated_at"] = now
        update_row(self._conn, kind, existing.id, columns)
        return True

    def _delete(self, kind: EntityKind, mutation: Mutation, asserted: str) -> bool:
        existing = self._resolver.resolve(kind, mutation.uuid)
        if existing is None:
            logger.debug(f"Rejecting delete {kind.name}:{mutation.uuid}, not found")
            return False
        if self._is_stale(existing, asserted):
            logger.debug(f"Rejecting stale delete {kind.name}:{mutation.uuid}")
            return False

        update_row(
            self._conn,
            kind,
            existing.id,
            {"deleted_at": asserted, "updated_at": self._now()},
        )
        return True
