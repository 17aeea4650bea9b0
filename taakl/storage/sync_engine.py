"""Sync engine for the taakl server.

SyncEngine is the per-account entry point for the HTTP layer: incremental
sync (apply a batch of client mutations, then return what the client has
not seen), full-tree import and export, and settings. It receives the
storage handle explicitly and owns the transaction boundaries; the
applier, collector and tree code below it only ever see an open
connection.
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from taakl.types import Mutation, SyncResult, SyncStats, ValidationError, normalize_timestamp

from .applier import ChangeApplier
from .codec import decode_snapshot, encode_snapshot
from .collector import ChangeCollector
from .resolver import OwnershipResolver
from .settings_store import SettingsStore
from .sqlite import SQLiteStorage
from .tree import load_tree, store_tree

logger = logging.getLogger(__name__)


def _to_mutation(raw: Union[Mutation, Any]) -> Mutation:
    if isinstance(raw, Mutation):
        return raw
    if isinstance(raw, Mapping):
        return Mutation.from_wire(raw)
    # Not an object at all; an empty mutation is rejected by validation
    return Mutation(action="", type="", uuid="")


class SyncEngine:
    """Sync operations for one authenticated account.

    Args:
        storage: The SQLiteStorage handle to run against.
        account_id: Internal id of the account.
        account_uuid: The account's stable identifier, exported as ``userKey``.
    """

    def __init__(self, storage: SQLiteStorage, account_id: int, account_uuid: str):
        self._storage = storage
        self.account_id = account_id
        self.account_uuid = account_uuid

    # === Incremental sync ===

    def process_incremental_sync(
        self,
        changes: Optional[Iterable[Any]] = None,
        cutoff: Optional[str] = None,
    ) -> SyncResult:
        """Apply a batch of mutations and collect changes after ``cutoff``.

        Mutations run in submitted order inside one transaction, so a later
        mutation sees the effect of an earlier one. Rejections are counted
        as conflicts. Any database fault rolls back the whole batch and
        propagates. A None (or unparseable) cutoff collects everything.
        """
        mutations = [_to_mutation(raw) for raw in (changes or [])]
        since = normalize_timestamp(cutoff)
        stats = SyncStats()

        with self._storage.transaction() as conn:
            server_time = self._storage.now()
            applier = ChangeApplier(conn, self.account_id, self._storage.now)
            for mutation in mutations:
                stats.processed += 1
                if applier.apply(mutation):
                    stats.accepted += 1
                else:
                    stats.conflicts += 1

            collector = ChangeCollector(OwnershipResolver(conn, self.account_id))
            collected = collector.collect_since(since)

        stats.returned = len(collected)
        logger.info(
            f"Sync for account {self.account_id}: processed={stats.processed} "
            f"accepted={stats.accepted} conflicts={stats.conflicts} returned={stats.returned}"
        )
        return SyncResult(server_time=server_time, changes=collected, stats=stats)

    # === Full sync ===

    def import_full_data(self, snapshot: Any) -> Dict[str, int]:
        """Upsert a full snapshot; returns per-type counts of processed records.

        Raises:
            ValidationError: If the snapshot is malformed (nothing is written)
        """
        tree = decode_snapshot(snapshot)
        with self._storage.transaction() as conn:
            stats = store_tree(conn, self.account_id, tree, self._storage.now())
        return stats.to_dict()

    def get_full_data(self) -> Dict[str, Any]:
        """Export the account's live tree, root order and settings."""
        with self._storage.connect() as conn:
            tree = load_tree(conn, self.account_id)
        return encode_snapshot(tree, self.account_uuid)

    # === Settings ===

    def get_settings(self) -> Dict[str, Any]:
        with self._storage.connect() as conn:
            return SettingsStore(conn, self.account_id).get_all()

    def save_settings(self, settings: Mapping[str, Any]) -> None:
        """Merge settings into the account's stored settings."""
        if not isinstance(settings, Mapping):
            raise ValidationError("Settings must be a mapping")
        with self._storage.transaction() as conn:
            SettingsStore(conn, self.account_id).save(settings, self._storage.now())
