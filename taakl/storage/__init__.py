"""Taakl storage.

SQLite-backed entity store plus the sync core built on it: change
applier, change collector, full-tree codecs and settings.
"""

from .applier import ChangeApplier
from .codec import GeneralizedCodec, LegacyCodec, decode_snapshot, encode_snapshot
from .collector import ChangeCollector
from .entities import ENTITY_KINDS, EntityKind, get_kind
from .resolver import Ancestry, OwnershipResolver
from .settings_store import SettingsStore
from .sqlite import SQLiteStorage
from .sync_engine import SyncEngine
from .tree import AccountTree, TreeEntity, load_tree, store_tree

__all__ = [
    # Store
    "SQLiteStorage",
    "EntityKind",
    "ENTITY_KINDS",
    "get_kind",
    "OwnershipResolver",
    "Ancestry",
    # Sync core
    "ChangeApplier",
    "ChangeCollector",
    "SyncEngine",
    # Full tree
    "AccountTree",
    "TreeEntity",
    "LegacyCodec",
    "GeneralizedCodec",
    "decode_snapshot",
    "encode_snapshot",
    "load_tree",
    "store_tree",
    # Settings
    "SettingsStore",
]
