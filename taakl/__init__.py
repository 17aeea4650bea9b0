"""
Taakl - sync server for a hierarchical time-tracking tree.

Last-write-wins incremental sync and full-tree import/export over SQLite.
"""

from .storage import SQLiteStorage, SyncEngine
from .types import Mutation, StorageError, SyncResult, TaaklError, ValidationError

try:
    from importlib.metadata import version

    __version__ = version("taakl")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "SQLiteStorage",
    "SyncEngine",
    "Mutation",
    "SyncResult",
    "TaaklError",
    "StorageError",
    "ValidationError",
]
