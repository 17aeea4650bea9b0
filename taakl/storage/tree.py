"""Canonical in-memory account tree.

Both snapshot shapes (legacy clients/projects/tasks/sessions and the
generalized node map) decode into the same ``AccountTree``; loading from
and storing to SQLite only ever deals with this one form. Nesting follows
ownership: a TreeEntity's children are rows owned by it (projects under a
client, sessions under a task node). Node-to-node parenthood is data
(``parentId``), not nesting, so the node list stays flat.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from taakl.types import ImportStats

from .entities import CLIENT, ENTITY_KINDS, NODE, EntityKind, data_to_columns, row_to_data
from .records import upsert_row
from .resolver import OwnershipResolver
from .settings_store import SettingsStore
from .user_meta import DEFAULT_DATA_VERSION, UserDataMeta, UserMetaStore

logger = logging.getLogger(__name__)

# Owner kind name -> the kind it owns
CHILD_KINDS: Dict[str, EntityKind] = {
    kind.owner: kind for kind in ENTITY_KINDS.values() if kind.owner is not None
}


@dataclass
class TreeEntity:
    """One entity with its canonical data and the entities it owns."""

    kind: EntityKind
    uuid: str
    data: Dict[str, Any] = field(default_factory=dict)
    children: List["TreeEntity"] = field(default_factory=list)

    @property
    def child_kind(self) -> Optional[EntityKind]:
        return CHILD_KINDS.get(self.kind.name)


@dataclass
class AccountTree:
    """Everything a full sync moves for one account.

    ``settings`` is None when a snapshot carried no settings, so an import
    leaves stored settings alone.
    """

    data_version: int = DEFAULT_DATA_VERSION
    root_order: List[Any] = field(default_factory=list)
    settings: Optional[Dict[str, Any]] = None
    clients: List[TreeEntity] = field(default_factory=list)
    nodes: List[TreeEntity] = field(default_factory=list)


def _load_kind(
    resolver: OwnershipResolver, kind: EntityKind, owners: Optional[Dict[int, TreeEntity]]
) -> Dict[int, TreeEntity]:
    """Load live rows of one kind, attaching each to its live owner.

    Rows whose owner is not in ``owners`` (deleted, or itself orphaned)
    are left out. Returns the loaded entities keyed by row id.
    """
    loaded: Dict[int, TreeEntity] = {}
    for entity in resolver.scan(kind, live_only=True):
        node = TreeEntity(kind=kind, uuid=entity.uuid, data=row_to_data(kind, entity.row))
        if owners is not None:
            owner = owners.get(entity.owner_id)
            if owner is None:
                continue
            owner.children.append(node)
        loaded[entity.id] = node
    return loaded


def load_tree(conn: sqlite3.Connection, account_id: int) -> AccountTree:
    """Read the live tree, root order and settings of an account."""
    resolver = OwnershipResolver(conn, account_id)

    clients = _load_kind(resolver, CLIENT, None)
    owners = clients
    kind = CLIENT
    while kind.name in CHILD_KINDS:
        kind = CHILD_KINDS[kind.name]
        owners = _load_kind(resolver, kind, owners)

    nodes = _load_kind(resolver, NODE, None)
    _load_kind(resolver, CHILD_KINDS[NODE.name], nodes)

    meta = UserMetaStore(conn, account_id).get()
    return AccountTree(
        data_version=meta.data_version,
        root_order=meta.root_order,
        settings=SettingsStore(conn, account_id).get_all(),
        clients=list(clients.values()),
        nodes=list(nodes.values()),
    )


def _store_entity(
    conn: sqlite3.Connection,
    entity: TreeEntity,
    owner_id: int,
    now: str,
    stats: ImportStats,
) -> None:
    kind = entity.kind
    columns = data_to_columns(kind, entity.data, now)
    if kind.parent_uuid_column:
        columns[kind.parent_uuid_column] = entity.data.get("parentId") or None
    row_id = upsert_row(conn, kind, entity.uuid, owner_id, columns, now)
    setattr(stats, kind.table, getattr(stats, kind.table) + 1)

    for child in entity.children:
        _store_entity(conn, child, row_id, now, stats)


def store_tree(
    conn: sqlite3.Connection, account_id: int, tree: AccountTree, now: str
) -> ImportStats:
    """Upsert a decoded tree into an account.

    Never removes rows the tree does not mention. Every written row is
    stamped with ``now`` and loses any tombstone. Root order and data
    version are replaced; settings are merged key by key when present.
    """
    stats = ImportStats()
    for client in tree.clients:
        _store_entity(conn, client, account_id, now, stats)
    for node in tree.nodes:
        _store_entity(conn, node, account_id, now, stats)

    UserMetaStore(conn, account_id).save(
        UserDataMeta(data_version=tree.data_version, root_order=tree.root_order), now
    )
    if tree.settings is not None:
        SettingsStore(conn, account_id).save(tree.settings, now)

    logger.info(f"Imported tree for account {account_id}: {stats.to_dict()}")
    return stats
