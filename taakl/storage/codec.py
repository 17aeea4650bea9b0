"""Full-tree snapshot codecs.

A snapshot looks like::

    {
        "dataVersion": 2,
        "userKey": "<account uuid>",
        "clients": {"<uuid>": {"id": ..., "name": ..., "projects": {...}}},
        "nodes": {"<uuid>": {"id": ..., "type": "task", "sessions": {...}}},
        "rootOrder": ["<node uuid>", ...],
        "settings": {...},
    }

``LegacyCodec`` handles the nested ``clients`` shape, ``GeneralizedCodec``
the flat ``nodes`` map. Collections decode from either a mapping keyed by
identifier or a list of objects carrying ``id``; they always encode as
mappings.
"""

import logging
from typing import Any, Dict, List, Mapping

from taakl.types import ValidationError

from .entities import CLIENT, NODE, TASK_NODE_TYPE, EntityKind, invalid_fields, render_data
from .tree import AccountTree, TreeEntity
from .user_meta import DEFAULT_DATA_VERSION

logger = logging.getLogger(__name__)

# Snapshot key under which each kind nests the entities it owns
CHILD_KEYS = {
    "client": "projects",
    "project": "tasks",
    "task": "sessions",
    "node": "sessions",
}


def _items(raw: Any, what: str) -> List[tuple]:
    """(uuid, payload) pairs from a mapping or a list of objects with ``id``."""
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        pairs = [(str(key), value) for key, value in raw.items()]
    elif isinstance(raw, list):
        pairs = []
        for value in raw:
            if not isinstance(value, Mapping) or value.get("id") in (None, ""):
                raise ValidationError(f"{what} entries in a list need an 'id'")
            pairs.append((str(value["id"]), value))
    else:
        raise ValidationError(f"{what} must be a mapping or a list, got {type(raw).__name__}")

    for uuid, value in pairs:
        if not isinstance(value, Mapping):
            raise ValidationError(f"{what} entry {uuid!r} must be an object")
    return pairs


def _decode_entity(kind: EntityKind, uuid: str, payload: Mapping[str, Any]) -> TreeEntity:
    child_key = CHILD_KEYS.get(kind.name)
    data = {key: value for key, value in payload.items() if key != child_key}
    bad_fields = invalid_fields(kind, data)
    if bad_fields:
        raise ValidationError(f"{kind.name} {uuid!r} has non-scalar values for {', '.join(bad_fields)}")
    entity = TreeEntity(kind=kind, uuid=uuid, data=data)
    child_kind = entity.child_kind
    if child_key and child_kind is not None:
        for child_uuid, child_payload in _items(payload.get(child_key), child_key):
            entity.children.append(_decode_entity(child_kind, child_uuid, child_payload))
    return entity


def _encode_entity(entity: TreeEntity) -> Dict[str, Any]:
    encoded = render_data(entity.kind, entity.uuid, entity.data)
    child_key = CHILD_KEYS.get(entity.kind.name)
    if child_key is None:
        return encoded
    if entity.kind is NODE and entity.data.get("type", TASK_NODE_TYPE) != TASK_NODE_TYPE:
        return encoded
    encoded[child_key] = {child.uuid: _encode_entity(child) for child in entity.children}
    return encoded


class LegacyCodec:
    """clients -> projects -> tasks -> sessions, nested by identifier."""

    key = "clients"

    def decode(self, raw: Any) -> List[TreeEntity]:
        return [_decode_entity(CLIENT, uuid, payload) for uuid, payload in _items(raw, self.key)]

    def encode(self, clients: List[TreeEntity]) -> Dict[str, Any]:
        return {client.uuid: _encode_entity(client) for client in clients}


class GeneralizedCodec:
    """Flat node map; task nodes carry their sessions."""

    key = "nodes"

    def decode(self, raw: Any) -> List[TreeEntity]:
        return [_decode_entity(NODE, uuid, payload) for uuid, payload in _items(raw, self.key)]

    def encode(self, nodes: List[TreeEntity]) -> Dict[str, Any]:
        return {node.uuid: _encode_entity(node) for node in nodes}


LEGACY = LegacyCodec()
GENERALIZED = GeneralizedCodec()


def decode_snapshot(snapshot: Any) -> AccountTree:
    """Decode a client snapshot into an AccountTree.

    Raises:
        ValidationError: If the snapshot or one of its collections is malformed
    """
    if not isinstance(snapshot, Mapping):
        raise ValidationError("Snapshot must be an object")

    data_version = snapshot.get("dataVersion")
    if data_version is None:
        data_version = DEFAULT_DATA_VERSION
    try:
        data_version = int(data_version)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid dataVersion: {data_version!r}") from None

    root_order = snapshot.get("rootOrder")
    if root_order is None:
        root_order = []
    if not isinstance(root_order, list):
        raise ValidationError("rootOrder must be a list")

    settings = snapshot.get("settings")
    if settings is not None and not isinstance(settings, Mapping):
        raise ValidationError("settings must be an object")

    return AccountTree(
        data_version=data_version,
        root_order=list(root_order),
        settings=dict(settings) if settings is not None else None,
        clients=LEGACY.decode(snapshot.get(LEGACY.key)),
        nodes=GENERALIZED.decode(snapshot.get(GENERALIZED.key)),
    )


def encode_snapshot(tree: AccountTree, user_key: str) -> Dict[str, Any]:
    """Render an AccountTree as the snapshot clients download."""
    return {
        "dataVersion": tree.data_version,
        "userKey": user_key,
        LEGACY.key: LEGACY.encode(tree.clients),
        GENERALIZED.key: GENERALIZED.encode(tree.nodes),
        "rootOrder": tree.root_order,
        "settings": tree.settings if tree.settings is not None else {},
    }
