"""Entity kinds for the synchronized work-item tree.

One registry describes every syncable type: its table, who owns it, and
how its payload fields map to columns. The applier, the collector and the
full-tree codec all go through these descriptions, so the legacy tree
(client/project/task/session) and the generalized tree (node/node_session)
share one set of conversion rules.

Three representations of an entity's fields exist:

- columns: what is stored in SQLite (flags as integers, structured data as
  JSON text)
- data: the canonical in-memory form, keyed by wire name with decoded
  Python values (``childOrder`` is a list, ``priority`` an int)
- rendered: what legacy clients expect on the wire (``priority``,
  ``billable`` and ``starred`` as strings, ``collapsed`` as a bool)
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# Field value kinds
TEXT = "text"
FLAG = "flag"  # integer-ish flag or level (priority, billable, starred, collapsed)
JSON = "json"  # arbitrary structured payload
LIST = "list"  # JSON list (child order)
OPTIONAL_TEXT = "optional_text"  # empty string stored as NULL (node due dates)

# Render styles
RAW = "raw"
AS_STRING = "string"
AS_BOOL = "bool"


@dataclass(frozen=True)
class FieldSpec:
    """How one payload field maps to a column."""

    wire: str
    column: str
    kind: str = TEXT
    default: Any = None
    render: str = RAW
    # Only rendered for nodes whose type is "task"
    task_only: bool = False

    def default_value(self, now: str) -> Any:
        if callable(self.default):
            return self.default(now)
        if isinstance(self.default, list):
            return list(self.default)
        return self.default


@dataclass(frozen=True)
class EntityKind:
    """A syncable entity type.

    ``owner`` is the kind whose row id is stored in ``owner_column``; when
    it is None the entity is owned by the account directly and
    ``owner_column`` holds the user id. ``parent`` is the kind a mutation's
    parentUuid refers to. For everything but nodes parent and owner are the
    same; nodes are account-owned and point at their parent node by uuid.
    """

    name: str
    table: str
    owner: Optional[str]
    owner_column: str
    fields: Tuple[FieldSpec, ...]
    parent: Optional[str] = None
    parent_uuid_column: Optional[str] = None

    @property
    def account_owned(self) -> bool:
        return self.owner is None

    @property
    def has_parent(self) -> bool:
        return self.parent is not None


def _now_default(now: str) -> str:
    return now


def coerce_flag(value: Any) -> Any:
    """Coerce flag-like values ("1", True, 2.0) to int, leaving others alone."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lower() in ("true", "false"):
            return int(stripped.lower() == "true")
        try:
            return int(stripped)
        except ValueError:
            try:
                number = float(stripped)
            except ValueError:
                return value
            return int(number) if number.is_integer() else number
    return value


_META = FieldSpec("meta", "meta", kind=JSON)


def _task_fields(default_priority: int, on_node: bool = False) -> Tuple[FieldSpec, ...]:
    """Time-tracking fields shared by legacy tasks and task-type nodes."""
    return (
        FieldSpec("status", "status", default="new", task_only=on_node),
        FieldSpec(
            "priority", "priority", kind=FLAG, default=default_priority,
            render=AS_STRING, task_only=on_node,
        ),
        FieldSpec("billable", "billable", kind=FLAG, default=1, render=AS_STRING, task_only=on_node),
        FieldSpec("estimate", "estimate", task_only=on_node),
        # Node clients send "" for "no due date"
        FieldSpec("due", "due", kind=OPTIONAL_TEXT if on_node else TEXT, task_only=on_node),
        FieldSpec("starred", "starred", kind=FLAG, default=0, render=AS_STRING, task_only=on_node),
        FieldSpec("notes", "notes", task_only=on_node),
    )


_SESSION_FIELDS = (
    FieldSpec("start_time", "start_time", default=_now_default),
    FieldSpec("end_time", "end_time"),
    FieldSpec("notes", "notes"),
    _META,
)

CLIENT = EntityKind(
    name="client",
    table="clients",
    owner=None,
    owner_column="user_id",
    fields=(FieldSpec("name", "name", default="Unnamed Client"), _META),
)

PROJECT = EntityKind(
    name="project",
    table="projects",
    owner="client",
    owner_column="client_id",
    parent="client",
    fields=(FieldSpec("name", "name", default="Unnamed Project"), _META),
)

TASK = EntityKind(
    name="task",
    table="tasks",
    owner="project",
    owner_column="project_id",
    parent="project",
    fields=(FieldSpec("name", "name", default="Unnamed Task"),)
    + _task_fields(default_priority=1)
    + (_META,),
)

SESSION = EntityKind(
    name="session",
    table="sessions",
    owner="task",
    owner_column="task_id",
    parent="task",
    fields=_SESSION_FIELDS,
)

NODE = EntityKind(
    name="node",
    table="nodes",
    owner=None,
    owner_column="user_id",
    parent="node",
    parent_uuid_column="parent_uuid",
    fields=(
        FieldSpec("name", "name", default="Unnamed"),
        FieldSpec("type", "node_type", default="task"),
        FieldSpec("childOrder", "child_order", kind=LIST, default=[]),
        FieldSpec("collapsed", "collapsed", kind=FLAG, default=0, render=AS_BOOL),
    )
    + _task_fields(default_priority=3, on_node=True)
    + (_META,),
)

NODE_SESSION = EntityKind(
    name="node_session",
    table="node_sessions",
    owner="node",
    owner_column="node_id",
    parent="node",
    fields=_SESSION_FIELDS,
)

# Collection order: legacy kinds fully before generalized kinds.
ENTITY_KINDS: Dict[str, EntityKind] = {
    kind.name: kind for kind in (CLIENT, PROJECT, TASK, SESSION, NODE, NODE_SESSION)
}

# Node type whose rows carry time-tracking fields and sessions
TASK_NODE_TYPE = "task"


def get_kind(name: str) -> Optional[EntityKind]:
    return ENTITY_KINDS.get(name)


def ownership_path(kind: EntityKind) -> Tuple[EntityKind, ...]:
    """The kind followed by its owners, ending at the account-owned kind."""
    path = [kind]
    while path[-1].owner is not None:
        path.append(ENTITY_KINDS[path[-1].owner])
    return tuple(path)


# === Conversions ===


def _encode(spec: FieldSpec, value: Any) -> Any:
    if spec.kind == FLAG:
        return coerce_flag(value)
    if spec.kind in (JSON, LIST):
        return json.dumps(value)
    if spec.kind == OPTIONAL_TEXT:
        return value or None
    return value


def _decode(spec: FieldSpec, value: Any) -> Any:
    if spec.kind == LIST:
        if not value:
            return []
        try:
            decoded = json.loads(value)
        except (TypeError, ValueError):
            logger.debug(f"Undecodable {spec.column} value {value!r}, using []")
            return []
        return decoded if isinstance(decoded, list) else []
    if spec.kind == JSON:
        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return value
    return value


_SCALAR_TYPES = (str, int, float, bool)


def invalid_fields(kind: EntityKind, data: Mapping[str, Any]) -> List[str]:
    """Wire names of payload fields whose value cannot be stored.

    Only ``meta`` and list fields take structured values; every other
    field (and a node's ``parentId``) must be a scalar or null.
    """
    names = [spec.wire for spec in kind.fields if spec.kind not in (JSON, LIST)]
    if kind.parent_uuid_column:
        names.append("parentId")
    return [
        name
        for name in names
        if data.get(name) is not None and not isinstance(data[name], _SCALAR_TYPES)
    ]


def data_to_columns(
    kind: EntityKind,
    data: Mapping[str, Any],
    now: str,
    partial: bool = False,
) -> Dict[str, Any]:
    """Convert a payload to column values.

    With ``partial`` only fields present (and non-null) in the payload are
    returned; otherwise every field is filled, falling back to its default.
    ``meta`` is never defaulted on a full write so an existing blob survives
    a payload that omits it.
    """
    columns: Dict[str, Any] = {}
    for spec in kind.fields:
        value = data.get(spec.wire)
        if value is not None:
            columns[spec.column] = _encode(spec, value)
        elif not partial and spec is not _META:
            default = spec.default_value(now)
            columns[spec.column] = None if default is None else _encode(spec, default)
    return columns


def row_to_data(kind: EntityKind, row: Mapping[str, Any]) -> Dict[str, Any]:
    """Decode a stored row into the canonical payload form."""
    data: Dict[str, Any] = {}
    for spec in kind.fields:
        data[spec.wire] = _decode(spec, row[spec.column])
    if kind.parent_uuid_column:
        data["parentId"] = row[kind.parent_uuid_column]
    return data


def _render_value(spec: FieldSpec, value: Any) -> Any:
    if spec.render == AS_STRING:
        return None if value is None else str(value)
    if spec.render == AS_BOOL:
        return bool(coerce_flag(value))
    return value


def render_data(kind: EntityKind, uuid: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Render canonical data in the wire form legacy clients expect.

    Internal row ids never appear; ``meta`` is only included when set, and
    task-only node fields only when the node is a task.
    """
    is_task = data.get("type", TASK_NODE_TYPE) == TASK_NODE_TYPE
    rendered: Dict[str, Any] = {"id": uuid}
    for spec in kind.fields:
        if spec is _META:
            continue
        if spec.task_only and not is_task:
            continue
        rendered[spec.wire] = _render_value(spec, data.get(spec.wire))
        if spec.wire == "type" and kind.parent_uuid_column:
            rendered["parentId"] = data.get("parentId")
    if data.get("meta") is not None:
        rendered["meta"] = data["meta"]
    return rendered
