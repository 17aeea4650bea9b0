"""
Shared sync types for taakl.

These dataclasses are the vocabulary between the HTTP layer and the sync
core: a Mutation comes in from a client, a ChangeRecord goes back out, and
the stats objects summarize a batch or an import.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

# Wall-clock form used for every stored timestamp (UTC, second granularity).
# Strings in this form sort the same way the instants they name do.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# === Mutation actions ===

ACTION_INSERT = "insert"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"

ACTIONS = frozenset({ACTION_INSERT, ACTION_UPDATE, ACTION_DELETE})

# === Errors ===


class TaaklError(Exception):
    """Base class for taakl errors."""


class StorageError(TaaklError):
    """Raised when the store cannot be opened or initialized."""


class ValidationError(TaaklError, ValueError):
    """Raised when a full-tree snapshot is structurally malformed."""


# === Timestamps ===


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the stored wall-clock form.

    Aware datetimes are converted to UTC first; naive ones are taken as-is.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def utc_now() -> str:
    """Get the current server time in the stored wall-clock form."""
    return format_timestamp(datetime.now(timezone.utc))


def normalize_timestamp(value: Any) -> Optional[str]:
    """Normalize a client-supplied timestamp to the stored wall-clock form.

    Accepts datetimes and ISO-8601 strings (``T`` or space separator,
    optional fractional seconds, ``Z`` or numeric offsets). Returns None
    when the value is empty or cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return format_timestamp(parsed)


# === Sync records ===


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


@dataclass
class Mutation:
    """One client-asserted change to one entity."""

    action: str
    type: str
    uuid: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None
    parent_uuid: Optional[str] = None

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> "Mutation":
        """Build a mutation from its wire shape.

        Missing or oddly typed keys are coerced to empty values so that
        validation can reject the mutation instead of raising.
        """
        data = raw.get("data")
        parent_uuid = raw.get("parentUuid")
        timestamp = raw.get("timestamp")
        return cls(
            action=_as_text(raw.get("action")),
            type=_as_text(raw.get("type")),
            uuid=_as_text(raw.get("uuid")),
            data=dict(data) if isinstance(data, Mapping) else {},
            timestamp=timestamp if timestamp not in ("", None) else None,
            parent_uuid=_as_text(parent_uuid) or None,
        )


@dataclass
class ChangeRecord:
    """One server-side change the caller has not seen yet."""

    action: str
    type: str
    uuid: str
    data: Dict[str, Any]
    parent_uuid: Optional[str] = None
    has_parent: bool = True

    def to_wire(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "action": self.action,
            "type": self.type,
            "uuid": self.uuid,
        }
        # Account-owned legacy roots (clients) carry no parentUuid key at all.
        if self.has_parent:
            record["parentUuid"] = self.parent_uuid
        record["data"] = self.data
        return record


@dataclass
class SyncStats:
    """Counters for one incremental sync batch."""

    processed: int = 0
    accepted: int = 0
    conflicts: int = 0
    returned: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ImportStats:
    """Per-type counts of records processed by a full import."""

    clients: int = 0
    projects: int = 0
    tasks: int = 0
    sessions: int = 0
    nodes: int = 0
    node_sessions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class SyncResult:
    """Outcome of an incremental sync call."""

    server_time: str
    changes: List[ChangeRecord] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "serverTime": self.server_time,
            "changes": [change.to_wire() for change in self.changes],
            "stats": self.stats.to_dict(),
        }
