"""Change collector: what a client has not seen since its last sync."""

import logging
from typing import List, Optional

from taakl.types import ACTION_DELETE, ACTION_UPDATE, ChangeRecord

from .entities import ENTITY_KINDS, render_data, row_to_data
from .resolver import OwnershipResolver

logger = logging.getLogger(__name__)


class ChangeCollector:
    """Collects change records for one account.

    Records come out kind by kind in ``ENTITY_KINDS`` order (legacy kinds
    before generalized ones) and by row id within a kind. Soft-deleted rows
    are reported as deletes so clients can drop them.
    """

    def __init__(self, resolver: OwnershipResolver):
        self._resolver = resolver

    def collect_since(self, cutoff: Optional[str]) -> List[ChangeRecord]:
        """Every row modified strictly after ``cutoff``; all rows when it is None."""
        changes: List[ChangeRecord] = []
        for kind in ENTITY_KINDS.values():
            for entity in self._resolver.scan(kind, updated_after=cutoff):
                data = render_data(kind, entity.uuid, row_to_data(kind, entity.row))
                changes.append(
                    ChangeRecord(
                        action=ACTION_DELETE if entity.is_deleted else ACTION_UPDATE,
                        type=kind.name,
                        uuid=entity.uuid,
                        data=data,
                        parent_uuid=entity.parent_uuid,
                        has_parent=kind.has_parent,
                    )
                )
        logger.debug(f"Collected {len(changes)} changes since {cutoff}")
        return changes
