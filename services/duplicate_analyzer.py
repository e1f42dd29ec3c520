"""
Duplicate Analyzer: groups records by normalized query text.

analyze() is a full recompute over a record list. It is called on import and
on manual re-scan, never on every edit.
"""

import logging
import uuid
from typing import Dict, List, Optional

from models.record import Record
from services.dataset_store import DatasetStore

logger = logging.getLogger(__name__)


def _members_by_group(groups: Dict[str, List[str]]) -> Dict[str, frozenset]:
    return {group_id: frozenset(ids) for group_id, ids in groups.items()}


def duplicate_key(record: Record) -> str:
    """Normalized grouping key: trimmed, case-folded query (or seed) text."""
    return (record.query or record.full_seed or "").strip().casefold()


class DuplicateAnalyzer:
    """Detects and resolves duplicate records."""

    def analyze(self, records: List[Record]) -> int:
        """
        Reset and recompute duplicate flags in place.

        Discarded records and records with an empty key never join a group.

        Returns:
            Number of duplicate groups found
        """
        buckets: Dict[str, List[Record]] = {}
        for record in records:
            record.is_duplicate = False
            record.duplicate_group_id = None
            if record.is_discarded:
                continue
            key = duplicate_key(record)
            if key:
                buckets.setdefault(key, []).append(record)

        group_count = 0
        for members in buckets.values():
            if len(members) < 2:
                continue
            group_id = str(uuid.uuid4())
            for record in members:
                record.is_duplicate = True
                record.duplicate_group_id = group_id
            group_count += 1

        logger.info("Duplicate scan: %d groups across %d records", group_count, len(records))
        return group_count

    def groups(self, records: List[Record]) -> Dict[str, List[str]]:
        """Current group membership (group id -> record ids, original order)."""
        result: Dict[str, List[str]] = {}
        for record in records:
            if record.is_duplicate and record.duplicate_group_id and not record.is_discarded:
                result.setdefault(record.duplicate_group_id, []).append(record.id)
        return result

    def auto_resolve(self, records: List[Record]) -> List[str]:
        """
        Keep one representative per duplicate group and discard the rest.

        Members are ranked by score (desc), then answer length (desc), then
        original position, so the same inputs always keep the same record.

        Returns:
            IDs of the records newly discarded
        """
        position = {id(record): idx for idx, record in enumerate(records)}
        grouped: Dict[str, List[Record]] = {}
        for record in records:
            if record.is_duplicate and record.duplicate_group_id and not record.is_discarded:
                grouped.setdefault(record.duplicate_group_id, []).append(record)

        discarded: List[str] = []
        for members in grouped.values():
            if len(members) < 2:
                continue
            ranked = sorted(
                members,
                key=lambda r: (-(r.score or 0), -len(r.answer or ""), position[id(r)]),
            )
            for record in ranked[1:]:
                record.is_discarded = True
                record.has_unsaved_changes = True
                discarded.append(record.id)

        logger.info("Auto-resolve discarded %d records", len(discarded))
        return discarded

    def rescan(self, store: DatasetStore) -> int:
        """
        Re-analyze the records of a store and merge the changed flags back.

        Records whose duplicate flags changed are marked unsaved.

        Returns:
            Number of duplicate groups found
        """
        records = store.snapshot()
        old_ids = {r.id: r.duplicate_group_id for r in records if r.is_duplicate}
        old_members = _members_by_group(self.groups(records))
        group_count = self.analyze(records)
        new_members = _members_by_group(self.groups(records))

        for record in records:
            old_group = old_ids.get(record.id)
            if record.is_duplicate and old_group is not None:
                # unchanged membership keeps its old group id
                if old_members.get(old_group) == new_members.get(record.duplicate_group_id):
                    record.duplicate_group_id = old_group
            if record.is_duplicate == (record.id in old_ids) and record.duplicate_group_id == old_group:
                continue
            store.merge(
                record.id,
                {"is_duplicate": record.is_duplicate, "duplicate_group_id": record.duplicate_group_id},
            )
        return group_count

    def resolve_store(self, store: DatasetStore) -> List[str]:
        """Run auto_resolve over a store and merge the discards back."""
        records = store.snapshot()
        discarded = self.auto_resolve(records)
        for item_id in discarded:
            store.merge(item_id, {"is_discarded": True})
        return discarded

    def toggle_duplicate(self, store: DatasetStore, item_id: str) -> Optional[bool]:
        """
        Flip a record's duplicate flag by hand.

        Returns:
            The new flag, or None if the record does not exist
        """
        record = store.get(item_id)
        if record is None:
            return None
        flagged = not record.is_duplicate
        store.merge(
            item_id,
            {
                "is_duplicate": flagged,
                "duplicate_group_id": record.duplicate_group_id if flagged else None,
            },
        )
        return flagged
