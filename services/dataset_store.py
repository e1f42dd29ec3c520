"""
DatasetStore: the shared in-memory record collection.

All concurrent writers go through merge(), which replaces fields of the
record with a given id under a lock. Merging into an id that no longer
exists is a no-op. Records are replaced copy-on-write, so snapshots handed
out to readers never change underneath them.
"""

import copy
import dataclasses
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from models.record import ChatMessage, Record
from services.errors import NotFoundError
from services.storage import StoragePort

logger = logging.getLogger(__name__)

_RECORD_FIELDS = {f.name for f in dataclasses.fields(Record)}


class DatasetStore:
    """
    Thread-safe record collection keyed by id, in import order.

    Attributes:
        storage: Optional durable backing
        auto_save: Write every merge through to storage immediately
    """

    def __init__(
        self,
        records: Optional[Iterable[Record]] = None,
        storage: Optional[StoragePort] = None,
        auto_save: bool = False,
    ):
        self._records: Dict[str, Record] = {}
        self._lock = threading.RLock()
        self._io_lock = threading.Lock()
        self.storage = storage
        self.auto_save = auto_save
        if records:
            self.add_records(records)

    def __deepcopy__(self, memo):
        # shared handle: UI state copies must keep pointing at the same data
        return self

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._records

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def get(self, item_id: str) -> Optional[Record]:
        """Return a private copy of a record, or None."""
        with self._lock:
            record = self._records.get(item_id)
            return copy.deepcopy(record) if record is not None else None

    def require(self, item_id: str) -> Record:
        record = self.get(item_id)
        if record is None:
            raise NotFoundError(item_id)
        return record

    def snapshot(self) -> List[Record]:
        """Copies of all records in order."""
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]

    def add_records(self, records: Iterable[Record]) -> int:
        """Insert records (replacing any with the same id). Returns the count."""
        count = 0
        with self._lock:
            for record in records:
                self._records[record.id] = copy.deepcopy(record)
                count += 1
        return count

    def replace_all(self, records: Iterable[Record]) -> int:
        """
        Swap in a freshly imported dataset.

        Only import calls this; jobs and edits always go through merge().
        Imported records are written to storage when one is configured.
        """
        fresh = {record.id: copy.deepcopy(record) for record in records}
        with self._lock:
            self._records = fresh
            count = len(fresh)
        if self.storage is not None:
            for item_id in list(fresh):
                self._flush(item_id)
        return count

    def merge(self, item_id: str, fields: Dict[str, Any], mark_dirty: bool = True) -> bool:
        """
        Replace fields of the record with item_id.

        Args:
            item_id: Target record id
            fields: Field values to set; unknown keys land in record.extra
            mark_dirty: Set has_unsaved_changes on the merged record

        Returns:
            False if the id is absent (the merge is then a no-op)
        """
        changes = {k: v for k, v in fields.items() if k in _RECORD_FIELDS and k != "id"}
        extra = {k: v for k, v in fields.items() if k not in _RECORD_FIELDS}
        if "messages" in changes and changes["messages"] is not None:
            changes["messages"] = [
                m if isinstance(m, ChatMessage) else ChatMessage.from_dict(m)
                for m in changes["messages"]
            ]
        changes = copy.deepcopy(changes)

        with self._lock:
            current = self._records.get(item_id)
            if current is None:
                logger.info("Merge skipped, record %s no longer exists", item_id)
                return False
            if extra:
                changes["extra"] = {**current.extra, **extra}
            if mark_dirty:
                changes["has_unsaved_changes"] = True
            self._records[item_id] = dataclasses.replace(current, **changes)
        if self.auto_save and self.storage is not None:
            self._flush(item_id)
        return True

    def delete(self, item_id: str) -> bool:
        with self._io_lock:
            with self._lock:
                removed = self._records.pop(item_id, None)
            if removed is not None and self.storage is not None:
                self.storage.delete(item_id)
        return removed is not None

    def delete_many(self, item_ids: Iterable[str]) -> List[str]:
        """Delete every listed id that exists. Returns the ids actually removed."""
        return [item_id for item_id in list(item_ids) if self.delete(item_id)]

    def save_dirty(self) -> int:
        """Write all records with unsaved changes to storage. Returns the count."""
        if self.storage is None:
            return 0
        with self._lock:
            dirty = [r.id for r in self._records.values() if r.has_unsaved_changes]
        return sum(1 for item_id in dirty if self._flush(item_id))

    def load_from_storage(self) -> int:
        """Replace the in-memory records with everything in storage."""
        if self.storage is None or not hasattr(self.storage, "load_all"):
            return 0
        payloads = self.storage.load_all()
        with self._lock:
            self._records = {}
            for payload in payloads:
                record = Record.from_dict(payload)
                record.has_unsaved_changes = False
                self._records[record.id] = record
            return len(self._records)

    def dirty_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._records.values() if r.has_unsaved_changes)

    def _flush(self, item_id: str) -> bool:
        """
        Write the current version of a record to storage.

        Storage calls run outside the record lock, so merges from job
        workers never wait on disk I/O. Flushes are serialized among
        themselves, so the last write always carries the latest version.
        The dirty flag is cleared only if no merge landed in the meantime.
        """
        with self._io_lock:
            with self._lock:
                record = self._records.get(item_id)
            if record is None:
                return False
            payload = record.to_dict()
            payload.pop("has_unsaved_changes", None)
            try:
                self.storage.upsert(item_id, payload)
            except Exception:
                logger.exception("Failed to persist record %s", item_id)
                return False
            with self._lock:
                if self._records.get(item_id) is record:
                    self._records[item_id] = dataclasses.replace(record, has_unsaved_changes=False)
        return True
