"""
Unit tests for DatasetStore.
"""

import threading

import pytest

from conftest import make_records
from models import ChatMessage, Record
from services.dataset_store import DatasetStore
from services.errors import NotFoundError
from services.storage import InMemoryStorage


class FailingStorage(InMemoryStorage):
    def upsert(self, item_id, fields):
        raise OSError("disk full")


class LockCheckingStorage(InMemoryStorage):
    """Records, for every write, whether another thread could take the store lock."""

    def __init__(self):
        super().__init__()
        self.store = None
        self.lock_free = []

    def _store_lock_is_free(self):
        acquired = []

        def attempt():
            got = self.store._lock.acquire(timeout=1)
            if got:
                self.store._lock.release()
            acquired.append(got)

        worker = threading.Thread(target=attempt)
        worker.start()
        worker.join()
        return acquired[0]

    def upsert(self, item_id, fields):
        self.lock_free.append(self._store_lock_is_free())
        super().upsert(item_id, fields)

    def delete(self, item_id):
        self.lock_free.append(self._store_lock_is_free())
        super().delete(item_id)


class TestReads:

    def test_order_and_membership(self, store):
        """Test id order, length and membership."""
        assert store.ids() == [f"r{i}" for i in range(10)]
        assert len(store) == 10
        assert "r3" in store
        assert "zz" not in store

    def test_get_returns_private_copy(self, store):
        """Test that get returns a copy the caller may mutate."""
        record = store.get("r0")
        record.answer = "mutated"

        assert store.get("r0").answer == "old answer"

    def test_get_missing(self, store):
        """Test reading an unknown id."""
        assert store.get("missing") is None
        with pytest.raises(NotFoundError):
            store.require("missing")

    def test_snapshot_is_isolated_from_later_merges(self, store):
        """Test that a snapshot does not see later merges."""
        snapshot = store.snapshot()
        store.merge("r0", {"answer": "new"})

        assert snapshot[0].answer == "old answer"


class TestMerge:

    def test_sets_fields_and_dirty_flag(self, store):
        """Test merging fields and marking the record unsaved."""
        assert store.merge("r1", {"answer": "new", "score": 4}) is True

        record = store.get("r1")
        assert (record.answer, record.score) == ("new", 4)
        assert record.has_unsaved_changes is True
        assert record.reasoning == "old reasoning"

    def test_missing_id_is_noop(self, store):
        """Test merging into an unknown id."""
        assert store.merge("gone", {"answer": "x"}) is False
        assert "gone" not in store

    def test_id_cannot_be_overwritten(self, store):
        """Test that a merge never changes the record id."""
        store.merge("r1", {"id": "hijack"})
        assert store.get("r1").id == "r1"

    def test_unknown_fields_go_to_extra(self, store):
        """Test that unknown fields accumulate in extra."""
        store.merge("r1", {"category": "math"})
        store.merge("r1", {"source": "web"})

        assert store.get("r1").extra == {"category": "math", "source": "web"}

    def test_message_dicts_are_converted(self, store):
        """Test that message dicts become ChatMessage objects."""
        store.merge("r2", {"messages": [{"role": "user", "content": "hi"}]})

        messages = store.get("r2").messages
        assert isinstance(messages[0], ChatMessage)
        assert messages[0].content == "hi"

    def test_mark_dirty_false(self, store):
        """Test merging without marking the record unsaved."""
        store.merge("r1", {"score": 3}, mark_dirty=False)
        assert store.get("r1").has_unsaved_changes is False

    def test_concurrent_merges_on_different_fields(self, store):
        """Test that concurrent merges of different fields all land."""
        def writer(field, value):
            for _ in range(200):
                store.merge("r0", {field: value})

        threads = [
            threading.Thread(target=writer, args=("answer", "A")),
            threading.Thread(target=writer, args=("reasoning", "R")),
            threading.Thread(target=writer, args=("score", 5)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        record = store.get("r0")
        assert (record.answer, record.reasoning, record.score) == ("A", "R", 5)


class TestPersistence:

    def test_save_dirty_writes_and_clears(self):
        """Test saving unsaved records to storage."""
        storage = InMemoryStorage()
        store = DatasetStore(make_records(3), storage=storage)
        store.merge("r1", {"answer": "new"})

        assert store.save_dirty() == 1
        assert storage.get("r1")["answer"] == "new"
        assert "has_unsaved_changes" not in storage.get("r1")
        assert storage.get("r0") is None
        assert store.dirty_count() == 0

    def test_save_without_storage(self, store):
        """Test saving when no storage is configured."""
        store.merge("r1", {"answer": "new"})
        assert store.save_dirty() == 0
        assert store.dirty_count() == 1

    def test_auto_save_writes_through(self):
        """Test write-through on merge with auto_save."""
        storage = InMemoryStorage()
        store = DatasetStore(make_records(2), storage=storage, auto_save=True)

        store.merge("r0", {"score": 5})

        assert storage.get("r0")["score"] == 5
        assert store.get("r0").has_unsaved_changes is False

    def test_failed_write_keeps_record_dirty(self):
        """Test that a failed storage write leaves the record unsaved."""
        store = DatasetStore(make_records(1), storage=FailingStorage(), auto_save=True)

        assert store.merge("r0", {"answer": "new"}) is True
        assert store.get("r0").answer == "new"
        assert store.get("r0").has_unsaved_changes is True
        assert store.save_dirty() == 0

    def test_replace_all_persists_import(self):
        """Test replacing the dataset and persisting it."""
        storage = InMemoryStorage()
        store = DatasetStore(make_records(5), storage=storage)

        assert store.replace_all([Record(id="x", query="q")]) == 1
        assert store.ids() == ["x"]
        assert storage.get("x")["query"] == "q"

    def test_delete_removes_from_storage(self):
        """Test deleting a record from store and storage."""
        storage = InMemoryStorage()
        store = DatasetStore(storage=storage)
        store.replace_all(make_records(2))

        assert store.delete("r0") is True
        assert storage.get("r0") is None
        assert store.delete("r0") is False

    def test_load_from_storage(self):
        """Test loading a store back from storage."""
        storage = InMemoryStorage()
        DatasetStore(storage=storage).replace_all(make_records(3))

        store = DatasetStore(storage=storage)
        assert store.load_from_storage() == 3
        assert store.ids() == ["r0", "r1", "r2"]
        assert store.get("r1").query == "Question <<q1>>"
        assert store.dirty_count() == 0

    def test_delete_many_reports_removed_ids(self):
        """Test bulk delete skips ids that are already gone."""
        storage = InMemoryStorage()
        store = DatasetStore(storage=storage)
        store.replace_all(make_records(4))

        assert store.delete_many(["r1", "missing", "r3"]) == ["r1", "r3"]
        assert store.ids() == ["r0", "r2"]
        assert storage.get("r3") is None


class TestStorageOutsideLock:

    def make_store(self, auto_save=False):
        storage = LockCheckingStorage()
        store = DatasetStore(storage=storage, auto_save=auto_save)
        storage.store = store
        return store, storage

    def test_import_write_through_releases_lock(self):
        """Test that import writes run while other threads can merge."""
        store, storage = self.make_store()

        store.replace_all(make_records(3))

        assert storage.lock_free == [True, True, True]
        assert store.dirty_count() == 0

    def test_delete_releases_lock(self):
        """Test that the storage delete runs without the record lock held."""
        store, storage = self.make_store()
        store.replace_all(make_records(2))
        storage.lock_free.clear()

        assert store.delete("r0") is True
        assert storage.lock_free == [True]

    def test_auto_save_and_save_dirty_release_lock(self):
        """Test write-through and explicit saves outside the record lock."""
        store, storage = self.make_store(auto_save=True)
        store.add_records(make_records(2))

        store.merge("r0", {"score": 4})
        store.auto_save = False
        store.merge("r1", {"score": 2})
        assert store.save_dirty() == 1

        assert storage.lock_free == [True, True]
        assert storage.get("r1")["score"] == 2

    def test_merge_during_write_keeps_record_dirty(self):
        """Test that a merge landing mid-write is not marked as saved."""
        store = DatasetStore(make_records(1))

        class InterleavingStorage(InMemoryStorage):
            def upsert(self, item_id, fields):
                super().upsert(item_id, fields)
                if fields.get("answer") == "first":
                    store.merge(item_id, {"answer": "second"})

        store.storage = InterleavingStorage()
        store.merge("r0", {"answer": "first"})

        assert store.save_dirty() == 1
        assert store.get("r0").answer == "second"
        assert store.get("r0").has_unsaved_changes is True
        assert store.save_dirty() == 1
        assert store.storage.get("r0")["answer"] == "second"
        assert store.dirty_count() == 0
