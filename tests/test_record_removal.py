"""
Unit tests for bulk record removal.
"""

import pytest

from conftest import make_records
from services.dataset_store import DatasetStore
from services.record_removal import (
    SCOPE_BELOW_SCORE,
    SCOPE_DISCARDED,
    SCOPE_SELECTION,
    remove_records,
    select_for_removal,
)
from services.storage import InMemoryStorage


@pytest.fixture
def scored_store():
    store = DatasetStore(make_records(6))
    for item_id, score in (("r0", 1), ("r1", 2), ("r2", 3), ("r3", 5)):
        store.merge(item_id, {"score": score}, mark_dirty=False)
    store.merge("r4", {"is_discarded": True}, mark_dirty=False)
    return store


class TestSelect:

    def test_selection_keeps_dataset_order(self, scored_store):
        """Test that selected ids come back in dataset order."""
        candidates = select_for_removal(scored_store.snapshot(), SCOPE_SELECTION, item_ids=["r5", "r1", "zz"])

        assert [c.item_id for c in candidates] == ["r1", "r5"]
        assert candidates[0].score == 2
        assert candidates[0].query_preview == "Question <<q1>>"

    def test_discarded(self, scored_store):
        """Test picking discarded records."""
        candidates = select_for_removal(scored_store.snapshot(), SCOPE_DISCARDED)
        assert [c.item_id for c in candidates] == ["r4"]

    def test_below_score_ignores_unrated(self, scored_store):
        """Test that only rated records below the threshold match."""
        candidates = select_for_removal(scored_store.snapshot(), SCOPE_BELOW_SCORE, score_threshold=3)
        assert [c.item_id for c in candidates] == ["r0", "r1"]

    @pytest.mark.parametrize("threshold", [None, 0, 6])
    def test_invalid_threshold(self, scored_store, threshold):
        """Test thresholds outside 1-5."""
        with pytest.raises(ValueError):
            select_for_removal(scored_store.snapshot(), SCOPE_BELOW_SCORE, score_threshold=threshold)

    def test_selection_needs_ids(self, scored_store):
        """Test a selection without ids."""
        with pytest.raises(ValueError):
            select_for_removal(scored_store.snapshot(), SCOPE_SELECTION)

    def test_unknown_scope(self, scored_store):
        """Test an unknown scope."""
        with pytest.raises(ValueError):
            select_for_removal(scored_store.snapshot(), "everything")


class TestRemove:

    def test_dry_run_deletes_nothing(self, scored_store):
        """Test that a dry run only reports candidates."""
        report = remove_records(scored_store, SCOPE_BELOW_SCORE, score_threshold=4, dry_run=True)

        assert [c.item_id for c in report.candidates] == ["r0", "r1", "r2"]
        assert report.removed == []
        assert len(scored_store) == 6
        assert report.describe() == "Would remove 3 records"

    def test_removes_from_store_and_storage(self):
        """Test that removal deletes from the store and its storage."""
        storage = InMemoryStorage()
        store = DatasetStore(storage=storage)
        store.replace_all(make_records(3))
        store.merge("r1", {"is_discarded": True})

        report = remove_records(store, SCOPE_DISCARDED)

        assert report.removed == ["r1"]
        assert store.ids() == ["r0", "r2"]
        assert storage.get("r1") is None
        assert report.describe() == "Removed 1 records"

    def test_no_candidates(self, scored_store):
        """Test a request that matches nothing."""
        report = remove_records(scored_store, SCOPE_SELECTION, item_ids=["missing"])

        assert report.candidates == []
        assert len(scored_store) == 6
        assert report.describe() == "No records matched the removal criteria"
