"""
Property-based tests for DataManager.

Tests universal properties of dataset import and row normalization.
"""

import json
import os
import tempfile

from hypothesis import given, strategies as st, settings

from services import DataManager
from services.data_manager import normalize_import_item, parse_records_text

field_text = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc")),
    min_size=1,
    max_size=50,
).filter(lambda s: s.strip() and "<think>" not in s)

row_ids = st.one_of(st.none(), st.sampled_from(["a", "b", "c", "d"]))


# Feature: llm-qa-curation-workbench, Property 6: Loaded ids are unique, whatever ids the file carries
@given(st.lists(row_ids, min_size=1, max_size=30))
@settings(max_examples=50, deadline=None)
def test_loaded_ids_are_unique(ids):
    """
    For any JSONL file, including files that repeat ids or omit them, every
    loaded record gets a distinct id and the row order is kept.
    """
    rows = [{"query": f"Question {i}"} if item_id is None else {"id": item_id, "query": f"Question {i}"}
            for i, item_id in enumerate(ids)]
    with tempfile.NamedTemporaryFile(mode="w", suffix=".jsonl", delete=False, encoding="utf-8") as f:
        f.write("\n".join(json.dumps(row) for row in rows))
        path = f.name

    try:
        records = DataManager().load_file(path)

        assert len(records) == len(rows)
        assert len({r.id for r in records}) == len(records)
        assert [r.query for r in records] == [row["query"] for row in rows]
    finally:
        if os.path.exists(path):
            os.remove(path)


# Feature: llm-qa-curation-workbench, Property 7: Query aliases are interchangeable
@given(field_text, field_text, st.sampled_from(["query", "instruction", "question", "prompt"]),
       st.sampled_from(["answer", "output", "response", "completion"]))
@settings(max_examples=100, deadline=None)
def test_aliases_normalize_to_same_record(query, answer, query_key, answer_key):
    """For any alias pair, normalization yields the same query and answer."""
    record = normalize_import_item({"id": "x", query_key: query, answer_key: answer})

    assert record.query == query
    assert record.answer == answer
    assert record.extra == {}


# Feature: llm-qa-curation-workbench, Property 8: Unknown keys survive import
@given(st.dictionaries(st.text(alphabet="xyz", min_size=3, max_size=6), st.integers(), max_size=5))
@settings(max_examples=100, deadline=None)
def test_unknown_keys_are_preserved(extra):
    """Keys the importer does not understand are kept in Record.extra."""
    record = normalize_import_item({"query": "q", **extra})
    assert record.extra == extra


# Feature: llm-qa-curation-workbench, Property 9: JSON arrays and JSONL parse to the same rows
@given(st.lists(st.fixed_dictionaries({"query": field_text, "answer": field_text}), min_size=2, max_size=20))
@settings(max_examples=50, deadline=None)
def test_array_and_jsonl_agree(rows):
    """A JSON array document and the JSONL rendering of it give identical rows."""
    as_array, _ = parse_records_text(json.dumps(rows))
    as_jsonl, skipped = parse_records_text("\n".join(json.dumps(r) for r in rows))

    assert as_array == rows
    assert as_jsonl == rows
    assert skipped == 0
