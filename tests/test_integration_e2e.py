"""
End-to-end integration tests for the complete workflow.

Tests the full workflow: Import → Scan duplicates → Resolve → Bulk rewrite →
Autoscore → Edit → Save → Export
"""

import json
import os
import tempfile
import threading

from conftest import FakeModelPort, marker_of
from services.storage import SqliteStorage
from ui.event_handlers import (
    create_app_state,
    handle_auto_resolve,
    handle_export,
    handle_file_upload,
    handle_save_edits,
    handle_save_session,
    handle_start_job,
    load_record_to_ui,
)
from utils.config import Settings


def responder(system_prompt, user_prompt, call_number):
    """Scores with 4, rewrites answers with a marker-derived text."""
    if "Score the quality" in system_prompt:
        return "4"
    return f"Improved answer {marker_of(user_prompt)}"


def create_test_jsonl(tmp_dir):
    rows = [
        {"id": f"q{i}", "instruction": f"Question <<q{i}>>", "output": f"Answer {i}"}
        for i in range(5)
    ]
    rows.append({"id": "dup", "instruction": "question <<q0>> ", "output": "Answer dup, longer"})
    path = os.path.join(tmp_dir, "seed_data.jsonl")
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(json.dumps(row) for row in rows))
    return path


def run_job(state, mode):
    _, status = handle_start_job(mode, "all", 2, 0, 0, 0, False, False, None, state)
    assert "任务已启动" in status
    return state.active_job.wait(10)


def test_complete_workflow():
    """
    Import a file, resolve duplicates, rewrite and score in bulk, edit one
    record, persist to SQLite and export.
    """
    with tempfile.TemporaryDirectory() as tmp:
        db_path = os.path.join(tmp, "curation.db")
        storage = SqliteStorage(db_path)
        state = create_app_state(settings=Settings(), storage=storage, model_port=FakeModelPort(responder))

        # Step 1: Import with duplicate scan
        state, status = handle_file_upload(create_test_jsonl(tmp), True, state)
        assert "成功加载 6 条数据" in status
        assert "发现 1 组重复" in status
        assert state.source_name == "seed_data"

        # Step 2: Auto-resolve keeps the longer answer
        handle_auto_resolve(state)
        assert state.store.get("q0").is_discarded is True
        assert state.store.get("dup").is_discarded is False

        # Step 3: Bulk rewrite skips the discarded record
        summary = run_job(state, "answer")
        assert summary.progress.total == 5
        assert summary.progress.updated == 5
        assert state.store.get("q3").answer == "Improved answer 3"
        assert state.store.get("q0").answer == "Answer 0"

        # Step 4: Autoscore
        summary = run_job(state, "autoscore")
        assert summary.progress.updated == 5
        assert state.store.get("q1").score == 4

        # Step 5: Edit the first visible record
        query, reasoning, answer, score, *_ = load_record_to_ui(state)
        handle_save_edits(query, "hand-written reasoning", answer, 5, state)
        assert state.store.get("q0").reasoning == "hand-written reasoning"

        # Step 6: Save to SQLite and reload in a fresh session
        assert "已保存 6 条记录" in handle_save_session(state)
        storage.close()
        reopened = SqliteStorage(db_path)
        fresh = create_app_state(settings=Settings(), storage=reopened, model_port=FakeModelPort("x"))
        assert fresh.store.load_from_storage() == 6
        assert fresh.store.get("q1").score == 4
        assert fresh.store.dirty_count() == 0

        # Step 7: Export the kept records
        path, status = handle_export("messages", False, None, fresh, output_dir=tmp)
        assert "导出成功" in status
        with open(path, "r", encoding="utf-8") as f:
            exported = json.load(f)
        reopened.close()

    assert [row["id"] for row in exported] == ["q1", "q2", "q3", "q4", "dup"]
    assert exported[0]["messages"][1]["content"] == "Improved answer 1"
    assert exported[0]["score"] == 4


def test_cancelled_job_keeps_merged_results():
    """Cancelling a running job leaves finished merges in place and the rest untouched."""
    gate = threading.Event()

    def slow_responder(system_prompt, user_prompt, call_number):
        if call_number > 2:
            gate.wait(10)
        return f"Improved answer {marker_of(user_prompt)}"

    with tempfile.TemporaryDirectory() as tmp:
        state = create_app_state(settings=Settings(), model_port=FakeModelPort(slow_responder))
        handle_file_upload(create_test_jsonl(tmp), False, state)

        handle_start_job("answer", "all", 1, 0, 0, 0, False, False, None, state)
        job = state.active_job
        while job.progress().completed < 2:
            job.wait(0.05)
        job.cancel()
        gate.set()
        summary = job.wait(10)

    assert summary.status.value == "cancelled"
    answers = [r.answer for r in state.records()]
    assert answers == [
        "Improved answer 0", "Improved answer 1", "Answer 2", "Answer 3", "Answer 4", "Answer dup, longer",
    ]
