"""
Unit tests for UI event handlers.

Handlers are exercised directly against an ApplicationState wired to a
scripted model port, without launching Gradio.
"""

import json
import os
import tempfile

import pytest

from conftest import FakeModelPort, marker_of
from models import ChatMessage, Record
from services.storage import InMemoryStorage
from ui.event_handlers import (
    PROMPT_KEYS,
    create_app_state,
    generate_groups_html,
    generate_job_history_html,
    generate_record_list_html,
    handle_auto_resolve,
    handle_cancel_job,
    handle_cancel_single,
    handle_export,
    handle_file_upload,
    handle_filter_change,
    handle_jump,
    handle_navigation,
    handle_poll_job,
    handle_prompt_reset,
    handle_prompt_save,
    handle_prompt_select,
    handle_remove_records,
    handle_rerun_job,
    handle_rescan,
    handle_save_edits,
    handle_save_session,
    handle_single_rewrite,
    handle_start_job,
    handle_toggle_discard,
    handle_toggle_duplicate,
    job_history_choices,
    load_record_to_ui,
    message_choices,
)
from utils.config import Settings

ROWS = [
    {"id": "a", "query": "Question <<q0>>", "answer": "A0", "score": 3},
    {"id": "b", "query": "Same question", "answer": "short"},
    {"id": "c", "query": "same question ", "answer": "a longer answer"},
]


def write_temp(content, suffix):
    with tempfile.NamedTemporaryFile(mode="w", suffix=suffix, delete=False, encoding="utf-8") as f:
        f.write(content)
        return f.name


def load(state, rows, auto_scan=True):
    path = write_temp("\n".join(json.dumps(row, ensure_ascii=False) for row in rows), ".jsonl")
    try:
        return handle_file_upload(path, auto_scan, state)
    finally:
        os.remove(path)


@pytest.fixture
def state():
    port = FakeModelPort(lambda system, user, n: f"rewritten {marker_of(user)}")
    return create_app_state(settings=Settings(), model_port=port)


class TestImport:

    def test_upload_loads_and_scans(self, state):
        """Test uploading a file with the duplicate scan."""
        state, status = load(state, ROWS)

        assert "成功加载 3 条数据" in status
        assert "发现 1 组重复" in status
        assert state.get_total_loaded() == 3
        assert state.get_duplicate_count() == 2
        assert state.store.dirty_count() == 0

    def test_upload_without_scan(self, state):
        """Test uploading without the duplicate scan."""
        state, status = load(state, ROWS, auto_scan=False)

        assert "重复" not in status
        assert state.get_duplicate_count() == 0

    def test_no_file(self, state):
        """Test upload with no file."""
        _, status = handle_file_upload(None, True, state)
        assert "请先上传数据文件" in status

    def test_missing_file(self, state):
        """Test upload of a missing file."""
        _, status = handle_file_upload("/nonexistent/data.jsonl", True, state)
        assert "文件未找到" in status

    def test_bad_columns(self, state):
        """Test upload of a CSV without usable columns."""
        path = write_temp("wrong_col1,wrong_col2\nvalue1,value2\n", ".csv")
        try:
            _, status = handle_file_upload(path, True, state)
        finally:
            os.remove(path)
        assert "文件格式错误" in status
        assert state.get_total_loaded() == 0

    def test_empty_file(self, state):
        """Test upload of an empty file."""
        _, status = load(state, [])
        assert "文件为空" in status

    def test_skipped_rows_are_reported(self, state):
        """Test that skipped rows are reported."""
        path = write_temp('{"query": "ok"}\n{broken\n', ".jsonl")
        try:
            _, status = handle_file_upload(path, False, state)
        finally:
            os.remove(path)
        assert "跳过 1 行无效数据" in status


class TestReview:

    def test_load_record_to_ui(self, state):
        """Test loading the current record into the review fields."""
        load(state, ROWS)

        query, reasoning, answer, score, record_html, list_html, stats_html = load_record_to_ui(state)

        assert (query, answer, score) == ("Question <<q0>>", "A0", 3)
        assert "record-card" in record_html
        assert list_html.count('class="record-item') == 3
        assert "总数 3" in stats_html

    def test_empty_state(self):
        """Test the review fields with no state."""
        result = load_record_to_ui(None)
        assert result[:4] == ("", "", "", 0)
        assert "暂无数据" in result[5]

    def test_navigation_is_clamped(self, state):
        """Test that navigation stays within the list."""
        load(state, ROWS)

        handle_navigation("prev", state)
        assert state.current_index == 0
        for _ in range(5):
            handle_navigation("next", state)
        assert state.current_index == 2

    def test_jump(self, state):
        """Test jumping to a record number."""
        load(state, ROWS)

        handle_jump(2, state)
        assert state.current_index == 1
        handle_jump("abc", state)
        handle_jump(99, state)
        handle_jump(0, state)
        assert state.current_index == 1

    def test_filter_duplicates(self, state):
        """Test the duplicates filter."""
        load(state, ROWS)

        handle_filter_change("duplicates", state)

        assert [r.id for r in state.visible_records()] == ["b", "c"]
        assert state.get_current_record().id == "b"
        handle_filter_change("bogus", state)
        assert state.filter_mode == "all"

    def test_save_edits(self, state):
        """Test saving edits to the current record."""
        load(state, ROWS)

        _, status = handle_save_edits("New Q", "New R", "New A", 5, state)

        record = state.store.get("a")
        assert "已保存" in status
        assert (record.query, record.reasoning, record.answer, record.score) == ("New Q", "New R", "New A", 5)
        assert record.has_unsaved_changes is True

    def test_save_edits_rejects_bad_input(self, state):
        """Test saving an invalid score or empty query."""
        load(state, ROWS)

        _, status = handle_save_edits("Q", "", "", 7, state)
        assert "评分必须在0到5之间" in status
        _, status = handle_save_edits("  ", "", "", 1, state)
        assert "问题不能为空" in status
        assert state.store.get("a").has_unsaved_changes is False

    def test_save_edits_on_multi_turn_only_scores(self, state):
        """Test that only the score is saved for a conversation."""
        load(state, [{"id": "m", "messages": [
            {"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]}])

        handle_save_edits("ignored", "ignored", "ignored", 4, state)

        record = state.store.get("m")
        assert record.score == 4
        assert record.answer == "hello"

    def test_toggle_discard_and_duplicate(self, state):
        """Test the discard and duplicate toggles."""
        load(state, ROWS, auto_scan=False)

        handle_toggle_discard(state)
        assert state.store.get("a").is_discarded is True
        handle_toggle_discard(state)
        assert state.store.get("a").is_discarded is False

        _, status = handle_toggle_duplicate(state)
        assert state.store.get("a").is_duplicate is True
        assert "已标记为重复" in status

    def test_message_choices(self):
        """Test the message dropdown choices."""
        record = Record(id="m", messages=[ChatMessage("user", "hi\nthere"), ChatMessage("assistant", "yo")])
        assert message_choices(record) == [("#0 user: hi there", 0), ("#1 assistant: yo", 1)]
        assert message_choices(Record(id="f")) == []

    def test_record_list_markers(self):
        """Test the markers in the record list."""
        records = [Record(id="1", query="q", is_discarded=True), Record(id="2", query="<b>", score=4)]
        html = generate_record_list_html(records, 1)
        assert "❌" in html
        assert "4/5" in html
        assert "&lt;b&gt;" in html


class TestRewrite:

    def test_single_rewrite_streams_and_merges(self, state):
        """Test a single rewrite from the review tab."""
        load(state, ROWS)

        preview, status = list(handle_single_rewrite("answer", None, state))[-1]

        assert "改写完成" in status
        assert "rewritten 0" in preview
        assert state.store.get("a").answer == "rewritten 0"

    def test_unknown_target(self, state):
        """Test a single rewrite with an unknown target."""
        load(state, ROWS)
        _, status = list(handle_single_rewrite("poem", None, state))[-1]
        assert "未知的改写目标" in status

    def test_message_target_on_flat_record_fails_cleanly(self, state):
        """Test a message target on a flat record."""
        load(state, ROWS)
        _, status = list(handle_single_rewrite("message", 3, state))[-1]
        assert "改写失败" in status
        assert state.store.get("a").answer == "A0"

    def test_cancel_single_without_rewrite(self, state):
        """Test cancelling when no rewrite runs."""
        load(state, ROWS)
        assert "没有进行中的改写" in handle_cancel_single(None, state)


class TestDuplicates:

    def test_groups_html(self, state):
        """Test the duplicate group listing."""
        load(state, ROWS)
        html = generate_groups_html(state)
        assert "共 1 组重复" in html
        assert "<code>b</code>" in html

    def test_rescan_and_resolve(self, state):
        """Test rescanning and auto-resolving."""
        load(state, ROWS, auto_scan=False)

        _, status = handle_rescan(state)
        assert "发现 1 组重复" in status
        _, status = handle_auto_resolve(state)
        assert "丢弃 1 条记录" in status
        assert state.store.get("b").is_discarded is True
        assert state.store.get("c").is_discarded is False

    def test_remove_dry_run_then_delete(self, state):
        """Test previewing and then removing discarded records."""
        load(state, ROWS)
        state.store.merge("b", {"is_discarded": True})

        _, status = handle_remove_records("discarded", None, True, state)
        assert "将删除 1 条记录" in status
        assert "b" in state.store

        _, status = handle_remove_records("discarded", None, False, state)
        assert "已删除 1 条记录" in status
        assert state.store.ids() == ["a", "c"]

    def test_remove_selection_uses_current_filter(self, state):
        """Test that the selection scope removes the filtered records."""
        load(state, ROWS)
        handle_filter_change("unrated", state)

        handle_remove_records("selection", None, False, state)

        assert state.store.ids() == ["a"]

    def test_remove_below_score(self, state):
        """Test removing rated records below a threshold."""
        load(state, ROWS)
        state.store.merge("c", {"score": 5})

        _, status = handle_remove_records("below_score", 4, False, state)

        assert "已删除 1 条记录" in status
        assert state.store.ids() == ["b", "c"]

    def test_remove_rejects_bad_threshold(self, state):
        """Test a threshold that is not a number or out of range."""
        load(state, ROWS)
        assert "评分阈值必须是整数" in handle_remove_records("below_score", "high", False, state)[1]
        assert "between 1 and 5" in handle_remove_records("below_score", 9, False, state)[1]
        assert len(state.store) == 3

    def test_remove_nothing_matches(self, state):
        """Test a removal that matches no records."""
        load(state, ROWS)
        assert "没有符合条件的记录" in handle_remove_records("discarded", None, False, state)[1]


class TestJobs:

    def start(self, state, scope="all", concurrency=2):
        return handle_start_job("answer", scope, concurrency, 0, 0, 0, False, False, None, state)

    def test_bulk_job_skips_discarded(self, state):
        """Test that a bulk job leaves out discarded records."""
        load(state, ROWS)
        state.store.merge("b", {"is_discarded": True})

        _, status = self.start(state)
        assert "任务已启动" in status
        summary = state.active_job.wait(10)

        assert summary.progress.total == 2
        assert summary.progress.updated == 2
        assert state.store.get("b").answer == "short"
        progress_html, log = handle_poll_job(state)
        assert "2/2" in progress_html
        assert "finish" in log

    def test_invalid_config(self, state):
        """Test starting a job with an invalid config."""
        load(state, ROWS)
        _, status = self.start(state, concurrency=0)
        assert "并发数" in status
        assert state.active_job is None

    def test_current_scope(self, state):
        """Test a job over the current record only."""
        load(state, ROWS)
        self.start(state, scope="current")
        assert state.active_job.wait(10).progress.total == 1

    def test_poll_and_cancel_without_job(self, state):
        """Test polling and cancelling with no job."""
        assert "暂无任务" in handle_poll_job(state)[0]
        assert "没有运行中的任务" in handle_cancel_job(state)

    def test_history_and_rerun(self, state):
        """Test listing a finished job and rerunning it."""
        load(state, ROWS)
        self.start(state)
        first = state.active_job.wait(10)

        choices = job_history_choices(state)
        assert [value for _, value in choices] == [first.job_id]
        assert first.job_id in generate_job_history_html(state)

        _, status = handle_rerun_job(first.job_id, state)
        assert "已重新运行任务" in status
        assert state.active_job.job_id != first.job_id
        assert state.active_job.wait(10).progress.total == 3
        assert len(job_history_choices(state)) == 2

    def test_rerun_without_selection(self, state):
        """Test rerunning with no or an unknown job id."""
        assert "暂无历史任务" in generate_job_history_html(state)
        assert "请先选择历史任务" in handle_rerun_job(None, state)[1]
        assert "未找到任务" in handle_rerun_job("missing", state)[1]


class TestSaveAndExport:

    def test_save_session_without_storage(self, state):
        """Test saving with no storage configured."""
        assert "未配置持久化存储" in handle_save_session(state)

    def test_save_session(self):
        """Test saving unsaved records to storage."""
        storage = InMemoryStorage()
        state = create_app_state(settings=Settings(), storage=storage, model_port=FakeModelPort("x"))
        load(state, ROWS)
        state.store.merge("a", {"score": 5})

        status = handle_save_session(state)

        assert "已保存 1 条记录" in status
        assert storage.get("a")["score"] == 5

    def test_export(self, state):
        """Test exporting from the export tab."""
        load(state, ROWS)
        state.store.merge("a", {"is_discarded": True})

        with tempfile.TemporaryDirectory() as tmp:
            path, status = handle_export("alpaca", True, None, state, output_dir=tmp)
            with open(path, "r", encoding="utf-8") as f:
                rows = [json.loads(line) for line in f]

        assert "导出成功" in status
        assert [row["id"] for row in rows] == ["b", "c"]

    def test_export_nothing(self, state):
        """Test exporting with no records."""
        path, status = handle_export("columns", False, None, state)
        assert path is None
        assert "没有可导出的记录" in status

    def test_export_bad_format(self, state):
        """Test exporting with an unknown format."""
        load(state, ROWS)
        path, status = handle_export("yaml", False, None, state)
        assert path is None
        assert "导出失败" in status


class TestPrompts:

    def test_select_shows_default(self, state):
        """Test that selecting a prompt shows its default text."""
        assert "scoring/scorer" in PROMPT_KEYS
        assert "1-5" in handle_prompt_select("scoring/scorer", state)
        assert handle_prompt_select("nope", state) == ""

    def test_override_reaches_model_calls(self, state):
        """Test that a saved override is used by the next rewrite."""
        load(state, ROWS)
        _, status = handle_prompt_save("rewrite/answer", "Answer like a pirate.", state)
        assert "已保存提示词" in status
        assert handle_prompt_select("rewrite/answer", state) == "Answer like a pirate."

        list(handle_single_rewrite("answer", None, state))

        port = state.orchestrator.strategy.model_port
        assert port.calls[-1][0] == "Answer like a pirate."

    def test_reset_restores_default(self, state):
        """Test resetting an overridden prompt."""
        default = handle_prompt_select("scoring/scorer", state)
        handle_prompt_save("scoring/scorer", "Be harsh.", state)

        _, text, status = handle_prompt_reset("scoring/scorer", state)

        assert text == default
        assert "已恢复默认提示词" in status
        assert state.orchestrator.scorer.prompts.get("scoring", "scorer") == default

    def test_empty_override_is_rejected(self, state):
        """Test saving an empty prompt."""
        _, status = handle_prompt_save("rewrite/answer", "   ", state)
        assert "提示词不能为空" in status
        assert "improving answers" in handle_prompt_select("rewrite/answer", state)
