"""
Event handlers for UI components.

Handlers are plain functions over an ApplicationState so they can be tested
without launching Gradio. Errors are turned into status messages.
"""

import html
import logging
import threading
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

from models import AUTOSCORE_MODE, ApplicationState, Record, RewriteTarget
from services import (
    DataManager,
    DatasetStore,
    DuplicateAnalyzer,
    ExportManager,
    JobOrchestrator,
    OpenAICompatibleClient,
    PromptResolver,
    RenderEngine,
    RewriteStrategy,
    Scorer,
    SqliteStorage,
    remove_records,
)
from services.errors import CancellationError, CurationError
from services.model_client import ModelPort
from services.prompt_resolver import DEFAULT_PROMPTS
from services.record_removal import SCOPE_BELOW_SCORE, SCOPE_SELECTION
from services.storage import StoragePort
from utils.config import Settings
from utils.performance import measure_time
from utils.validation import (
    parse_job_config,
    validate_content_not_empty,
    validate_export_preconditions,
    validate_index_bounds,
    validate_score,
)

logger = logging.getLogger(__name__)

RENDER_ENGINE = RenderEngine()
ANALYZER = DuplicateAnalyzer()

FILTER_MODES = ["all", "duplicates", "discarded", "unrated"]
JOB_MODES = [t.value for t in RewriteTarget] + [AUTOSCORE_MODE]
JOB_SCOPES = ["visible", "all", "current"]

STREAM_POLL_SECONDS = 0.2


def create_app_state(
    settings: Optional[Settings] = None,
    storage: Optional[StoragePort] = None,
    model_port: Optional[ModelPort] = None,
) -> ApplicationState:
    """
    Wire a fresh session around one store and one model client.

    The rewrite strategy and the scorer share a PromptResolver, so prompt
    overrides made in the UI apply to both.

    Args:
        settings: Defaults to Settings.from_env()
        storage: Defaults to SqliteStorage when settings.db_path is set
        model_port: Defaults to an OpenAICompatibleClient built from settings
    """
    settings = settings or Settings.from_env()
    if storage is None and settings.db_path:
        storage = SqliteStorage(settings.db_path)
    if model_port is None:
        model_port = OpenAICompatibleClient(settings.api_base_url, settings.api_key, settings.model)

    store = DatasetStore(storage=storage)
    prompts = PromptResolver()
    strategy = RewriteStrategy(model_port, prompts=prompts, split_field_requests=settings.split_field_requests)
    orchestrator = JobOrchestrator(store, strategy, Scorer(model_port, prompts=prompts))
    return ApplicationState(store=store, orchestrator=orchestrator, settings=settings, prompts=prompts)


def generate_status_html(status_text: str) -> str:
    return f'<div class="load-status">{status_text}</div>'


def generate_stats_html(records: List[Record]) -> str:
    """统计: 总数 / 重复 / 丢弃 / 已评分 / 未保存."""
    total = len(records)
    duplicates = sum(1 for r in records if r.is_duplicate)
    discarded = sum(1 for r in records if r.is_discarded)
    rated = sum(1 for r in records if r.score)
    unsaved = sum(1 for r in records if r.has_unsaved_changes)
    return (
        '<div class="stats">📊 统计: '
        f'总数 {total} | 重复 <span style="color: #FB8C00;">{duplicates}</span> | '
        f'丢弃 <span style="color: #F44336;">{discarded}</span> | '
        f'已评分 <span style="color: #4CAF50;">{rated}</span> | 未保存 {unsaved}</div>'
    )


def generate_record_list_html(records: List[Record], current_index: int) -> str:
    """
    Record list with markers for score, duplicate and discard state.
    """
    if not records:
        return '<div class="record-list-container">暂无数据</div>'

    parts = ['<div class="record-list-container">']
    for i, record in enumerate(records):
        if record.is_discarded:
            marker, color = "❌", "#F44336"
        elif record.is_duplicate:
            marker, color = "⚠️", "#FB8C00"
        elif record.score:
            marker, color = "✅", "#4CAF50"
        else:
            marker, color = "⭕", "#9E9E9E"

        preview = record.effective_query
        preview = html.escape(preview[:60] + "..." if len(preview) > 60 else preview)
        selected = "selected" if i == current_index else ""
        score = f"{record.score}/5" if record.score else "-"
        parts.append(
            f'<div class="record-item {selected}" data-record-index="{i}" style="border-left-color: {color};">'
            f'<span>{marker}</span> <span class="record-index">#{i + 1}</span> '
            f'<span class="record-score">{score}</span><div>{preview}</div></div>'
        )
    parts.append("</div>")
    return "".join(parts)


def message_choices(record: Optional[Record]) -> List[Tuple[str, int]]:
    """Dropdown choices (label, index) for the messages of a multi-turn record."""
    if record is None or not record.is_multi_turn:
        return []
    choices = []
    for index, message in enumerate(record.messages):
        text = message.content.replace("\n", " ")
        choices.append((f"#{index} {message.role}: {text[:40]}", index))
    return choices


def load_record_to_ui(state: Optional[ApplicationState]) -> Tuple[str, str, str, int, str, str, str]:
    """
    Load the current record into the Review tab.

    Returns:
        Tuple of (query, reasoning, answer, score, record_html, list_html, stats_html)
    """
    if state is None or not state.get_total_loaded():
        return "", "", "", 0, RENDER_ENGINE.render_record(None), generate_record_list_html([], 0), generate_stats_html([])

    visible = state.visible_records()
    if visible:
        state.current_index = max(0, min(state.current_index, len(visible) - 1))
    record = state.get_current_record()
    list_html = generate_record_list_html(visible, state.current_index)
    stats_html = generate_stats_html(state.records())
    if record is None:
        return "", "", "", 0, RENDER_ENGINE.render_record(None), list_html, stats_html
    return (
        record.effective_query,
        record.reasoning,
        record.answer,
        record.score,
        RENDER_ENGINE.render_record(record),
        list_html,
        stats_html,
    )


def handle_file_upload(file_path: str, auto_scan: bool, state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    """
    Import a CSV/JSON/JSONL file, replacing the session's dataset.

    Returns:
        Tuple of (state, status_html)
    """
    state = state or create_app_state()
    if not file_path:
        return state, generate_status_html("⚠️ 请先上传数据文件")
    if state.is_job_running():
        return state, generate_status_html("⚠️ 批量任务运行中, 请先取消")

    try:
        data_manager = DataManager()
        records = data_manager.load_file(file_path)
    except FileNotFoundError as e:
        return state, generate_status_html(f"❌ 文件未找到: {str(e)}")
    except ValueError as e:
        return state, generate_status_html(f"❌ 文件格式错误: {str(e)}")
    except UnicodeDecodeError:
        return state, generate_status_html("❌ 编码错误: 文件编码不是UTF-8或GBK")

    if not records:
        return state, generate_status_html("⚠️ 文件为空，没有数据可加载")

    groups = 0
    if auto_scan:
        with measure_time("duplicate_scan"):
            groups = ANALYZER.analyze(records)

    state.store.replace_all(records)
    state.current_index = 0
    state.filter_mode = "all"
    state.source_name = data_manager.source_name

    message = f"✅ 成功加载 {len(records)} 条数据"
    if data_manager.skipped_rows:
        message += f"，跳过 {data_manager.skipped_rows} 行无效数据"
    if auto_scan:
        message += f"，发现 {groups} 组重复"
    return state, generate_status_html(message)


def handle_navigation(direction: str, state: Optional[ApplicationState]) -> ApplicationState:
    """Move the review cursor ("prev" / "next")."""
    state = state or create_app_state()
    total = len(state.visible_records())
    if direction == "prev" and state.current_index > 0:
        state.current_index -= 1
    elif direction == "next" and state.current_index < total - 1:
        state.current_index += 1
    return state


def handle_jump(index: Any, state: Optional[ApplicationState]) -> ApplicationState:
    """Jump to a 1-based position of the visible list; invalid input is ignored."""
    state = state or create_app_state()
    try:
        position = int(index) - 1
    except (TypeError, ValueError):
        return state
    is_valid, _ = validate_index_bounds(position, len(state.visible_records()))
    if is_valid:
        state.current_index = position
    return state


def handle_filter_change(filter_mode: str, state: Optional[ApplicationState]) -> ApplicationState:
    state = state or create_app_state()
    state.filter_mode = filter_mode if filter_mode in FILTER_MODES else "all"
    state.current_index = 0
    return state


def handle_save_edits(query: str, reasoning: str, answer: str, score: Any, state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    """
    Merge inline edits of the current record.

    Multi-turn records only take the score; their flat fields are derived
    from the conversation.
    """
    state = state or create_app_state()
    record = state.get_current_record()
    if record is None:
        return state, generate_status_html("⚠️ 无数据可保存")

    is_valid, error = validate_score(score)
    if not is_valid:
        return state, generate_status_html(f"⚠️ {error}")

    updates: Dict[str, Any] = {"score": int(score)}
    if not record.is_multi_turn:
        is_valid, error = validate_content_not_empty(query, "问题")
        if not is_valid:
            return state, generate_status_html(f"⚠️ {error}")
        updates.update({"query": query, "reasoning": reasoning or "", "answer": answer or ""})

    if not state.store.merge(record.id, updates):
        return state, generate_status_html("⚠️ 记录已被删除")
    return state, generate_status_html("✅ 已保存修改")


def handle_toggle_discard(state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    state = state or create_app_state()
    record = state.get_current_record()
    if record is None:
        return state, generate_status_html("⚠️ 无数据")
    state.store.merge(record.id, {"is_discarded": not record.is_discarded})
    text = "已恢复记录" if record.is_discarded else "已丢弃记录"
    return state, generate_status_html(f"✅ {text}")


def handle_toggle_duplicate(state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    state = state or create_app_state()
    record = state.get_current_record()
    if record is None:
        return state, generate_status_html("⚠️ 无数据")
    flagged = ANALYZER.toggle_duplicate(state.store, record.id)
    text = "已标记为重复" if flagged else "已取消重复标记"
    return state, generate_status_html(f"✅ {text}")


def handle_single_rewrite(target: str, message_index: Optional[int], state: Optional[ApplicationState]) -> Iterator[Tuple[str, str]]:
    """
    Rewrite the current record and stream its preview.

    Yields:
        Tuple of (preview_html, status_html) while the model streams, and
        once more when the rewrite has been merged
    """
    state = state or create_app_state()
    record = state.get_current_record()
    if record is None:
        yield RENDER_ENGINE.render_stream_preview(""), generate_status_html("⚠️ 无数据")
        return

    try:
        rewrite_target = RewriteTarget(target)
    except ValueError:
        yield RENDER_ENGINE.render_stream_preview(""), generate_status_html(f"⚠️ 未知的改写目标: {target}")
        return

    field = rewrite_target.base.value
    latest = {"text": ""}
    outcome: Dict[str, Any] = {}

    def on_delta(accumulated: str) -> None:
        latest["text"] = accumulated

    def run() -> None:
        try:
            outcome["result"] = state.orchestrator.rewrite_one(
                record.id, rewrite_target, message_index=message_index, on_delta=on_delta
            )
        except CancellationError:
            outcome["cancelled"] = True
        except (CurationError, ValueError) as e:
            outcome["error"] = str(e)
        except Exception as e:
            logger.exception("Rewrite of %s failed", record.id)
            outcome["error"] = str(e)

    worker = threading.Thread(target=run, name=f"rewrite-{record.id}", daemon=True)
    worker.start()
    shown = None
    while worker.is_alive():
        worker.join(STREAM_POLL_SECONDS)
        if latest["text"] != shown:
            shown = latest["text"]
            yield RENDER_ENGINE.render_stream_preview(shown, field), generate_status_html("⏳ 改写中...")

    preview = RENDER_ENGINE.render_stream_preview(latest["text"], field)
    if outcome.get("cancelled"):
        yield preview, generate_status_html("⏹ 改写已取消")
    elif "error" in outcome:
        yield preview, generate_status_html(f"❌ 改写失败: {outcome['error']}")
    elif outcome["result"].changed:
        yield preview, generate_status_html("✅ 改写完成")
    else:
        yield preview, generate_status_html("⚠️ 模型没有返回可用内容")


def handle_cancel_single(message_index: Optional[int], state: Optional[ApplicationState]) -> str:
    state = state or create_app_state()
    record = state.get_current_record()
    if record is None or not state.orchestrator.cancel_item(record.id, message_index):
        return generate_status_html("⚠️ 当前记录没有进行中的改写")
    return generate_status_html("⏹ 正在取消改写")


PROMPT_KEYS = [f"{category}/{role}" for category, role in DEFAULT_PROMPTS]


def _split_prompt_key(key: Optional[str]) -> Tuple[str, str]:
    category, _, role = (key or "").partition("/")
    if (category, role) not in DEFAULT_PROMPTS:
        raise ValueError(f"未知的提示词: {key}")
    return category, role


def handle_prompt_select(key: str, state: Optional[ApplicationState]) -> str:
    """Text of the selected system prompt (the override when one is set)."""
    state = state or create_app_state()
    try:
        category, role = _split_prompt_key(key)
    except ValueError:
        return ""
    return state.prompts.get(category, role)


def handle_prompt_save(key: str, text: str, state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    """Override a system prompt for every later rewrite and scoring call."""
    state = state or create_app_state()
    try:
        category, role = _split_prompt_key(key)
    except ValueError as e:
        return state, generate_status_html(f"⚠️ {str(e)}")
    is_valid, error = validate_content_not_empty(text, "提示词")
    if not is_valid:
        return state, generate_status_html(f"⚠️ {error}")
    state.prompts.set_override(category, role, text)
    logger.info("Prompt %s overridden", key)
    return state, generate_status_html(f"✅ 已保存提示词 {key}")


def handle_prompt_reset(key: str, state: Optional[ApplicationState]) -> Tuple[ApplicationState, str, str]:
    """
    Drop the override of a system prompt.

    Returns:
        Tuple of (state, default prompt text, status_html)
    """
    state = state or create_app_state()
    try:
        category, role = _split_prompt_key(key)
    except ValueError as e:
        return state, "", generate_status_html(f"⚠️ {str(e)}")
    state.prompts.set_override(category, role, None)
    return state, state.prompts.get(category, role), generate_status_html(f"✅ 已恢复默认提示词 {key}")


def generate_groups_html(state: Optional[ApplicationState]) -> str:
    """Duplicate groups with their members' query, score and answer length."""
    if state is None or not state.get_total_loaded():
        return '<div class="groups">暂无数据</div>'
    records = state.records()
    by_id = {r.id: r for r in records}
    groups = ANALYZER.groups(records)
    if not groups:
        return '<div class="groups">没有重复记录</div>'

    parts = [f'<div class="groups"><p>共 {len(groups)} 组重复</p>']
    for number, member_ids in enumerate(groups.values(), 1):
        first = by_id[member_ids[0]]
        parts.append(f'<details><summary>#{number} {html.escape(first.effective_query[:80])} ({len(member_ids)} 条)</summary><ul>')
        for item_id in member_ids:
            member = by_id[item_id]
            parts.append(
                f'<li><code>{html.escape(item_id)}</code> 评分 {member.score} · 回答长度 {len(member.answer)}</li>'
            )
        parts.append('</ul></details>')
    parts.append('</div>')
    return "".join(parts)


def handle_rescan(state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    state = state or create_app_state()
    if not state.get_total_loaded():
        return state, generate_status_html("⚠️ 无数据")
    with measure_time("duplicate_scan"):
        groups = ANALYZER.rescan(state.store)
    return state, generate_status_html(f"✅ 重新扫描完成，发现 {groups} 组重复")


def handle_auto_resolve(state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    state = state or create_app_state()
    if not state.get_total_loaded():
        return state, generate_status_html("⚠️ 无数据")
    discarded = ANALYZER.resolve_store(state.store)
    return state, generate_status_html(f"✅ 自动去重完成，丢弃 {len(discarded)} 条记录")


def handle_remove_records(scope: str, score_threshold: Any, dry_run: bool, state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    """
    Delete records from the dataset (and from storage).

    The selection scope addresses the records of the current filter. A dry
    run only lists what would be removed.
    """
    state = state or create_app_state()
    if not state.get_total_loaded():
        return state, generate_status_html("⚠️ 无数据")
    if state.is_job_running():
        return state, generate_status_html("⚠️ 批量任务运行中, 请先取消")

    item_ids = [r.id for r in state.visible_records()] if scope == SCOPE_SELECTION else None
    threshold = None
    if scope == SCOPE_BELOW_SCORE:
        try:
            threshold = int(score_threshold)
        except (TypeError, ValueError):
            return state, generate_status_html(f"⚠️ 评分阈值必须是整数: {score_threshold}")

    try:
        report = remove_records(state.store, scope, item_ids=item_ids, score_threshold=threshold, dry_run=dry_run)
    except ValueError as e:
        return state, generate_status_html(f"⚠️ {str(e)}")

    if not report.candidates:
        return state, generate_status_html("⚠️ 没有符合条件的记录")
    if dry_run:
        previews = "".join(
            f"<li><code>{html.escape(c.item_id)}</code> 评分 {c.score} · {html.escape(c.query_preview)}</li>"
            for c in report.candidates[:20]
        )
        return state, generate_status_html(f"🔍 预览: 将删除 {len(report.candidates)} 条记录<ul>{previews}</ul>")
    message = f"✅ 已删除 {len(report.removed)} 条记录"
    gone = len(report.candidates) - len(report.removed)
    if gone:
        message += f"，{gone} 条已不存在"
    return state, generate_status_html(message)


def _job_items(scope: str, state: ApplicationState) -> List[Record]:
    if scope == "current":
        record = state.get_current_record()
        candidates = [record] if record is not None else []
    elif scope == "all":
        candidates = state.records()
    else:
        candidates = state.visible_records()
    return [r for r in candidates if not r.is_discarded]


def handle_start_job(
    mode: str,
    scope: str,
    concurrency: Any,
    pace_ms: Any,
    max_retries: Any,
    retry_delay_ms: Any,
    split_field_requests: bool,
    force: bool,
    message_index: Optional[int],
    state: Optional[ApplicationState],
) -> Tuple[ApplicationState, str]:
    """
    Start a bulk rewrite or autoscore job over the chosen scope.

    Discarded records are never part of a job.
    """
    state = state or create_app_state()
    if state.is_job_running():
        return state, generate_status_html("⚠️ 已有任务在运行")

    try:
        config = parse_job_config(
            {
                "concurrency": concurrency,
                "pace_ms": pace_ms,
                "max_retries": max_retries,
                "retry_delay_ms": retry_delay_ms,
                "split_field_requests": split_field_requests,
                "force": force,
            },
            base=state.settings.job_config() if state.settings else None,
        )
    except ValueError as e:
        return state, generate_status_html(f"⚠️ {str(e)}")

    items = _job_items(scope, state)
    if not items:
        return state, generate_status_html("⚠️ 没有可处理的记录")

    try:
        state.active_job = state.orchestrator.run(items, mode, config, message_index=message_index)
    except ValueError as e:
        return state, generate_status_html(f"⚠️ {str(e)}")
    return state, generate_status_html(f"🚀 任务已启动: {mode}, 共 {len(items)} 条")


def handle_poll_job(state: Optional[ApplicationState]) -> Tuple[str, str]:
    """
    Returns:
        Tuple of (progress_html, event log text)
    """
    if state is None or state.active_job is None:
        return '<div class="job-progress">暂无任务</div>', ""
    job = state.active_job
    progress_html = RENDER_ENGINE.render_job_progress(job.progress(), job.status.value)
    lines = []
    for event in job.summary().events[-50:]:
        stamp = time.strftime("%H:%M:%S", time.localtime(event.timestamp))
        target = f" [{event.item_id}]" if event.item_id else ""
        lines.append(f"{stamp} {event.kind}{target} {event.message}")
    return progress_html, "\n".join(lines)


def handle_cancel_job(state: Optional[ApplicationState]) -> str:
    if state is None or not state.is_job_running():
        return generate_status_html("⚠️ 没有运行中的任务")
    state.active_job.cancel()
    return generate_status_html("⏹ 正在取消任务，已完成的结果会保留")


def job_history_choices(state: Optional[ApplicationState]) -> List[Tuple[str, str]]:
    """Dropdown choices (label, job id) for finished jobs, most recent first."""
    if state is None or state.orchestrator is None:
        return []
    return [
        (f"{s.job_id} · {s.mode} · {s.status.value} · {s.progress.total} 条", s.job_id)
        for s in state.orchestrator.history()
    ]


def generate_job_history_html(state: Optional[ApplicationState]) -> str:
    if state is None or state.orchestrator is None or not state.orchestrator.history():
        return '<div class="job-history">暂无历史任务</div>'
    rows = []
    for summary in state.orchestrator.history():
        p = summary.progress
        finished = time.strftime("%H:%M:%S", time.localtime(summary.finished_at)) if summary.finished_at else "-"
        rows.append(
            f"<tr><td><code>{summary.job_id}</code></td><td>{html.escape(summary.mode)}</td>"
            f"<td>{summary.status.value}</td><td>{p.completed}/{p.total}</td>"
            f"<td>{p.updated}</td><td>{p.skipped}</td><td>{p.errors}</td><td>{finished}</td></tr>"
        )
    return (
        '<div class="job-history"><table><tr><th>任务</th><th>类型</th><th>状态</th><th>进度</th>'
        "<th>更新</th><th>跳过</th><th>错误</th><th>结束</th></tr>" + "".join(rows) + "</table></div>"
    )


def handle_rerun_job(job_id: Optional[str], state: Optional[ApplicationState]) -> Tuple[ApplicationState, str]:
    """Start a finished job again over its original records and settings."""
    state = state or create_app_state()
    if state.is_job_running():
        return state, generate_status_html("⚠️ 已有任务在运行")
    if not job_id:
        return state, generate_status_html("⚠️ 请先选择历史任务")
    try:
        state.active_job = state.orchestrator.rerun(job_id)
    except KeyError:
        return state, generate_status_html(f"⚠️ 未找到任务 {job_id}")
    except ValueError as e:
        return state, generate_status_html(f"⚠️ {str(e)}")
    return state, generate_status_html(f"🚀 已重新运行任务 {job_id}: {state.active_job.mode}")


def handle_save_session(state: Optional[ApplicationState]) -> str:
    if state is None or state.store is None or state.store.storage is None:
        return generate_status_html("⚠️ 未配置持久化存储 (CURATOR_DB_PATH)")
    saved = state.store.save_dirty()
    return generate_status_html(f"✅ 已保存 {saved} 条记录")


def update_export_format(new_format: str, state: Optional[ApplicationState]) -> ApplicationState:
    state = state or create_app_state()
    state.export_format = new_format
    return state


def handle_export(
    export_format: str,
    jsonl: bool,
    columns: Optional[List[str]],
    state: Optional[ApplicationState],
    output_dir: str = ".",
) -> Tuple[Optional[str], str]:
    """
    Export the non-discarded records.

    Returns:
        Tuple of (file path or None, status_html)
    """
    if state is None:
        return None, generate_status_html("⚠️ 无数据可导出")
    records = state.records()
    is_valid, error = validate_export_preconditions(sum(1 for r in records if not r.is_discarded))
    if not is_valid:
        return None, generate_status_html(f"⚠️ {error}")

    try:
        manager = ExportManager(format=export_format, jsonl=jsonl, columns=columns)
        path = manager.export(records, state.source_name or "dataset", output_dir)
    except (ValueError, PermissionError) as e:
        return None, generate_status_html(f"❌ 导出失败: {str(e)}")
    return path, generate_status_html(f"✅ 导出成功: {path}")
