"""
UI layout components for LLM-QA Curation Workbench.

Builds the tabbed Gradio layout; every interactive component is returned in
a dict so app.py can wire the event handlers.
"""

import gradio as gr
from typing import Dict, Any

from models import AUTOSCORE_MODE, RewriteTarget
from services.export_manager import DEFAULT_COLUMNS, ExportManager
from ui.event_handlers import PROMPT_KEYS
from utils.config import Settings

GLOBAL_CSS = """
.gradio-container { font-size: 16px !important; }
textarea, input, .prose { font-size: 16px !important; line-height: 1.6 !important; }
.load-status { padding: 8px 12px; border-radius: 6px; background: #f5f5f5; }
.stats { padding: 8px; margin: 5px 0; background: #f5f5f5; border: 1px solid #1976d2; border-radius: 5px; text-align: center; }
.record-list-container { max-height: 600px; overflow-y: auto; border: 1px solid #1976d2; border-radius: 8px; padding: 8px; }
.record-item { padding: 6px 8px; margin: 4px 0; border-left: 3px solid #9E9E9E; border-radius: 0 5px 5px 0; }
.record-item.selected { background: #E3F2FD; font-weight: bold; }
.stream-preview { min-height: 200px; border: 1px dashed #1976d2; border-radius: 8px; padding: 10px; }
"""

REWRITE_TARGET_CHOICES = [
    ("问题 (query)", RewriteTarget.QUERY.value),
    ("推理 (reasoning)", RewriteTarget.REASONING.value),
    ("回答 (answer)", RewriteTarget.ANSWER.value),
    ("推理+回答 (both)", RewriteTarget.BOTH.value),
    ("消息: 问题", RewriteTarget.MESSAGE_QUERY.value),
    ("消息: 推理", RewriteTarget.MESSAGE_REASONING.value),
    ("消息: 回答", RewriteTarget.MESSAGE_ANSWER.value),
    ("消息: 推理+回答", RewriteTarget.MESSAGE_BOTH.value),
]

JOB_MODE_CHOICES = REWRITE_TARGET_CHOICES + [("自动评分 (autoscore)", AUTOSCORE_MODE)]


def get_global_css() -> str:
    return GLOBAL_CSS


def create_import_tab(components: Dict[str, Any]) -> None:
    with gr.Tab("导入"):
        gr.Markdown("上传 CSV / JSON / JSONL 数据文件。支持 query/instruction/question/prompt、"
                    "answer/output/response、reasoning 以及 messages 多轮格式。")
        components['upload_file'] = gr.File(label="数据文件", file_types=[".csv", ".json", ".jsonl"], type="filepath")
        components['auto_scan_checkbox'] = gr.Checkbox(label="导入后自动扫描重复", value=True)
        components['import_status'] = gr.HTML('<div class="load-status">等待上传数据文件</div>')


def create_review_tab(components: Dict[str, Any]) -> None:
    with gr.Tab("审阅"):
        with gr.Row():
            with gr.Column(scale=1):
                components['filter_dropdown'] = gr.Dropdown(
                    choices=[("全部", "all"), ("重复", "duplicates"), ("已丢弃", "discarded"), ("未评分", "unrated")],
                    value="all",
                    label="筛选",
                )
                components['stats_display'] = gr.HTML()
                components['record_list'] = gr.HTML()
                with gr.Row():
                    components['prev_btn'] = gr.Button("⬅ 上一条")
                    components['next_btn'] = gr.Button("下一条 ➡")
                components['jump_input'] = gr.Number(label="跳转到第 N 条", precision=0)

            with gr.Column(scale=2):
                components['record_display'] = gr.HTML()
                components['query_input'] = gr.Textbox(label="问题 (query)", lines=3)
                components['reasoning_input'] = gr.Textbox(label="推理 (reasoning)", lines=8)
                components['answer_input'] = gr.Textbox(label="回答 (answer)", lines=6)
                components['score_slider'] = gr.Slider(0, 5, step=1, label="评分 (0 = 未评分)")
                with gr.Row():
                    components['save_btn'] = gr.Button("💾 保存修改", variant="primary")
                    components['discard_btn'] = gr.Button("❌ 丢弃 / 恢复")
                    components['duplicate_btn'] = gr.Button("⚠️ 标记重复")
                components['review_status'] = gr.HTML()

            with gr.Column(scale=2):
                gr.Markdown("### AI 改写")
                components['rewrite_target'] = gr.Dropdown(
                    choices=REWRITE_TARGET_CHOICES, value=RewriteTarget.ANSWER.value, label="改写目标"
                )
                components['message_index'] = gr.Dropdown(choices=[], value=None, label="消息 (多轮记录)")
                with gr.Row():
                    components['rewrite_btn'] = gr.Button("✨ 改写", variant="primary")
                    components['cancel_rewrite_btn'] = gr.Button("⏹ 取消")
                components['rewrite_preview'] = gr.HTML()
                components['rewrite_status'] = gr.HTML()


def create_duplicates_tab(components: Dict[str, Any]) -> None:
    with gr.Tab("去重"):
        with gr.Row():
            components['rescan_btn'] = gr.Button("🔍 重新扫描")
            components['auto_resolve_btn'] = gr.Button("🧹 自动去重", variant="primary")
        components['duplicates_status'] = gr.HTML()
        components['groups_display'] = gr.HTML()
        gr.Markdown("### 删除记录")
        with gr.Row():
            components['remove_scope'] = gr.Radio(
                choices=[("当前筛选的记录", "selection"), ("已丢弃的记录", "discarded"), ("评分低于阈值", "below_score")],
                value="discarded",
                label="删除范围",
            )
            components['remove_threshold'] = gr.Number(value=3, precision=0, minimum=1, maximum=5, label="评分阈值")
            components['remove_dry_run'] = gr.Checkbox(value=True, label="仅预览 (不删除)")
        components['remove_btn'] = gr.Button("🗑 删除", variant="stop")
        components['remove_status'] = gr.HTML()


def create_jobs_tab(components: Dict[str, Any], settings: Settings) -> None:
    with gr.Tab("批量任务"):
        with gr.Row():
            components['job_mode'] = gr.Dropdown(choices=JOB_MODE_CHOICES, value=RewriteTarget.ANSWER.value, label="任务类型")
            components['job_scope'] = gr.Radio(
                choices=[("当前筛选", "visible"), ("全部", "all"), ("当前记录", "current")],
                value="visible",
                label="范围",
            )
        with gr.Row():
            components['concurrency_input'] = gr.Number(value=settings.concurrency, precision=0, label="并发数")
            components['pace_input'] = gr.Number(value=settings.pace_ms, precision=0, label="请求间隔 (ms)")
            components['retries_input'] = gr.Number(value=settings.max_retries, precision=0, label="重试次数")
            components['retry_delay_input'] = gr.Number(value=settings.retry_delay_ms, precision=0, label="重试延迟 (ms)")
        with gr.Row():
            components['split_checkbox'] = gr.Checkbox(value=settings.split_field_requests, label="推理和回答分两次请求")
            components['force_checkbox'] = gr.Checkbox(value=False, label="重新评分已评分记录")
            components['job_message_index'] = gr.Number(value=None, precision=0, label="消息索引 (可选)")
        with gr.Row():
            components['start_job_btn'] = gr.Button("🚀 开始任务", variant="primary")
            components['cancel_job_btn'] = gr.Button("⏹ 取消任务")
        components['job_status'] = gr.HTML()
        components['job_progress'] = gr.HTML()
        components['job_log'] = gr.Textbox(label="任务日志", lines=12, interactive=False)
        components['job_timer'] = gr.Timer(1.0)
        gr.Markdown("### 历史任务")
        components['job_history'] = gr.HTML('<div class="job-history">暂无历史任务</div>')
        with gr.Row():
            components['rerun_job_id'] = gr.Dropdown(choices=[], value=None, label="选择任务")
            components['refresh_history_btn'] = gr.Button("🔄 刷新")
            components['rerun_btn'] = gr.Button("🔁 重新运行")


def create_export_tab(components: Dict[str, Any]) -> None:
    with gr.Tab("导出"):
        components['export_format_dropdown'] = gr.Dropdown(
            choices=ExportManager.VALID_FORMATS, value="columns", label="导出格式"
        )
        components['export_columns'] = gr.CheckboxGroup(choices=DEFAULT_COLUMNS, value=DEFAULT_COLUMNS, label="导出列 (columns 格式)")
        components['jsonl_checkbox'] = gr.Checkbox(value=False, label="JSONL (每行一条)")
        with gr.Row():
            components['export_btn'] = gr.Button("📥 导出", variant="primary")
            components['save_session_btn'] = gr.Button("💾 保存到数据库")
        components['export_status'] = gr.HTML()
        components['export_file'] = gr.File(label="导出文件")


def create_prompts_tab(components: Dict[str, Any]) -> None:
    with gr.Tab("提示词"):
        gr.Markdown("修改改写和评分使用的系统提示词。留空并保存无效, 使用 \"恢复默认\" 撤销修改。")
        components['prompt_key'] = gr.Dropdown(choices=PROMPT_KEYS, value=PROMPT_KEYS[0], label="提示词")
        components['prompt_text'] = gr.Textbox(label="系统提示词", lines=8)
        with gr.Row():
            components['prompt_save_btn'] = gr.Button("💾 保存", variant="primary")
            components['prompt_reset_btn'] = gr.Button("↩ 恢复默认")
        components['prompt_status'] = gr.HTML()


def create_tabbed_layout(settings: Settings) -> Dict[str, Any]:
    """
    Create the full workbench layout.

    Returns:
        Dictionary of components for event binding
    """
    components: Dict[str, Any] = {}
    gr.Markdown("# 大模型问答数据整理工作台")
    with gr.Tabs():
        create_import_tab(components)
        create_review_tab(components)
        create_duplicates_tab(components)
        create_jobs_tab(components, settings)
        create_export_tab(components)
        create_prompts_tab(components)
    return components
