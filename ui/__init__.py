"""UI components for LLM-QA Curation Workbench."""

from .layout import create_tabbed_layout, get_global_css
from .event_handlers import (
    create_app_state,
    load_record_to_ui,
    message_choices,
    handle_file_upload,
    handle_navigation,
    handle_jump,
    handle_filter_change,
    handle_save_edits,
    handle_toggle_discard,
    handle_toggle_duplicate,
    handle_single_rewrite,
    handle_cancel_single,
    handle_prompt_select,
    handle_prompt_save,
    handle_prompt_reset,
    handle_rescan,
    handle_auto_resolve,
    handle_remove_records,
    generate_groups_html,
    handle_start_job,
    handle_poll_job,
    handle_cancel_job,
    job_history_choices,
    generate_job_history_html,
    handle_rerun_job,
    handle_save_session,
    handle_export,
    update_export_format,
)

__all__ = [
    "create_tabbed_layout",
    "get_global_css",
    "create_app_state",
    "load_record_to_ui",
    "message_choices",
    "handle_file_upload",
    "handle_navigation",
    "handle_jump",
    "handle_filter_change",
    "handle_save_edits",
    "handle_toggle_discard",
    "handle_toggle_duplicate",
    "handle_single_rewrite",
    "handle_cancel_single",
    "handle_prompt_select",
    "handle_prompt_save",
    "handle_prompt_reset",
    "handle_rescan",
    "handle_auto_resolve",
    "handle_remove_records",
    "generate_groups_html",
    "handle_start_job",
    "handle_poll_job",
    "handle_cancel_job",
    "job_history_choices",
    "generate_job_history_html",
    "handle_rerun_job",
    "handle_save_session",
    "handle_export",
    "update_export_format",
]
