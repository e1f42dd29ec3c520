"""
LLM-QA Curation Workbench
大模型问答数据整理工作台

Main entry point for the Gradio application.
"""

import logging

import gradio as gr

from services import RenderEngine
from ui.layout import create_tabbed_layout, get_global_css
from ui.event_handlers import (
    create_app_state,
    generate_groups_html,
    generate_job_history_html,
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
    update_export_format,
)
from utils.config import Settings

logger = logging.getLogger(__name__)


def main():
    """Main application entry point."""
    logging.basicConfig(level=logging.INFO)
    settings = Settings.from_env()
    render_engine = RenderEngine()

    with gr.Blocks(
        title="大模型问答数据整理工作台",
        theme=gr.themes.Soft(),
        head=render_engine.get_katex_header(),
        css=get_global_css(),
    ) as app:

        # one ApplicationState per browser session, created on page load
        app_state = gr.State(None)
        components = create_tabbed_layout(settings)

        def on_load(prompt_key):
            state = create_app_state(settings)
            return state, handle_prompt_select(prompt_key, state)

        app.load(on_load, inputs=[components['prompt_key']], outputs=[app_state, components['prompt_text']])

        review_outputs = [
            components['query_input'],
            components['reasoning_input'],
            components['answer_input'],
            components['score_slider'],
            components['record_display'],
            components['record_list'],
            components['stats_display'],
            components['message_index'],
        ]

        def refresh_review(state):
            values = load_record_to_ui(state)
            record = state.get_current_record() if state is not None else None
            choices = message_choices(record)
            return (*values, gr.update(choices=choices, value=None))

        # ========== Import ==========

        def on_upload(file_path, auto_scan, state):
            state, status = handle_file_upload(file_path, auto_scan, state or create_app_state(settings))
            return (state, status, *refresh_review(state), generate_groups_html(state))

        components['upload_file'].change(
            fn=on_upload,
            inputs=[components['upload_file'], components['auto_scan_checkbox'], app_state],
            outputs=[app_state, components['import_status'], *review_outputs, components['groups_display']],
        )

        # ========== Review ==========

        def on_navigate(direction, state):
            state = handle_navigation(direction, state)
            return (state, *refresh_review(state))

        components['prev_btn'].click(
            fn=lambda s: on_navigate("prev", s), inputs=[app_state], outputs=[app_state, *review_outputs]
        )
        components['next_btn'].click(
            fn=lambda s: on_navigate("next", s), inputs=[app_state], outputs=[app_state, *review_outputs]
        )

        def on_jump(index, state):
            state = handle_jump(index, state)
            return (state, *refresh_review(state))

        components['jump_input'].submit(
            fn=on_jump, inputs=[components['jump_input'], app_state], outputs=[app_state, *review_outputs]
        )

        def on_filter(filter_mode, state):
            state = handle_filter_change(filter_mode, state)
            return (state, *refresh_review(state))

        components['filter_dropdown'].change(
            fn=on_filter, inputs=[components['filter_dropdown'], app_state], outputs=[app_state, *review_outputs]
        )

        def with_review_refresh(handler):
            def wrapped(*args):
                state, status = handler(*args)
                return (state, status, *refresh_review(state))
            return wrapped

        components['save_btn'].click(
            fn=with_review_refresh(handle_save_edits),
            inputs=[
                components['query_input'],
                components['reasoning_input'],
                components['answer_input'],
                components['score_slider'],
                app_state,
            ],
            outputs=[app_state, components['review_status'], *review_outputs],
        )
        components['discard_btn'].click(
            fn=with_review_refresh(handle_toggle_discard),
            inputs=[app_state],
            outputs=[app_state, components['review_status'], *review_outputs],
        )
        components['duplicate_btn'].click(
            fn=with_review_refresh(handle_toggle_duplicate),
            inputs=[app_state],
            outputs=[app_state, components['review_status'], *review_outputs],
        )

        rewrite_event = components['rewrite_btn'].click(
            fn=handle_single_rewrite,
            inputs=[components['rewrite_target'], components['message_index'], app_state],
            outputs=[components['rewrite_preview'], components['rewrite_status']],
        )
        rewrite_event.then(fn=refresh_review, inputs=[app_state], outputs=review_outputs)

        components['cancel_rewrite_btn'].click(
            fn=handle_cancel_single,
            inputs=[components['message_index'], app_state],
            outputs=[components['rewrite_status']],
        )

        # ========== Duplicates ==========

        def on_duplicates(handler):
            def wrapped(state):
                state, status = handler(state)
                return (state, status, generate_groups_html(state), *refresh_review(state))
            return wrapped

        duplicate_outputs = [app_state, components['duplicates_status'], components['groups_display'], *review_outputs]
        components['rescan_btn'].click(fn=on_duplicates(handle_rescan), inputs=[app_state], outputs=duplicate_outputs)
        components['auto_resolve_btn'].click(
            fn=on_duplicates(handle_auto_resolve), inputs=[app_state], outputs=duplicate_outputs
        )

        def on_remove(scope, threshold, dry_run, state):
            state, status = handle_remove_records(scope, threshold, dry_run, state)
            return (state, status, generate_groups_html(state), *refresh_review(state))

        components['remove_btn'].click(
            fn=on_remove,
            inputs=[
                components['remove_scope'],
                components['remove_threshold'],
                components['remove_dry_run'],
                app_state,
            ],
            outputs=[app_state, components['remove_status'], components['groups_display'], *review_outputs],
        )

        # ========== Bulk jobs ==========

        components['start_job_btn'].click(
            fn=handle_start_job,
            inputs=[
                components['job_mode'],
                components['job_scope'],
                components['concurrency_input'],
                components['pace_input'],
                components['retries_input'],
                components['retry_delay_input'],
                components['split_checkbox'],
                components['force_checkbox'],
                components['job_message_index'],
                app_state,
            ],
            outputs=[app_state, components['job_status']],
        )
        components['cancel_job_btn'].click(
            fn=handle_cancel_job, inputs=[app_state], outputs=[components['job_status']]
        )
        components['job_timer'].tick(
            fn=handle_poll_job,
            inputs=[app_state],
            outputs=[components['job_progress'], components['job_log']],
        )

        def refresh_history(state):
            return generate_job_history_html(state), gr.update(choices=job_history_choices(state))

        components['refresh_history_btn'].click(
            fn=refresh_history,
            inputs=[app_state],
            outputs=[components['job_history'], components['rerun_job_id']],
        )
        components['rerun_btn'].click(
            fn=handle_rerun_job,
            inputs=[components['rerun_job_id'], app_state],
            outputs=[app_state, components['job_status']],
        )

        # ========== Export ==========

        components['export_format_dropdown'].change(
            fn=update_export_format,
            inputs=[components['export_format_dropdown'], app_state],
            outputs=[app_state],
        )

        def on_export(export_format, jsonl, columns, state):
            path, status = handle_export(export_format, jsonl, columns, state)
            return gr.update(value=path, visible=path is not None), status

        components['export_btn'].click(
            fn=on_export,
            inputs=[
                components['export_format_dropdown'],
                components['jsonl_checkbox'],
                components['export_columns'],
                app_state,
            ],
            outputs=[components['export_file'], components['export_status']],
        )
        components['save_session_btn'].click(
            fn=handle_save_session, inputs=[app_state], outputs=[components['export_status']]
        )

        # ========== Prompts ==========

        components['prompt_key'].change(
            fn=handle_prompt_select,
            inputs=[components['prompt_key'], app_state],
            outputs=[components['prompt_text']],
        )
        components['prompt_save_btn'].click(
            fn=handle_prompt_save,
            inputs=[components['prompt_key'], components['prompt_text'], app_state],
            outputs=[app_state, components['prompt_status']],
        )
        components['prompt_reset_btn'].click(
            fn=handle_prompt_reset,
            inputs=[components['prompt_key'], app_state],
            outputs=[app_state, components['prompt_text'], components['prompt_status']],
        )

    logger.info("Workbench ready, model %s at %s", settings.model, settings.api_base_url)
    return app


if __name__ == "__main__":
    app = main()
    app.queue()
    app.launch(show_error=True)
