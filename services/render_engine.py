"""
RenderEngine for record previews.

Renders Markdown (with LaTeX left intact for KaTeX) to HTML and builds the
preview panels of the Review tab: the record card, the multi-turn
conversation view and the live preview of a streaming rewrite.
"""

import html
import re
import uuid
from typing import List, Optional, Tuple

import markdown

from models import ChatMessage, Record
from models.job import JobProgress
from services.field_extractor import extract
from utils.text_cleaning import parse_think_tags


class RenderEngine:
    """
    Rendering engine for Markdown, LaTeX and record previews.
    """

    # LaTeX delimiters, display forms first so $$ is not eaten by $
    LATEX_PATTERNS = [
        (r'\$\$(.+?)\$\$', 'display'),
        (r'\\\[(.+?)\\\]', 'display'),
        (r'\$([^\$\n]+?)\$', 'inline'),
        (r'\\\((.+?)\\\)', 'inline'),
        (r'\\begin\{(equation|align\*?|gather\*?)\}(.+?)\\end\{\1\}', 'display'),
    ]

    def __init__(self):
        self.md = markdown.Markdown(extensions=['extra', 'nl2br', 'sane_lists'])

    def _protect_latex(self, text: str) -> Tuple[str, List[Tuple[str, str]]]:
        """
        Swap LaTeX formulas for HTML comment placeholders so Markdown leaves them alone.

        Returns:
            (protected text, list of (placeholder, restored formula))
        """
        placeholders = []

        def replace(match, display_type):
            formula = match.group(match.lastindex).strip()
            placeholder = f"<!--LATEX_{uuid.uuid4().hex}-->"
            restored = f"$${formula}$$" if display_type == 'display' else f"${formula}$"
            placeholders.append((placeholder, restored))
            return placeholder

        for pattern, display_type in self.LATEX_PATTERNS:
            text = re.sub(pattern, lambda m, dt=display_type: replace(m, dt), text, flags=re.DOTALL)
        return text, placeholders

    def render_markdown(self, text: str) -> str:
        """
        Render Markdown and LaTeX to HTML.

        Args:
            text: Text containing Markdown and/or LaTeX

        Returns:
            HTML fragment marked for KaTeX rendering
        """
        if not text:
            return ""

        try:
            protected, placeholders = self._protect_latex(text)
            html_content = self.md.convert(protected)
            for placeholder, formula in placeholders:
                html_content = html_content.replace(placeholder, formula)
        except Exception:
            # fall back to escaped plain text
            return f'<pre style="white-space: pre-wrap;">{html.escape(text)}</pre>'
        finally:
            self.md.reset()

        return f'<div class="katex-render-target" data-katex-render="true">{html_content}</div>'

    def _section(self, title: str, body: str, collapsible: bool = False) -> str:
        rendered = self.render_markdown(body) or '<em style="color: #999;">(空)</em>'
        if collapsible:
            return (
                f'<details class="record-section"><summary><strong>{html.escape(title)}</strong></summary>'
                f'{rendered}</details>'
            )
        return f'<div class="record-section"><h4>{html.escape(title)}</h4>{rendered}</div>'

    def render_record(self, record: Optional[Record]) -> str:
        """
        Render the preview card of one record.

        Multi-turn records show their conversation instead of the flat fields.
        """
        if record is None:
            return '<div class="record-card"><em>没有选中的记录</em></div>'

        badges = []
        if record.score:
            badges.append(f'<span class="badge score">评分 {record.score}/5</span>')
        if record.is_duplicate:
            badges.append('<span class="badge duplicate">重复</span>')
        if record.is_discarded:
            badges.append('<span class="badge discarded">已丢弃</span>')
        if record.has_unsaved_changes:
            badges.append('<span class="badge unsaved">未保存</span>')
        header = (
            f'<div class="record-header"><code>{html.escape(record.id)}</code> '
            f'<span style="color: #888;">{html.escape(record.model_used)}</span> {" ".join(badges)}</div>'
        )

        if record.is_multi_turn:
            body = self.render_messages(record.messages)
        else:
            body = (
                self._section("Query", record.effective_query)
                + self._section("Reasoning", record.reasoning, collapsible=True)
                + self._section("Answer", record.answer)
            )
        return f'<div class="record-card">{header}{body}</div>'

    def render_messages(self, messages: Optional[List[ChatMessage]]) -> str:
        """Render a conversation, one block per turn, with its index."""
        if not messages:
            return ""
        blocks = []
        for index, message in enumerate(messages):
            reasoning = ""
            if message.reasoning_content:
                reasoning = self._section("Reasoning", message.reasoning_content, collapsible=True)
            blocks.append(
                f'<div class="message message-{html.escape(message.role)}">'
                f'<div class="message-role">#{index} {html.escape(message.role)}</div>'
                f'{reasoning}{self.render_markdown(message.content)}</div>'
            )
        return "".join(blocks)

    def render_stream_preview(self, accumulated: str, requested_field: str = "answer") -> str:
        """
        Render the live preview of a rewrite that is still streaming.

        The buffer goes through the field extractor, so a half-finished JSON
        response already shows readable text.
        """
        if not accumulated:
            return '<div class="stream-preview"><em>等待模型响应...</em></div>'

        result = extract(accumulated, requested_field)
        if result.is_structured:
            reasoning, answer = result.reasoning or "", result.answer or result.query or ""
        else:
            parsed_reasoning, answer = parse_think_tags(accumulated)
            reasoning = parsed_reasoning or ""

        parts = []
        if reasoning:
            parts.append(self._section("Reasoning", reasoning, collapsible=not result.has_answer_start))
        if answer or not reasoning:
            parts.append(self.render_markdown(answer))
        return f'<div class="stream-preview">{"".join(parts)}</div>'

    def render_job_progress(self, progress: JobProgress, status: str) -> str:
        """Progress bar plus counters for the Bulk Jobs tab."""
        pct = progress.percentage
        return (
            '<div class="job-progress">'
            f'<div style="background: #eee; border-radius: 4px;"><div style="width: {pct:.1f}%; '
            'background: #4caf50; height: 12px; border-radius: 4px;"></div></div>'
            f'<p>{html.escape(status)}: {progress.completed}/{progress.total} '
            f'(更新 {progress.updated}, 跳过 {progress.skipped}, 错误 {progress.errors})</p>'
            '</div>'
        )

    def get_katex_header(self) -> str:
        """KaTeX CSS/JS that renders every element marked data-katex-render."""
        return '''
        <link rel="stylesheet" href="https://cdn.jsdelivr.net/npm/katex@0.16.9/dist/katex.min.css">
        <script src="https://cdn.jsdelivr.net/npm/katex@0.16.9/dist/katex.min.js"></script>
        <script src="https://cdn.jsdelivr.net/npm/katex@0.16.9/dist/contrib/auto-render.min.js"></script>
        <script>
        function renderAllMath() {
            if (typeof renderMathInElement === 'undefined') return;
            document.querySelectorAll('[data-katex-render="true"]').forEach(function(elem) {
                renderMathInElement(elem, {
                    delimiters: [
                        {left: '$$', right: '$$', display: true},
                        {left: '$', right: '$', display: false}
                    ],
                    throwOnError: false,
                    strict: false
                });
                elem.setAttribute('data-katex-render', 'done');
            });
        }
        setInterval(renderAllMath, 1000);
        </script>
        <style>
        .record-card { font-size: 16px; line-height: 1.7; }
        .badge { padding: 2px 6px; border-radius: 3px; font-size: 12px; margin-left: 4px; }
        .badge.score { background: #e3f2fd; }
        .badge.duplicate { background: #fff3e0; }
        .badge.discarded { background: #ffebee; }
        .badge.unsaved { background: #f3e5f5; }
        .message { border-left: 3px solid #ddd; padding-left: 10px; margin: 8px 0; }
        .message-assistant { border-color: #4caf50; }
        .message-user { border-color: #2196f3; }
        .message-role { color: #888; font-size: 12px; }
        </style>
        '''
