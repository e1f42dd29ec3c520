"""
User-prompt builders for rewrite calls.

Flat records get a compact ORIGINAL ITEM block; multi-turn records get the
conversation history up to the target message with the target's reasoning
and answer shown separately.
"""

from typing import List, Optional, Tuple

from models.record import ChatMessage, Record
from utils.text_cleaning import parse_think_tags, sanitize_reasoning

_FIELD_LABELS = {
    "query": "QUERY",
    "reasoning": "REASONING",
    "answer": "ANSWER",
    "both": "REASONING and the ANSWER",
}


def split_message(message: ChatMessage) -> Tuple[str, str]:
    """
    Split a message into (reasoning, answer).

    Reasoning comes from reasoning_content first, then from a <think>
    block inside content. The answer never contains <think> markup.
    """
    thought, answer = parse_think_tags(message.content or "")
    reasoning = (message.reasoning_content or "").strip() or (thought or "")
    return sanitize_reasoning(reasoning), answer


def build_item_context(record: Record, field: str, reasoning_override: Optional[str] = None) -> str:
    """Prompt asking for one field (or both reasoning and answer) of a flat record."""
    reasoning = record.reasoning if reasoning_override is None else reasoning_override
    lines = [
        "## ORIGINAL ITEM",
        f"Query: {record.effective_query}",
        f"Reasoning: {reasoning}",
        f"Answer: {record.answer}",
        "",
        "---",
    ]
    if field == "both":
        lines.append(
            'Rewrite the REASONING and the ANSWER. Respond with ONLY a JSON object: '
            '{"reasoning": "...", "answer": "..."}'
        )
    else:
        lines.append(f"Rewrite the {_FIELD_LABELS[field]} only.")
    return "\n".join(lines)


def _format_history(messages: List[ChatMessage], target_index: int) -> str:
    blocks = []
    for idx, message in enumerate(messages[:target_index + 1]):
        role = message.role.upper()
        reasoning, answer = split_message(message)
        if idx == target_index and message.role == "assistant":
            blocks.append(
                f"[{role}] (TARGET MESSAGE):\n"
                f"<REASONING_TRACE>\n{reasoning or '(no reasoning present)'}\n</REASONING_TRACE>\n\n"
                f"<ANSWER>\n{answer}\n</ANSWER>"
            )
        elif idx == target_index:
            blocks.append(f"[{role}] (TARGET MESSAGE):\n{answer}")
        elif reasoning:
            blocks.append(f"[{role}]:\n<REASONING_TRACE>\n{reasoning}\n</REASONING_TRACE>\n{answer}")
        else:
            blocks.append(f"[{role}]:\n{answer}")
    return "\n\n".join(blocks)


def build_message_context(
    record: Record,
    message_index: int,
    field: str,
    reasoning_override: Optional[str] = None,
) -> str:
    """Prompt asking for one component of the target message in a conversation."""
    messages = list(record.messages or [])
    if reasoning_override is not None:
        target = messages[message_index]
        messages[message_index] = ChatMessage(
            role=target.role,
            content=split_message(target)[1],
            reasoning_content=reasoning_override,
        )
    history = _format_history(messages, message_index)

    if field == "reasoning":
        task = (
            "TASK: Regenerate ONLY the REASONING TRACE for the target message.\n"
            "- Keep the existing ANSWER exactly as it is (do not output it).\n"
            "- Generate new, improved reasoning that leads to this answer."
        )
    elif field == "answer":
        task = (
            "TASK: Regenerate ONLY the ANSWER for the target message.\n"
            "- Use the REASONING TRACE for reference (do not output it).\n"
            "- Do not include any <think> tags."
        )
    elif field == "query":
        task = "TASK: Rewrite ONLY the target user message to be clearer and more precise."
    else:
        task = (
            "TASK: Regenerate BOTH the REASONING TRACE and the ANSWER for the target message.\n"
            'Respond with ONLY a JSON object: {"reasoning": "...", "answer": "..."}'
        )
    return f"## CONVERSATION HISTORY\n\n{history}\n\n---\n{task}"
