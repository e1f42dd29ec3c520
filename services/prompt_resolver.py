"""
System prompts for rewrite and scoring calls.

PromptResolver is an opaque text provider keyed by (category, role).
Operators can override any entry; everything else falls back to the
built-in defaults below.
"""

from typing import Dict, Optional, Tuple

CATEGORY_REWRITE = "rewrite"
CATEGORY_MESSAGE_REWRITE = "message_rewrite"
CATEGORY_SPLIT = "split"
CATEGORY_SCORING = "scoring"

DEFAULT_PROMPTS: Dict[Tuple[str, str], str] = {
    (CATEGORY_REWRITE, "query"): (
        "You are an expert at improving questions. Given the original question, "
        "reasoning trace, and answer, rewrite ONLY the question to be clearer, more "
        "precise, and better structured. Output ONLY the improved question text, "
        "nothing else."
    ),
    (CATEGORY_REWRITE, "reasoning"): (
        "You are an expert at improving reasoning traces. Given the question and the "
        "original reasoning, rewrite ONLY the reasoning trace to be more logical, "
        "thorough, and well-structured. Output ONLY the improved reasoning text, "
        "nothing else."
    ),
    (CATEGORY_REWRITE, "answer"): (
        "You are an expert at improving answers. Given the question, reasoning trace, "
        "and original answer, rewrite ONLY the answer to be more accurate, clear, and "
        "complete. Output ONLY the improved answer text, nothing else."
    ),
    (CATEGORY_REWRITE, "both"): (
        "You are an expert at improving reasoning traces and answers. Given the "
        "question, reasoning trace, and answer, regenerate BOTH the reasoning and the "
        "answer. Respond with a valid JSON object containing \"reasoning\" and "
        "\"answer\" string fields, and nothing else."
    ),
    (CATEGORY_MESSAGE_REWRITE, "query"): (
        "You are an expert at improving user messages in conversations. Given the "
        "conversation context and a target user message, rewrite it to be clearer "
        "and more precise. Output ONLY the improved message text, nothing else."
    ),
    (CATEGORY_MESSAGE_REWRITE, "reasoning"): (
        "You are an expert at improving reasoning traces in conversations. Given the "
        "conversation context and a target assistant message, rewrite ONLY the "
        "reasoning portion. The answer must remain unchanged. Output ONLY the "
        "improved reasoning text, nothing else."
    ),
    (CATEGORY_MESSAGE_REWRITE, "answer"): (
        "You are an expert at improving assistant responses in conversations. Given "
        "the conversation context and a target assistant message, rewrite ONLY the "
        "answer. Do not include any <think> tags or reasoning. Output ONLY the "
        "improved answer text, nothing else."
    ),
    (CATEGORY_MESSAGE_REWRITE, "both"): (
        "You are an expert at improving AI assistant responses. Given a conversation "
        "and a target message, regenerate BOTH the reasoning trace and the answer. "
        "Respond with a valid JSON object containing \"reasoning\" and \"answer\" "
        "fields."
    ),
    (CATEGORY_SPLIT, "reasoning"): (
        "You are an expert at generating detailed reasoning traces. Given the full "
        "item context, regenerate ONLY the reasoning/thinking process. Output the "
        "improved reasoning as plain text, nothing else."
    ),
    (CATEGORY_SPLIT, "answer"): (
        "You are an expert at generating high-quality answers. Given the full item "
        "context and the reasoning trace, regenerate ONLY the answer. Output the "
        "improved answer as plain text, nothing else."
    ),
    (CATEGORY_SCORING, "scorer"): (
        "You are an expert evaluator. Score the quality of both the reasoning and "
        "answer on a scale of 1-5, where 1 is poor and 5 is excellent. Respond with "
        "ONLY a single digit (1-5)."
    ),
}


class PromptResolver:
    """
    Resolve system prompt text per (category, role).

    Attributes:
        overrides: Operator-supplied prompts that replace the defaults
    """

    def __init__(self, overrides: Optional[Dict[Tuple[str, str], str]] = None):
        self.overrides: Dict[Tuple[str, str], str] = dict(overrides or {})

    def get(self, category: str, role: str) -> str:
        """
        Get the system prompt for a category and role.

        Raises:
            KeyError: If neither an override nor a default exists
        """
        key = (category, role)
        override = self.overrides.get(key)
        if override and override.strip():
            return override
        if key in DEFAULT_PROMPTS:
            return DEFAULT_PROMPTS[key]
        raise KeyError(f"No prompt for category={category!r} role={role!r}")

    def set_override(self, category: str, role: str, prompt: Optional[str]) -> None:
        """Set or (with an empty prompt) clear an override."""
        if prompt and prompt.strip():
            self.overrides[(category, role)] = prompt
        else:
            self.overrides.pop((category, role), None)
