"""
Text cleaning helpers for model output.

Handles code fences, <think> delimiters and the residual wrapper markup
models like to leave around reasoning traces.
"""

import re
from typing import Optional, Tuple

THINK_BLOCK = re.compile(r"<think>([\s\S]*?)</think>", re.IGNORECASE)
OPEN_THINK = re.compile(r"<think>([\s\S]*)$", re.IGNORECASE)
TOOL_CALL_BLOCK = re.compile(r"<tool_call>[\s\S]*?</tool_call>\s*", re.IGNORECASE)
UNCLOSED_TOOL_CALL = re.compile(r"^<tool_call>[\s\S]*", re.IGNORECASE)

_WRAPPER_TAGS = ("think", "reasoning_content", "reasoning", "reasoning_trace", "tool_call")
_WRAPPER_PATTERNS = [
    re.compile(rf"^<\s*{tag}\s*>([\s\S]*?)<\s*/\s*{tag}\s*>$", re.IGNORECASE)
    for tag in _WRAPPER_TAGS
]
_TAG_ALTERNATION = "|".join(_WRAPPER_TAGS)
_LEADING_TAG = re.compile(rf"^<\s*/?\s*(?:{_TAG_ALTERNATION})\s*>", re.IGNORECASE)
_TRAILING_TAG = re.compile(rf"<\s*/\s*(?:{_TAG_ALTERNATION})\s*>$", re.IGNORECASE)

_FENCE_OPEN = re.compile(r"^```[\w-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")
_FULL_FENCE = re.compile(r"^```(?:\w+)?\s*\n?([\s\S]*?)\n?```$")


def strip_code_fence(text: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence, if present."""
    if not text:
        return ""
    cleaned = text.strip()
    match = _FULL_FENCE.match(cleaned)
    if match:
        return match.group(1).strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def parse_think_tags(text: str) -> Tuple[Optional[str], str]:
    """
    Split text into (reasoning, answer) on a <think> block.

    An unterminated <think> at the end of the text counts as reasoning that
    is still streaming. Returns (None, text) when no delimiter is present.
    """
    if not text:
        return None, ""
    match = THINK_BLOCK.search(text)
    if match:
        reasoning = match.group(1).strip()
        answer = (text[:match.start()] + text[match.end():]).strip()
        return reasoning, answer
    match = OPEN_THINK.search(text)
    if match:
        return match.group(1).strip(), text[:match.start()].strip()
    return None, text


def sanitize_reasoning(text: str) -> str:
    """
    Strip residual delimiter markup from a reasoning trace.

    Unwraps known outer wrappers repeatedly, then drops dangling wrapper
    tags at the boundaries. Inner trace text is kept.
    """
    cleaned = strip_code_fence(text or "")
    if not cleaned:
        return ""

    for _ in range(8):
        previous = cleaned
        for pattern in _WRAPPER_PATTERNS:
            match = pattern.match(cleaned)
            if match:
                cleaned = match.group(1).strip()
        if previous == cleaned:
            break

    cleaned = _LEADING_TAG.sub("", cleaned)
    cleaned = _TRAILING_TAG.sub("", cleaned)
    return cleaned.strip()


def clean_rewrite_output(text: str, field: str) -> str:
    """
    Clean a rewritten field value.

    Tool-call artifacts are always removed. For reasoning the <think>
    wrapper is unwrapped; for answer and query the whole <think> block is
    dropped.
    """
    if not text:
        return ""
    cleaned = strip_code_fence(text)
    cleaned = TOOL_CALL_BLOCK.sub("", cleaned).strip()
    cleaned = UNCLOSED_TOOL_CALL.sub("", cleaned).strip()

    if field == "reasoning":
        match = THINK_BLOCK.search(cleaned)
        if match:
            cleaned = match.group(1).strip()
        elif cleaned.lower().startswith("<think>"):
            cleaned = cleaned[len("<think>"):].strip()
        return sanitize_reasoning(cleaned)

    cleaned = THINK_BLOCK.sub("", cleaned).strip()
    cleaned = re.sub(r"</?think>\s*", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()
