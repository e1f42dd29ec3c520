"""
Field extraction from streaming model output.

Turns a growing text buffer into reasoning / answer / query fields. The
buffer may be a JSON object (complete or cut off mid-string), a response
with a <think> block, or plain text. extract() is a pure function of the
accumulated text and never raises, so it can be called after every delta.
"""

import json
import re
from typing import Dict, Optional, Tuple

from models.extraction import ExtractionResult
from utils.text_cleaning import parse_think_tags

REASONING_KEYS = ("reasoning", "reasoning_trace", "thought")
ANSWER_KEYS = ("answer", "response", "text", "content", "query")

_FENCE_OPEN = re.compile(r"^```[\w-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?[ \t]*```\s*$")

_SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
}

RECOGNIZED_KEYS = REASONING_KEYS + ANSWER_KEYS


def has_json_structure(text: str) -> bool:
    """Report whether a buffer looks like (the start of) a JSON object."""
    content = _strip_fence(text or "")
    return content.startswith("{")


def extract(buffer: str, requested_field: str = "answer") -> ExtractionResult:
    """
    Extract named fields from an accumulated model response.

    Args:
        buffer: All text received so far
        requested_field: Field that receives the whole buffer when no
            structure or delimiter is found (answer / reasoning / query)

    Returns:
        ExtractionResult with whatever could be recovered
    """
    result = ExtractionResult()
    if not buffer or not buffer.strip():
        return result

    content = _strip_fence(buffer)

    if content.startswith("{"):
        result.is_structured = True
        values, complete = _parse_object(content)
        if values is None:
            values = _recover_values(content)
            complete = False
        _apply_values(result, values)
        if complete and result.reasoning is None and result.answer is None:
            _assign_whole(result, content, requested_field)
        return result

    reasoning, remainder = parse_think_tags(content)
    if reasoning is not None:
        result.reasoning = reasoning
        result.has_reasoning_start = True
        result.answer = remainder
        result.has_answer_start = bool(remainder.strip())
        return result

    _assign_whole(result, content, requested_field)
    return result


def _strip_fence(text: str) -> str:
    content = text.lstrip()
    if content.startswith("```"):
        content = _FENCE_OPEN.sub("", content, count=1)
        content = _FENCE_CLOSE.sub("", content)
    return content


def _parse_object(content: str) -> Tuple[Optional[Dict[str, str]], bool]:
    """Strict parse of the top-level JSON object content starts with."""
    try:
        parsed, _ = json.JSONDecoder().raw_decode(content)
    except ValueError:
        return None, False
    if not isinstance(parsed, dict):
        return None, False
    values = {}
    for key in RECOGNIZED_KEYS:
        if key in parsed and parsed[key] is not None:
            value = parsed[key]
            values[key] = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    return values, True


def _recover_values(content: str) -> Dict[str, str]:
    """
    Recover the (possibly unterminated) string value of every top-level key
    seen so far.

    Walks the buffer with depth and string state, so a key name quoted inside
    a value or inside a nested object is never taken for a field.
    """
    values = {}
    depth = 0
    key = None
    after_colon = False
    i = 0
    length = len(content)
    while i < length:
        char = content[i]
        if char in "\"'":
            if depth == 1 and after_colon and key is not None:
                value, i, closed = _scan_string(content, i + 1, char)
                if key in RECOGNIZED_KEYS:
                    values.setdefault(key, value)
                key = None
                after_colon = False
                if not closed:
                    break
                continue
            text, i, closed = _scan_string(content, i + 1, char, lenient=False)
            if not closed:
                break
            key = text if depth == 1 and not after_colon else None
            after_colon = False
            continue
        if char == ":" and depth == 1 and key is not None:
            after_colon = True
        elif not char.isspace():
            if char in "{[":
                depth += 1
            elif char in "}]":
                depth -= 1
            key = None
            after_colon = False
        i += 1
    return values


def _scan_string(content: str, start: int, quote: str, lenient: bool = True) -> Tuple[str, int, bool]:
    """
    Read a string literal from start, unescaping as it goes.

    Returns (text, index after the literal, closed). Stops at the closing
    quote or the end of the buffer. In lenient mode a quote only closes the
    value when a separator follows it, so stray inner quotes survive. An
    escape sequence cut off by the end of the buffer is dropped rather than
    emitted.
    """
    out = []
    i = start
    length = len(content)
    closed = False
    while i < length:
        char = content[i]
        if char == "\\":
            if i + 1 >= length:
                i = length
                break
            code = content[i + 1]
            if code == "u":
                hex_digits = content[i + 2:i + 6]
                if len(hex_digits) < 4:
                    i = length
                    break
                try:
                    out.append(chr(int(hex_digits, 16)))
                except ValueError:
                    out.append(hex_digits)
                i += 6
                continue
            out.append(_SIMPLE_ESCAPES.get(code, code))
            i += 2
            continue
        if char == quote and (not lenient or _closes_value(content, i + 1)):
            closed = True
            i += 1
            break
        out.append(char)
        i += 1
    return _join_surrogates("".join(out)), i, closed


def _closes_value(content: str, after: int) -> bool:
    rest = content[after:].lstrip()
    return not rest or rest[0] in ",}]"


def _join_surrogates(text: str) -> str:
    if not any("\ud800" <= c <= "\udfff" for c in text):
        return text
    # high surrogate whose pair has not arrived yet
    if "\ud800" <= text[-1] <= "\udbff":
        text = text[:-1]
    return text.encode("utf-16", "surrogatepass").decode("utf-16", "replace")


def _apply_values(result: ExtractionResult, values: Dict[str, str]) -> None:
    for key in REASONING_KEYS:
        if key in values:
            result.reasoning = values[key]
            result.has_reasoning_start = True
            break
    for key in ANSWER_KEYS:
        if key in values:
            result.answer = values[key]
            break
    if "query" in values:
        result.query = values["query"]
    result.has_answer_start = bool(result.answer)


def _assign_whole(result: ExtractionResult, content: str, requested_field: str) -> None:
    if requested_field == "reasoning":
        result.reasoning = content
        result.has_reasoning_start = bool(content)
    elif requested_field == "query":
        result.query = content
        result.answer = content
        result.has_answer_start = bool(content.strip())
    else:
        result.answer = content
        result.has_answer_start = bool(content.strip())
