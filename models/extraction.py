"""Result type produced by the field extractor."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ExtractionResult:
    """
    Fields recovered from an accumulated model response.

    Attributes:
        reasoning: Recovered reasoning text, if any
        answer: Recovered answer text (any answer-synonym key), if any
        query: Recovered query text when a "query" key was present
        has_answer_start: True once a non-empty answer value has been seen
        has_reasoning_start: True once the reasoning key has been opened
        is_structured: True when the buffer was recognized as JSON-shaped
    """

    reasoning: Optional[str] = None
    answer: Optional[str] = None
    query: Optional[str] = None
    has_answer_start: bool = False
    has_reasoning_start: bool = False
    is_structured: bool = False
