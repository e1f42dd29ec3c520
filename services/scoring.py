"""
Autoscore: ask a model for a 1-5 quality score of a record.
"""

import re
from typing import Any, Dict, Optional

from models.record import Record
from services.model_client import CancelToken, ModelPort, collect_stream
from services.prompt_resolver import CATEGORY_SCORING, PromptResolver
from utils.text_cleaning import parse_think_tags

_SCORE_DIGIT = re.compile(r"[1-5]")


def parse_score(text: str) -> int:
    """
    Parse the first 1-5 digit of a response, ignoring any <think> block.

    Returns:
        The score, or 0 when none could be found
    """
    if not text:
        return 0
    _, answer = parse_think_tags(str(text))
    match = _SCORE_DIGIT.search(answer)
    return int(match.group(0)) if match else 0


def build_scoring_prompt(record: Record) -> str:
    """User prompt for scoring one record."""
    return (
        "## ITEM TO SCORE\n"
        f"Query: {record.effective_query}\n"
        f"Reasoning Trace: {record.reasoning}\n"
        f"Answer: {record.answer}\n\n"
        "---\n"
        "Based on the criteria above, provide a 1-5 score."
    )


class Scorer:
    """Scores records through the streaming model port."""

    def __init__(
        self,
        model_port: ModelPort,
        prompts: Optional[PromptResolver] = None,
        generation_params: Optional[Dict[str, Any]] = None,
    ):
        self.model_port = model_port
        self.prompts = prompts or PromptResolver()
        self.generation_params = {"max_tokens": 64, "temperature": 0.3}
        self.generation_params.update(generation_params or {})

    def score(self, record: Record, cancel_token: Optional[CancelToken] = None, on_delta=None) -> int:
        """
        Score one record.

        Returns:
            1-5, or 0 when the response held no usable score

        Raises:
            CancellationError, TransportError
        """
        raw = collect_stream(
            self.model_port,
            self.prompts.get(CATEGORY_SCORING, "scorer"),
            build_scoring_prompt(record),
            params=self.generation_params,
            cancel_token=cancel_token,
            on_delta=on_delta,
        )
        return parse_score(raw)
