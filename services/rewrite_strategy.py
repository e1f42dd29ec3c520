"""
Rewrite strategy: regenerate record fields with a streaming model call.

Every delta is folded through the field extractor so callers can render
live progress. "Both" targets run either as one combined call or, with
split_field_requests, as two sequential calls (reasoning, then answer).
The strategy never retries and never mutates the record it is given; it
returns a RewriteResult whose updates the caller merges by id.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from models.extraction import ExtractionResult
from models.record import ChatMessage, Record, derive_presentation_fields
from models.rewrite_target import RewriteTarget
from services.context_builder import build_item_context, build_message_context, split_message
from services.field_extractor import extract
from services.model_client import CancelToken, ModelPort, collect_stream
from services.prompt_resolver import (
    CATEGORY_MESSAGE_REWRITE,
    CATEGORY_REWRITE,
    CATEGORY_SPLIT,
    PromptResolver,
)
from utils.text_cleaning import clean_rewrite_output, sanitize_reasoning
from utils.validation import validate_message_index

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], None]


@dataclass
class RewriteResult:
    """
    Outcome of one rewrite.

    Attributes:
        target: Target that was actually executed
        updates: Record fields to merge (empty when nothing usable came back)
        raw: Raw text of the last model call
        message_index: Message rewritten for message-scoped targets
        calls: Number of model calls issued
    """

    target: RewriteTarget
    updates: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""
    message_index: Optional[int] = None
    calls: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.updates)


def pick_field(extracted: ExtractionResult, field_name: str, raw: str) -> str:
    """
    Read one field from an extraction using the synonym fallback order.

    reasoning: reasoning -> answer -> raw
    answer:    answer -> reasoning -> raw
    query:     query -> answer -> raw
    """
    if field_name == "reasoning":
        return extracted.reasoning or extracted.answer or raw
    if field_name == "query":
        return extracted.query or extracted.answer or raw
    return extracted.answer or extracted.reasoning or raw


def resolve_message_target(record: Record, target: RewriteTarget, message_index: Optional[int]):
    """
    Map a target onto a concrete message of a multi-turn record.

    Flat targets on a multi-turn record address its final turn: the last
    user message for QUERY, the last assistant message otherwise.

    Raises:
        ValueError: If the index or the role of the message does not fit
    """
    messages = record.messages or []
    wanted_role = "user" if target.base is RewriteTarget.QUERY else "assistant"
    if message_index is None and messages:
        candidates = [idx for idx, message in enumerate(messages) if message.role == wanted_role]
        if not candidates:
            raise ValueError(f"Record {record.id} has no {wanted_role} message to rewrite")
        message_index = candidates[-1]

    is_valid, error = validate_message_index(messages, message_index or 0, wanted_role)
    if not is_valid:
        raise ValueError(f"Record {record.id}: {error}")
    return target.for_message(), message_index


class RewriteStrategy:
    """
    Drives the model calls for one rewrite target.

    Attributes:
        model_port: Streaming model-call port
        prompts: System prompt provider
        split_field_requests: Use two calls for BOTH / MESSAGE_BOTH
        generation_params: Extra params passed to every call
    """

    def __init__(
        self,
        model_port: ModelPort,
        prompts: Optional[PromptResolver] = None,
        split_field_requests: bool = False,
        generation_params: Optional[Dict[str, Any]] = None,
    ):
        self.model_port = model_port
        self.prompts = prompts or PromptResolver()
        self.split_field_requests = split_field_requests
        self.generation_params = dict(generation_params or {})

    def rewrite(
        self,
        item: Record,
        target: RewriteTarget,
        on_delta: Optional[DeltaCallback] = None,
        cancel_token: Optional[CancelToken] = None,
        message_index: Optional[int] = None,
    ) -> RewriteResult:
        """
        Regenerate the fields selected by target.

        Raises:
            CancellationError: cancel_token fired; no result is produced
            TransportError: the model call failed
            ValueError: message-scoped target does not fit the record
        """
        target = RewriteTarget(target)
        if target.is_message_scoped or item.is_multi_turn:
            target, message_index = resolve_message_target(item, target, message_index)
            return self._rewrite_message(item, target, message_index, on_delta, cancel_token)

        if target is RewriteTarget.BOTH:
            if self.split_field_requests:
                return self._rewrite_both_split(item, on_delta, cancel_token)
            return self._rewrite_both_combined(item, on_delta, cancel_token)
        return self._rewrite_single(item, target.value, on_delta, cancel_token)

    def _call(self, system_prompt: str, user_prompt: str, on_delta, cancel_token) -> str:
        return collect_stream(
            self.model_port,
            system_prompt,
            user_prompt,
            params=self.generation_params,
            cancel_token=cancel_token,
            on_delta=on_delta,
        )

    def _finish_field(self, raw: str, field_name: str) -> str:
        value = pick_field(extract(raw, field_name), field_name, raw)
        return clean_rewrite_output(value, field_name)

    # ---------------- flat records ----------------

    def _rewrite_single(self, item: Record, field_name: str, on_delta, cancel_token) -> RewriteResult:
        raw = self._call(
            self.prompts.get(CATEGORY_REWRITE, field_name),
            build_item_context(item, field_name),
            on_delta,
            cancel_token,
        )
        value = self._finish_field(raw, field_name)
        result = RewriteResult(target=RewriteTarget(field_name), raw=raw, calls=1)
        if value:
            result.updates[field_name] = value
        else:
            logger.warning("Empty %s rewrite for record %s", field_name, item.id)
        return result

    def _combined_values(self, raw: str, existing_answer: str):
        extracted = extract(raw, "reasoning")
        reasoning = sanitize_reasoning(extracted.reasoning or extracted.answer or raw)
        # a lone recovered field is ambiguous, so the answer only changes when both came back
        if extracted.reasoning and extracted.answer:
            answer = clean_rewrite_output(extracted.answer, "answer")
        else:
            answer = existing_answer
        return reasoning, answer

    def _rewrite_both_combined(self, item: Record, on_delta, cancel_token) -> RewriteResult:
        raw = self._call(
            self.prompts.get(CATEGORY_REWRITE, "both"),
            build_item_context(item, "both"),
            on_delta,
            cancel_token,
        )
        reasoning, answer = self._combined_values(raw, item.answer)
        result = RewriteResult(target=RewriteTarget.BOTH, raw=raw, calls=1)
        if reasoning:
            result.updates["reasoning"] = reasoning
        if answer and answer != item.answer:
            result.updates["answer"] = answer
        return result

    def _rewrite_both_split(self, item: Record, on_delta, cancel_token) -> RewriteResult:
        reasoning_raw = self._call(
            self.prompts.get(CATEGORY_SPLIT, "reasoning"),
            build_item_context(item, "reasoning"),
            on_delta,
            cancel_token,
        )
        reasoning = self._finish_field(reasoning_raw, "reasoning")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        answer_raw = self._call(
            self.prompts.get(CATEGORY_SPLIT, "answer"),
            build_item_context(item, "answer", reasoning_override=reasoning),
            _prefixed(on_delta, reasoning),
            cancel_token,
        )
        answer = self._finish_field(answer_raw, "answer")

        result = RewriteResult(target=RewriteTarget.BOTH, raw=answer_raw, calls=2)
        if reasoning:
            result.updates["reasoning"] = reasoning
        if answer:
            result.updates["answer"] = answer
        return result

    # ---------------- multi-turn records ----------------

    def _rewrite_message(
        self,
        item: Record,
        target: RewriteTarget,
        message_index: int,
        on_delta,
        cancel_token,
    ) -> RewriteResult:
        original = item.messages[message_index]
        old_reasoning, old_answer = split_message(original)
        new_reasoning: Optional[str] = None
        new_content: Optional[str] = None
        calls = 1
        base = target.base

        if base is RewriteTarget.BOTH and self.split_field_requests:
            raw = self._call(
                self.prompts.get(CATEGORY_SPLIT, "reasoning"),
                build_message_context(item, message_index, "reasoning"),
                on_delta,
                cancel_token,
            )
            new_reasoning = self._finish_field(raw, "reasoning")
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            raw = self._call(
                self.prompts.get(CATEGORY_SPLIT, "answer"),
                build_message_context(item, message_index, "answer", reasoning_override=new_reasoning),
                _prefixed(on_delta, new_reasoning),
                cancel_token,
            )
            new_content = self._finish_field(raw, "answer")
            calls = 2
        elif base is RewriteTarget.BOTH:
            raw = self._call(
                self.prompts.get(CATEGORY_MESSAGE_REWRITE, "both"),
                build_message_context(item, message_index, "both"),
                on_delta,
                cancel_token,
            )
            new_reasoning, new_content = self._combined_values(raw, old_answer)
        else:
            field_name = base.value
            raw = self._call(
                self.prompts.get(CATEGORY_MESSAGE_REWRITE, field_name),
                build_message_context(item, message_index, field_name),
                on_delta,
                cancel_token,
            )
            value = self._finish_field(raw, field_name)
            if base is RewriteTarget.REASONING:
                new_reasoning = value
            else:
                new_content = value

        result = RewriteResult(target=target, raw=raw, message_index=message_index, calls=calls)
        if not new_reasoning and not new_content:
            logger.warning("Empty %s rewrite for record %s message %d", target.value, item.id, message_index)
            return result

        if original.role == "assistant":
            replacement = ChatMessage(
                role=original.role,
                content=new_content or old_answer,
                reasoning_content=sanitize_reasoning(new_reasoning or old_reasoning) or None,
            )
        else:
            replacement = ChatMessage(role=original.role, content=new_content or original.content)

        messages: List[ChatMessage] = [
            ChatMessage(m.role, m.content, m.reasoning_content) for m in item.messages
        ]
        messages[message_index] = replacement
        result.updates["messages"] = messages
        result.updates.update(derive_presentation_fields(messages))
        return result


def _prefixed(on_delta: Optional[DeltaCallback], reasoning: str) -> Optional[DeltaCallback]:
    """Show the finished reasoning in front of the streaming answer."""
    if on_delta is None:
        return None

    def callback(accumulated: str) -> None:
        on_delta(f"<think>{reasoning}</think>{accumulated}")

    return callback
