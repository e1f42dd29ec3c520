"""
Record data model for LLM-QA Curation Workbench.

Represents a single generated (query, reasoning, answer) record together
with the curation flags tracked while the dataset is being cleaned.
"""

import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class ChatMessage:
    """
    One turn of a multi-turn record.

    Attributes:
        role: system / user / assistant
        content: Message text (kept free of <think> markup for assistants)
        reasoning_content: Reasoning trace attached to an assistant turn
    """

    role: str
    content: str = ""
    reasoning_content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"role": self.role, "content": self.content}
        if self.reasoning_content:
            data["reasoning_content"] = self.reasoning_content
        return data

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ChatMessage":
        reasoning = raw.get("reasoning_content") or raw.get("reasoning")
        return cls(
            role=str(raw.get("role") or "user"),
            content=ensure_string(raw.get("content")),
            reasoning_content=ensure_string(reasoning) if reasoning else None,
        )


@dataclass
class Record:
    """
    Represents a single dataset record being curated.

    Attributes:
        id: Stable unique identifier
        query: Question text
        reasoning: Reasoning trace
        answer: Answer text
        messages: Ordered conversation turns for multi-turn records
        score: Quality score (0 = unrated, 1-5 = rated)
        is_duplicate: Whether the record collides with another record's query
        duplicate_group_id: Shared grouping key, present only while duplicate
        is_discarded: Soft delete flag
        has_unsaved_changes: Dirty flag relative to the backing store
        full_seed: Seed text the record was generated from
        model_used: Model that produced the record
        timestamp: Creation timestamp as imported
        extra: Unrecognized imported keys, preserved on export
    """

    id: str
    query: str = ""
    reasoning: str = ""
    answer: str = ""
    messages: Optional[List[ChatMessage]] = None
    score: int = 0
    is_duplicate: bool = False
    duplicate_group_id: Optional[str] = None
    is_discarded: bool = False
    has_unsaved_changes: bool = False
    full_seed: str = ""
    model_used: str = "Imported"
    timestamp: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_multi_turn(self) -> bool:
        """A record with a non-empty message list is multi-turn."""
        return bool(self.messages)

    @property
    def effective_query(self) -> str:
        """Query text with the alias and seed fallbacks applied."""
        if self.query:
            return self.query
        for alias in ("QUERY", "instruction", "question", "prompt"):
            value = self.extra.get(alias)
            if value:
                return ensure_string(value)
        return self.full_seed or ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dict (messages expanded)."""
        data = asdict(self)
        data["messages"] = (
            [m.to_dict() for m in self.messages] if self.messages is not None else None
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """Inverse of to_dict; unknown keys are kept in extra."""
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = dict(kwargs.pop("extra", None) or {})
        extra.update({k: v for k, v in data.items() if k not in known})
        messages = kwargs.pop("messages", None)
        if messages is not None:
            kwargs["messages"] = [
                m if isinstance(m, ChatMessage) else ChatMessage.from_dict(m)
                for m in messages
            ]
        kwargs["id"] = str(kwargs.get("id", ""))
        return cls(extra=extra, **kwargs)


def derive_presentation_fields(messages: List[ChatMessage]) -> Dict[str, str]:
    """
    Derive the flat query/answer shown for a multi-turn record.

    Uses the last user turn and the last assistant turn.
    """
    fields = {}
    for message in reversed(messages):
        if message.role == "user" and "query" not in fields:
            fields["query"] = message.content
        elif message.role == "assistant" and "answer" not in fields:
            fields["answer"] = message.content
            if message.reasoning_content:
                fields["reasoning"] = message.reasoning_content
        if "query" in fields and "answer" in fields:
            break
    return fields


def ensure_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
