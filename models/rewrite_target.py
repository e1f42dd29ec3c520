"""
Rewrite targets and the composite key used for per-item cancellation.
"""

from enum import Enum
from typing import NamedTuple, Optional


class RewriteTarget(str, Enum):
    """Which part of a record a rewrite regenerates."""

    QUERY = "query"
    REASONING = "reasoning"
    ANSWER = "answer"
    BOTH = "both"
    MESSAGE_QUERY = "message_query"
    MESSAGE_REASONING = "message_reasoning"
    MESSAGE_ANSWER = "message"
    MESSAGE_BOTH = "message_both"

    @property
    def is_message_scoped(self) -> bool:
        return self in _MESSAGE_TARGETS

    @property
    def base(self) -> "RewriteTarget":
        """The flat target a message-scoped target corresponds to."""
        return _MESSAGE_TO_BASE.get(self, self)

    def for_message(self) -> "RewriteTarget":
        """The message-scoped variant of a flat target."""
        for message_target, base in _MESSAGE_TO_BASE.items():
            if base is self:
                return message_target
        return self


_MESSAGE_TO_BASE = {
    RewriteTarget.MESSAGE_QUERY: RewriteTarget.QUERY,
    RewriteTarget.MESSAGE_REASONING: RewriteTarget.REASONING,
    RewriteTarget.MESSAGE_ANSWER: RewriteTarget.ANSWER,
    RewriteTarget.MESSAGE_BOTH: RewriteTarget.BOTH,
}

_MESSAGE_TARGETS = frozenset(_MESSAGE_TO_BASE)


class ItemKey(NamedTuple):
    """Identifies one in-flight unit: a record, optionally one of its messages."""

    item_id: str
    message_index: Optional[int] = None

    def __str__(self) -> str:
        if self.message_index is None:
            return self.item_id
        return f"{self.item_id}:{self.message_index}"
