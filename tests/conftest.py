"""
Shared test doubles.

FakeModelPort stands in for the model-call port so no test touches the
network.
"""

import threading
from typing import Callable, List, Optional, Tuple, Union

import pytest

from models import Record
from services.dataset_store import DatasetStore

Reply = Union[str, Exception]


class FakeModelPort:
    """
    Scripted streaming model port.

    Args:
        responder: A fixed reply, or a callable (system_prompt, user_prompt,
            call_number) -> reply. A reply that is an Exception is raised
            instead of streamed.
        chunk_size: Characters per streamed delta
    """

    def __init__(self, responder: Union[Reply, Callable[[str, str, int], Reply]], chunk_size: int = 5):
        self.responder = responder
        self.chunk_size = chunk_size
        self.calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def stream_chat(self, system_prompt, user_prompt, params=None, cancel_token=None):
        with self._lock:
            self.calls.append((system_prompt, user_prompt))
            call_number = len(self.calls)
        reply = self.responder(system_prompt, user_prompt, call_number) if callable(self.responder) else self.responder
        if isinstance(reply, Exception):
            raise reply
        for i in range(0, len(reply), self.chunk_size):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            yield reply[i:i + self.chunk_size]

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)


def make_records(count: int, answer: str = "old answer") -> List[Record]:
    """Flat records r0..r{count-1} whose queries carry a <<qN>> marker."""
    return [
        Record(id=f"r{i}", query=f"Question <<q{i}>>", reasoning="old reasoning", answer=answer)
        for i in range(count)
    ]


def marker_of(user_prompt: str) -> Optional[int]:
    """Recover N from the <<qN>> marker of a prompt."""
    start = user_prompt.find("<<q")
    if start == -1:
        return None
    end = user_prompt.find(">>", start)
    return int(user_prompt[start + 3:end])


@pytest.fixture
def store():
    return DatasetStore(make_records(10))
