"""
Model-call port and an OpenAI-compatible streaming client.

The rewrite and scoring code only depends on ModelPort.stream_chat(), which
yields text deltas and honours a CancelToken. OpenAICompatibleClient is the
concrete transport for /v1/chat/completions endpoints (OpenAI, OpenRouter,
DeepSeek, Together, vLLM, Ollama's compatibility layer, ...).
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

import requests

from services.errors import CancellationError, TransportError

logger = logging.getLogger(__name__)


class CancelToken:
    """
    Cooperative cancellation signal shared between threads.

    Child tokens are cancelled together with their parent; cancelling a
    child leaves the parent untouched. Callbacks registered with
    on_cancel() run once, on the thread that calls cancel().
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["CancelToken"] = []
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.debug("cancel callback failed", exc_info=True)
        for child in children:
            child.cancel()

    def child(self) -> "CancelToken":
        token = CancelToken()
        with self._lock:
            if not self._event.is_set():
                self._children.append(token)
                return token
        token.cancel()
        return token

    def release(self, child: "CancelToken") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def unregister():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return unregister
        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("Operation cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds; returns True if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


class ModelPort(Protocol):
    """Streaming chat call used by the rewrite strategy and scorer."""

    def stream_chat(
        self,
        system_prompt: str,
        user_prompt: str,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Iterator[str]:
        ...


def build_endpoint(base_url: str) -> str:
    """
    Normalise a provider base URL to its chat completions endpoint.

    https://api.openai.com/v1   -> https://api.openai.com/v1/chat/completions
    https://api.together.xyz    -> https://api.together.xyz/v1/chat/completions
    """
    url = (base_url or "").rstrip("/")
    if not url:
        raise ValueError("API base URL is not configured")
    if url.endswith("/chat/completions"):
        return url
    if not url.endswith("/v1"):
        url += "/v1"
    return f"{url}/chat/completions"


class OpenAICompatibleClient:
    """
    Chat completions client with server-sent-event streaming.

    Reasoning deltas (delta.reasoning_content / delta.reasoning) are
    re-emitted wrapped in <think>...</think> so downstream extraction sees a
    single text stream.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        timeout: float = 90.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = build_endpoint(base_url)
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _body(self, system_prompt: str, user_prompt: str, params: Optional[Dict[str, Any]], stream: bool) -> Dict[str, Any]:
        params = dict(params or {})
        body = {
            "model": params.pop("model", None) or self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": params.pop("max_tokens", None) or self.max_tokens,
            "temperature": params.pop("temperature", self.temperature),
            "stream": stream,
        }
        if params.pop("json_mode", False):
            body["response_format"] = {"type": "json_object"}
        # remaining generation params (top_p, seed, ...) pass straight through
        body.update({k: v for k, v in params.items() if v is not None})
        return body

    def _post(self, body: Dict[str, Any], stream: bool) -> requests.Response:
        try:
            response = self.session.post(
                self.endpoint,
                headers=self._headers(),
                json=body,
                timeout=self.timeout,
                stream=stream,
            )
        except requests.RequestException as e:
            raise TransportError(f"Request to {self.endpoint} failed: {e}") from e

        if response.status_code != 200:
            text = response.text[:500]
            response.close()
            raise TransportError(
                f"API returned {response.status_code}: {text}",
                status_code=response.status_code,
            )
        return response

    def stream_chat(
        self,
        system_prompt: str,
        user_prompt: str,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Iterator[str]:
        """
        Yield text deltas as they arrive.

        Raises:
            CancellationError: cancel_token fired before or during the stream
            TransportError: network failure, non-200 status, broken stream
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        response = self._post(self._body(system_prompt, user_prompt, params, stream=True), stream=True)
        unregister = cancel_token.on_cancel(response.close) if cancel_token is not None else None
        in_reasoning = False
        try:
            # SSE is UTF-8 whatever charset the Content-Type header claims
            for raw_line in response.iter_lines():
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                line = raw_line.decode("utf-8", errors="replace")
                if not line or not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if payload == "[DONE]":
                    break
                try:
                    chunk = json.loads(payload)
                except ValueError:
                    logger.debug("Skipping malformed stream line: %s", payload[:200])
                    continue
                if chunk.get("error"):
                    raise TransportError(f"Provider error in stream: {chunk['error']}")
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                delta = choices[0].get("delta") or {}
                reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                content = delta.get("content")
                if reasoning:
                    if not in_reasoning:
                        in_reasoning = True
                        reasoning = "<think>" + reasoning
                    yield reasoning
                if content:
                    if in_reasoning:
                        in_reasoning = False
                        content = "</think>" + content
                    yield content
            if in_reasoning:
                yield "</think>"
        except CancellationError:
            raise
        except TransportError:
            raise
        except Exception as e:
            if cancel_token is not None and cancel_token.cancelled:
                raise CancellationError("Operation cancelled") from e
            raise TransportError(f"Stream interrupted: {e}") from e
        finally:
            if unregister is not None:
                unregister()
            response.close()


def collect_stream(
    port: ModelPort,
    system_prompt: str,
    user_prompt: str,
    params: Optional[Dict[str, Any]] = None,
    cancel_token: Optional[CancelToken] = None,
    on_delta: Optional[Callable[[str], None]] = None,
) -> str:
    """Drain a stream, calling on_delta with the accumulated text after each delta."""
    accumulated = ""
    for delta in port.stream_chat(system_prompt, user_prompt, params, cancel_token):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        accumulated += delta
        if on_delta is not None:
            on_delta(accumulated)
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    return accumulated
