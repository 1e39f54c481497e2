"""
Provider Base — Shared types for chat providers

- ChatMessage: canonical {system, user, assistant} turn
- StreamChunk variants: Text, ToolUseStart, ToolInputDelta, ToolUseComplete,
  Done, Error (the last two are terminal)
- StreamSink: producer/consumer channel; the consumer closing it is the
  cancellation signal, surfaced to producers as SinkClosed on the next send
- ChatProvider: abstract adapter every provider implements
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

import httpx

from ..config import ProviderAuth
from ..errors import Timeout, UpstreamFailure

logger = logging.getLogger(__name__)

MAX_ERROR_DETAIL = 800


@dataclass
class ChatMessage:
    role: str                      # "system" | "user" | "assistant"
    content: str
    content_parts: Optional[List[Dict[str, Any]]] = None  # provider-native blocks

    @classmethod
    def system(cls, content: str) -> 'ChatMessage':
        return cls("system", content)

    @classmethod
    def user(cls, content: str) -> 'ChatMessage':
        return cls("user", content)

    @classmethod
    def assistant(cls, content: str) -> 'ChatMessage':
        return cls("assistant", content)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


def split_system(messages: List[ChatMessage]) -> Tuple[str, List[ChatMessage]]:
    """Coalesce system messages (joined by a blank line) and return the rest."""
    system = [m.content for m in messages if m.role == "system"]
    rest = [m for m in messages if m.role != "system"]
    return "\n\n".join(system), rest


# =============================================================================
# Stream chunks
# =============================================================================

class StreamChunk:
    """Base for everything a streaming generation can emit."""
    terminal = False


@dataclass
class Text(StreamChunk):
    text: str


@dataclass
class ToolUseStart(StreamChunk):
    id: str
    name: str


@dataclass
class ToolInputDelta(StreamChunk):
    partial_json: str


@dataclass
class ToolUseComplete(StreamChunk):
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Done(StreamChunk):
    stop_reason: Optional[str] = None
    terminal = True


@dataclass
class Error(StreamChunk):
    message: str
    terminal = True


class SinkClosed(Exception):
    """The consumer went away; producers must stop."""


class StreamSink:
    """
    Async channel between a provider and its consumer.

    Usage:
        sink = StreamSink()
        task = asyncio.create_task(router.generate_stream(messages, sink))
        async for chunk in sink:
            ...
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[StreamChunk]" = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, chunk: StreamChunk) -> None:
        if self._closed:
            raise SinkClosed()
        await self._queue.put(chunk)

    async def receive(self) -> StreamChunk:
        return await self._queue.get()

    def close(self) -> None:
        """Consumer side: stop accepting chunks."""
        self._closed = True

    async def __aiter__(self) -> AsyncIterator[StreamChunk]:
        while True:
            chunk = await self._queue.get()
            yield chunk
            if chunk.terminal:
                return

    def drain(self) -> List[StreamChunk]:
        """Everything queued so far, without waiting."""
        chunks = []
        while not self._queue.empty():
            chunks.append(self._queue.get_nowait())
        return chunks


# =============================================================================
# Provider interface
# =============================================================================

@dataclass
class Timeouts:
    request: float = 120.0          # whole non-streaming call
    connect: float = 30.0           # streaming connect
    stream_read: float = 120.0      # per chunk while streaming

    def for_request(self) -> httpx.Timeout:
        return httpx.Timeout(self.request)

    def for_stream(self) -> httpx.Timeout:
        return httpx.Timeout(self.stream_read, connect=self.connect)


def resolve_token(auth: Optional[ProviderAuth], env_key: str, label: str,
                  env: Optional[Mapping[str, str]] = None) -> Tuple[str, bool]:
    """
    Pick credentials: API key, then OAuth access token, then environment.

    Returns (token, is_oauth). Raises UpstreamFailure when nothing is set.
    """
    env = os.environ if env is None else env
    if auth is not None and auth.api_key:
        return auth.api_key, False
    if auth is not None and auth.oauth and auth.oauth.access_token:
        return auth.oauth.access_token, True
    value = env.get(env_key) if env_key else None
    if value:
        return value, False
    raise UpstreamFailure(f"No {label} authentication configured")


class ChatProvider(ABC):
    """Abstract base for chat providers."""

    name = ""
    supports_tools = False

    def __init__(self, client: httpx.AsyncClient, model: str,
                 timeouts: Optional[Timeouts] = None):
        self.client = client
        self.model = model
        self.timeouts = timeouts or Timeouts()

    @abstractmethod
    async def generate(self, messages: List[ChatMessage]) -> str:
        """Full response text."""

    @abstractmethod
    async def stream(self, messages: List[ChatMessage], sink: StreamSink,
                     tools: Optional[List[Dict[str, Any]]] = None) -> None:
        """
        Emit chunks into the sink.

        Raises UpstreamFailure/Timeout for failures before or during the
        stream, and lets SinkClosed propagate.
        """

    # -- shared HTTP helpers --------------------------------------------------

    async def post_json(self, url: str, body: Dict[str, Any],
                        headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        try:
            return await self.client.post(
                url, json=body, headers=headers, timeout=self.timeouts.for_request())
        except httpx.TimeoutException as e:
            raise Timeout(f"{self.name} request timed out", str(e)) from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"{self.name} request failed: {e}") from e

    async def open_stream(self, url: str, body: Dict[str, Any],
                          headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        """Send a streaming request and return the response once a 2xx status arrives."""
        request = self.client.build_request(
            "POST", url, json=body, headers=headers, timeout=self.timeouts.for_stream())
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise Timeout(f"{self.name} request timed out", str(e)) from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"{self.name} request failed: {e}") from e

        if not response.is_success:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise self.status_error(response)
        return response

    def status_error(self, response: httpx.Response) -> UpstreamFailure:
        return status_error(self.name, response)


def status_error(name: str, response: httpx.Response) -> UpstreamFailure:
    """'<name> error: <status>' plus up to 800 characters of body."""
    status = f"{response.status_code} {response.reason_phrase}".strip()
    detail = response.text[:MAX_ERROR_DETAIL]
    message = f"{name} error: {status}"
    if detail.strip():
        message = f"{message}\n{detail}"
    return UpstreamFailure(message, status=response.status_code)


def stream_error_message(name: str, error: Any) -> str:
    """Message for an error event sent inside a stream."""
    if isinstance(error, dict):
        error = error.get("message") or error.get("type") or ""
    text = str(error).strip() if error else ""
    return f"{name} error: {text}" if text else f"{name} reported an error"
