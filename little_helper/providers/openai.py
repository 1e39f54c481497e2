"""
OpenAI chat-completions adapter (also used for OpenAI-compatible endpoints).

Streaming: `data: [DONE]` ends the stream; choices[0].delta.content becomes
Text; a finish_reason ends the stream with Done(reason); an `error` payload
ends it with Error(message). Tool calls stream as delta.tool_calls fragments
and are re-emitted as ToolUse* chunks.
"""

from typing import Any, Dict, List, Mapping, Optional

import httpx
import orjson

from ..config import ProviderAuth
from ..errors import UpstreamFailure
from .anthropic import parse_tool_input
from .base import (
    ChatMessage, ChatProvider, Done, Error, StreamSink, Text, Timeouts, ToolInputDelta,
    ToolUseComplete, ToolUseStart, resolve_token, status_error, stream_error_message,
)
from .sse import iter_events
from .tools import to_openai_tools

DEFAULT_BASE_URL = "https://api.openai.com"


class OpenAIProvider(ChatProvider):
    name = "openai"
    supports_tools = True

    def __init__(self, client: httpx.AsyncClient, model: str, auth: Optional[ProviderAuth] = None,
                 base_url: Optional[str] = None, timeouts: Optional[Timeouts] = None,
                 env: Optional[Mapping[str, str]] = None):
        super().__init__(client, model, timeouts)
        self.token, _ = resolve_token(auth, "OPENAI_API_KEY", "OpenAI", env)
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")

    @property
    def url(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    def headers(self) -> Dict[str, str]:
        return {"authorization": f"Bearer {self.token}", "content-type": "application/json"}

    def build_request(self, messages: List[ChatMessage], stream: bool,
                      tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
        }
        if stream:
            body["stream"] = True
        if tools:
            body["tools"] = to_openai_tools(tools)
        return body

    async def generate(self, messages: List[ChatMessage]) -> str:
        response = await self.post_json(self.url, self.build_request(messages, False), self.headers())
        if not response.is_success:
            raise status_error(self.name, response)
        try:
            choices = orjson.loads(response.content).get("choices") or []
        except (orjson.JSONDecodeError, AttributeError) as e:
            raise UpstreamFailure("openai returned invalid JSON", str(e)) from e
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

    async def stream(self, messages: List[ChatMessage], sink: StreamSink,
                     tools: Optional[List[Dict[str, Any]]] = None) -> None:
        response = await self.open_stream(
            self.url, self.build_request(messages, True, tools), self.headers())
        pending = _PendingToolCall()

        try:
            async for event in iter_events(response, self.name):
                if event.data == "[DONE]":
                    await pending.finish(sink)
                    await sink.send(Done())
                    return
                try:
                    data = orjson.loads(event.data)
                except orjson.JSONDecodeError:
                    continue  # comments, keep-alives
                if not isinstance(data, dict):
                    continue
                if data.get("error"):
                    await sink.send(Error(stream_error_message(self.name, data["error"])))
                    return
                choices = data.get("choices")
                if not isinstance(choices, list) or not choices:
                    continue  # usage-only events
                choice = choices[0]
                if not isinstance(choice, dict):
                    continue

                delta = choice.get("delta")
                if not isinstance(delta, dict):
                    delta = {}
                if isinstance(delta.get("content"), str) and delta["content"]:
                    await sink.send(Text(delta["content"]))
                calls = delta.get("tool_calls")
                for call in calls if isinstance(calls, list) else []:
                    if isinstance(call, dict):
                        await pending.update(call, sink)

                if choice.get("finish_reason"):
                    await pending.finish(sink)
                    await sink.send(Done(choice["finish_reason"]))
                    return
        finally:
            await response.aclose()

        await pending.finish(sink)
        await sink.send(Done())


class _PendingToolCall:
    """Tracks the tool call being streamed; a new index completes the previous one."""

    def __init__(self):
        self.index: Optional[int] = None
        self.id = ""
        self.name = ""
        self.arguments = ""

    async def update(self, call: Dict[str, Any], sink: StreamSink) -> None:
        index = call.get("index", 0)
        function = call.get("function") or {}
        if index != self.index:
            await self.finish(sink)
            self.index = index
            self.id = call.get("id") or ""
            self.name = function.get("name") or ""
            self.arguments = ""
            await sink.send(ToolUseStart(self.id, self.name))
        fragment = function.get("arguments") or ""
        if fragment:
            self.arguments += fragment
            await sink.send(ToolInputDelta(fragment))

    async def finish(self, sink: StreamSink) -> None:
        if self.index is None:
            return
        await sink.send(ToolUseComplete(self.id, self.name, parse_tool_input(self.arguments)))
        self.index = None
