"""
Anthropic Messages API adapter (streaming with native tool use).

Stream events handled:
    content_block_start (tool_use)   -> ToolUseStart
    content_block_delta text_delta   -> Text
    content_block_delta input_json   -> ToolInputDelta (accumulated)
    content_block_stop               -> ToolUseComplete (parsed input, {} if invalid)
    message_delta                    -> remembers stop_reason
    message_stop                     -> Done
    error                            -> Error(message)
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx
import orjson

from ..config import ProviderAuth
from ..errors import UpstreamFailure
from .base import (
    ChatMessage, ChatProvider, Done, Error, StreamSink, Text, Timeouts, ToolInputDelta,
    ToolUseComplete, ToolUseStart, resolve_token, split_system, status_error,
    stream_error_message,
)
from .sse import iter_events

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
MAX_TOKENS = 4096


class AnthropicProvider(ChatProvider):
    name = "anthropic"
    supports_tools = True

    def __init__(self, client: httpx.AsyncClient, model: str, auth: Optional[ProviderAuth] = None,
                 timeouts: Optional[Timeouts] = None, env: Optional[Mapping[str, str]] = None):
        super().__init__(client, model, timeouts)
        self.token, self.use_oauth = resolve_token(auth, "ANTHROPIC_API_KEY", "Anthropic", env)

    def headers(self) -> Dict[str, str]:
        headers = {"anthropic-version": API_VERSION, "content-type": "application/json"}
        if self.use_oauth:
            headers["authorization"] = f"Bearer {self.token}"
        else:
            headers["x-api-key"] = self.token
        return headers

    def build_request(self, messages: List[ChatMessage], stream: bool,
                      tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        system, rest = split_system(messages)
        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "messages": [
                {"role": m.role, "content": m.content_parts if m.content_parts else m.content}
                for m in rest
            ],
        }
        if system.strip():
            body["system"] = system
        if stream:
            body["stream"] = True
        if tools:
            body["tools"] = tools
        return body

    async def generate(self, messages: List[ChatMessage]) -> str:
        response = await self.post_json(API_URL, self.build_request(messages, False), self.headers())
        if not response.is_success:
            raise status_error(self.name, response)
        try:
            blocks = orjson.loads(response.content).get("content") or []
        except (orjson.JSONDecodeError, AttributeError) as e:
            raise UpstreamFailure("anthropic returned invalid JSON", str(e)) from e
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")

    async def stream(self, messages: List[ChatMessage], sink: StreamSink,
                     tools: Optional[List[Dict[str, Any]]] = None) -> None:
        response = await self.open_stream(
            API_URL, self.build_request(messages, True, tools), self.headers())

        tool_id: Optional[str] = None
        tool_name: Optional[str] = None
        tool_json = ""
        stop_reason: Optional[str] = None

        try:
            async for event in iter_events(response, self.name):
                try:
                    data = orjson.loads(event.data)
                except orjson.JSONDecodeError:
                    continue
                if not isinstance(data, dict):
                    continue
                kind = data.get("type")

                if kind == "content_block_start":
                    block = data.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        tool_id, tool_name, tool_json = block.get("id", ""), block.get("name", ""), ""
                        await sink.send(ToolUseStart(tool_id, tool_name))

                elif kind == "content_block_delta":
                    delta = data.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        await sink.send(Text(delta["text"]))
                    elif delta.get("type") == "input_json_delta":
                        partial = delta.get("partial_json") or ""
                        tool_json += partial
                        await sink.send(ToolInputDelta(partial))

                elif kind == "content_block_stop":
                    if tool_id is not None:
                        await sink.send(ToolUseComplete(tool_id, tool_name or "", parse_tool_input(tool_json)))
                        tool_id, tool_name, tool_json = None, None, ""

                elif kind == "message_delta":
                    stop_reason = (data.get("delta") or {}).get("stop_reason") or stop_reason

                elif kind == "message_stop":
                    await sink.send(Done(stop_reason))
                    return

                elif kind == "error":
                    await sink.send(Error(stream_error_message(self.name, data.get("error"))))
                    return
        finally:
            await response.aclose()

        await sink.send(Done(stop_reason))


def parse_tool_input(text: str) -> Dict[str, Any]:
    """Accumulated tool JSON, or {} when it is empty or invalid."""
    try:
        value = orjson.loads(text) if text.strip() else {}
    except orjson.JSONDecodeError:
        logger.debug("Tool input was not valid JSON: %r", text[:200])
        return {}
    return value if isinstance(value, dict) else {}
