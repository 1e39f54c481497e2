"""
Local Ollama adapter (/api/chat).

Ollama streams newline-delimited JSON rather than SSE: each line carries
`message.content`, and the final line has `done: true`.
"""

import os
from typing import Any, Dict, List, Mapping, Optional

import httpx
import orjson

from ..errors import Timeout, UpstreamFailure
from .base import ChatMessage, ChatProvider, Done, Error, StreamSink, Text, Timeouts

DEFAULT_BASE_URL = "http://127.0.0.1:11434"


class OllamaProvider(ChatProvider):
    name = "local"

    def __init__(self, client: httpx.AsyncClient, model: str, base_url: Optional[str] = None,
                 timeouts: Optional[Timeouts] = None, env: Optional[Mapping[str, str]] = None):
        super().__init__(client, model, timeouts)
        env = os.environ if env is None else env
        self.base_url = (env.get("OLLAMA_BASE_URL") or base_url or DEFAULT_BASE_URL).rstrip("/")

    @property
    def url(self) -> str:
        return f"{self.base_url}/api/chat"

    def build_request(self, messages: List[ChatMessage], stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
        }

    def status_error(self, response: httpx.Response) -> UpstreamFailure:
        return UpstreamFailure(f"ollama error: {response.status_code}", response.text[:800],
                               status=response.status_code)

    async def generate(self, messages: List[ChatMessage]) -> str:
        response = await self.post_json(self.url, self.build_request(messages, False))
        if not response.is_success:
            raise self.status_error(response)
        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise UpstreamFailure("ollama returned invalid JSON", str(e)) from e
        return (data.get("message") or {}).get("content") or ""

    async def stream(self, messages: List[ChatMessage], sink: StreamSink,
                     tools: Optional[List[Dict[str, Any]]] = None) -> None:
        response = await self.open_stream(self.url, self.build_request(messages, True))
        try:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    data = orjson.loads(line)
                except orjson.JSONDecodeError as e:
                    await sink.send(Error(f"Failed to parse Ollama stream: {e}"))
                    return
                content = (data.get("message") or {}).get("content")
                if content:
                    await sink.send(Text(content))
                if data.get("done"):
                    await sink.send(Done(data.get("done_reason")))
                    return
        except httpx.TimeoutException as e:
            raise Timeout("local stream stalled", str(e)) from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"stream read error: {e}") from e
        finally:
            await response.aclose()

        await sink.send(Done())
