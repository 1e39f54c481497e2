"""
Google Gemini adapter (generateContent / streamGenerateContent).

Gemini wants strictly alternating user/model turns that start with the user,
so messages are reshaped before sending:
  - system messages become `system_instruction`
  - "assistant" is sent as "model"; everything else as "user"
  - consecutive turns with the same role are merged
  - a leading model turn is dropped
  - a trailing model turn is followed by a "Continue." user turn
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx
import orjson

from ..config import ProviderAuth
from ..errors import InvalidInput, UpstreamFailure
from .base import (
    ChatMessage, ChatProvider, Done, StreamSink, Text, Timeouts, resolve_token, split_system,
)
from .sse import iter_events

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
RETRY_STATUSES = (429, 503)
MAX_ATTEMPTS = 4
MAX_ERROR_DETAIL = 800


def build_contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    """Map canonical turns to Gemini `contents`."""
    contents: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            continue
        role = "model" if message.role == "assistant" else "user"
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"][0]["text"] += "\n\n" + message.content
        else:
            contents.append({"role": role, "parts": [{"text": message.content}]})

    if contents and contents[0]["role"] == "model":
        contents.pop(0)
    if contents and contents[-1]["role"] == "model":
        contents.append({"role": "user", "parts": [{"text": "Continue."}]})
    return contents


def gemini_error(response: httpx.Response) -> UpstreamFailure:
    body = response.text
    if len(body) > MAX_ERROR_DETAIL:
        body = body[:MAX_ERROR_DETAIL] + "..."
    return UpstreamFailure(f"gemini error: {response.status_code} {body}".rstrip(),
                           status=response.status_code)


def candidate_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


class GeminiProvider(ChatProvider):
    name = "gemini"

    def __init__(self, client: httpx.AsyncClient, model: str, auth: Optional[ProviderAuth] = None,
                 timeouts: Optional[Timeouts] = None, env: Optional[Mapping[str, str]] = None,
                 retry_base_delay: float = 1.0):
        super().__init__(client, model, timeouts)
        self.token, self.use_oauth = resolve_token(auth, "GEMINI_API_KEY", "Gemini", env)
        self.retry_base_delay = retry_base_delay

    def url(self, stream: bool) -> str:
        base = f"{API_BASE}/{self.model}"
        if stream:
            url = f"{base}:streamGenerateContent?alt=sse"
            return url if self.use_oauth else f"{url}&key={self.token}"
        url = f"{base}:generateContent"
        return url if self.use_oauth else f"{url}?key={self.token}"

    def status_error(self, response: httpx.Response) -> UpstreamFailure:
        return gemini_error(response)

    def headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.use_oauth:
            headers["authorization"] = f"Bearer {self.token}"
        return headers

    def build_request(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        system, _ = split_system(messages)
        contents = build_contents(messages)
        if not contents:
            raise InvalidInput("No user messages to send to Gemini")
        body: Dict[str, Any] = {"contents": contents}
        if system.strip():
            body["system_instruction"] = {"parts": [{"text": system}]}
        return body

    async def generate(self, messages: List[ChatMessage]) -> str:
        body = self.build_request(messages)
        for attempt in range(MAX_ATTEMPTS):
            response = await self.post_json(self.url(False), body, self.headers())
            if response.status_code in RETRY_STATUSES and attempt < MAX_ATTEMPTS - 1:
                delay = self.retry_base_delay * (2 ** attempt)
                logger.info("Gemini returned %d, retrying in %.1fs", response.status_code, delay)
                await asyncio.sleep(delay)
                continue
            if not response.is_success:
                raise gemini_error(response)
            try:
                return candidate_text(orjson.loads(response.content))
            except (orjson.JSONDecodeError, AttributeError) as e:
                raise UpstreamFailure("gemini returned invalid JSON", str(e)) from e
        raise UpstreamFailure("gemini error: retries exhausted")

    async def stream(self, messages: List[ChatMessage], sink: StreamSink,
                     tools: Optional[List[Dict[str, Any]]] = None) -> None:
        response = await self.open_stream(self.url(True), self.build_request(messages), self.headers())

        stop_reason: Optional[str] = None
        try:
            async for event in iter_events(response, self.name):
                try:
                    data = orjson.loads(event.data)
                except orjson.JSONDecodeError:
                    continue
                text = candidate_text(data)
                if text:
                    await sink.send(Text(text))
                candidates = data.get("candidates") or []
                if candidates and candidates[0].get("finishReason"):
                    stop_reason = candidates[0]["finishReason"]
        finally:
            await response.aclose()

        await sink.send(Done(stop_reason))
