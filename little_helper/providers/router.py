"""
Provider Router — Ordered failover across chat providers

Providers are tried in `provider_preference` order. Any failure before the
first chunk reaches the consumer (missing credentials, connection error,
non-2xx status) moves on to the next provider. Once a chunk has been
delivered, a failure becomes a terminal Error chunk and no other provider is
tried, so the consumer never sees two partial answers.

Every generate_stream call ends with exactly one terminal chunk (Done or
Error), unless the consumer closed the sink.
"""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..config import PROVIDERS, ModelSettings, RuntimeConfig
from ..errors import HelperError, UpstreamFailure
from .anthropic import AnthropicProvider
from .base import ChatMessage, ChatProvider, Done, Error, SinkClosed, StreamChunk, StreamSink, Timeouts
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai import OpenAIProvider
from .tools import builtin_tool_definitions

logger = logging.getLogger(__name__)


class _TrackingSink:
    """Wraps the consumer's sink to record whether anything was delivered."""

    def __init__(self, sink: StreamSink):
        self.sink = sink
        self.delivered = False
        self.terminated = False

    async def send(self, chunk: StreamChunk) -> None:
        if self.terminated:
            return
        await self.sink.send(chunk)
        self.delivered = True
        if chunk.terminal:
            self.terminated = True


class ProviderRouter:
    """
    Routes chat requests to the first provider that answers.

    Usage:
        router = ProviderRouter(settings.model, RuntimeConfig.load())
        text = await router.generate([ChatMessage.user("hi")])
    """

    def __init__(self, settings: ModelSettings, config: Optional[RuntimeConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 env: Optional[Mapping[str, str]] = None):
        self.settings = settings
        self.config = config or RuntimeConfig()
        self.env = os.environ if env is None else env
        self.timeouts = Timeouts(
            request=self.config.http_timeout,
            connect=self.config.connect_timeout,
            stream_read=self.config.stream_read_timeout,
        )
        self.client = httpx.AsyncClient(transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> 'ProviderRouter':
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    @property
    def preference(self) -> List[str]:
        return list(self.settings.provider_preference)

    def build_provider(self, name: str) -> ChatProvider:
        """Instantiate the adapter for `name`. Raises UpstreamFailure without credentials."""
        model = self.settings.model_for(name)
        if name == "openai":
            return OpenAIProvider(self.client, model, self.settings.openai_auth,
                                  base_url=self.settings.openai_base_url,
                                  timeouts=self.timeouts, env=self.env)
        if name == "anthropic":
            return AnthropicProvider(self.client, model, self.settings.anthropic_auth,
                                     timeouts=self.timeouts, env=self.env)
        if name == "gemini":
            return GeminiProvider(self.client, model, self.settings.gemini_auth,
                                  timeouts=self.timeouts, env=self.env)
        if name == "local":
            return OllamaProvider(self.client, model, base_url=self.config.ollama_url,
                                  timeouts=self.timeouts, env=self.env)
        raise UpstreamFailure(f"Unknown provider: {name}")

    def provider_status(self) -> Dict[str, bool]:
        """Which preferred providers have credentials (local never needs any)."""
        status = {}
        for name in self.preference:
            if name not in PROVIDERS:
                status[name] = False
                continue
            env_key = PROVIDERS[name]["env_key"]
            status[name] = (
                not env_key
                or not self.settings.auth_for(name).is_empty
                or bool(self.env.get(env_key))
            )
        return status

    async def generate(self, messages: List[ChatMessage]) -> str:
        """Full response text from the first provider that succeeds."""
        last_error: HelperError = UpstreamFailure("No providers configured")
        for name in self.preference:
            try:
                provider = self.build_provider(name)
                text = await provider.generate(messages)
            except HelperError as e:
                logger.warning("Provider %s failed: %s", name, e.message)
                last_error = e
                continue
            logger.debug("Provider %s answered (%d chars)", name, len(text))
            return text
        raise last_error

    async def generate_stream(self, messages: List[ChatMessage], sink: StreamSink,
                              enable_tools: bool = False,
                              tools: Optional[List[Dict[str, Any]]] = None) -> None:
        """
        Stream the answer into `sink`.

        Args:
            messages: Conversation turns
            sink: Consumer channel; closing it cancels the stream
            enable_tools: Offer tools to providers that support them
            tools: Tool definitions (defaults to the built-in set)
        """
        tracking = _TrackingSink(sink)
        last_error: HelperError = UpstreamFailure("No providers configured")

        for name in self.preference:
            try:
                provider = self.build_provider(name)
                offered = None
                if enable_tools and provider.supports_tools:
                    offered = tools if tools is not None else builtin_tool_definitions()
                await provider.stream(messages, tracking, offered)
            except SinkClosed:
                logger.debug("Consumer closed the stream from %s", name)
                return
            except HelperError as e:
                if tracking.delivered:
                    logger.warning("Provider %s failed mid-stream: %s", name, e.message)
                    await self._finish(tracking, Error(e.message))
                    return
                logger.warning("Provider %s failed before streaming: %s", name, e.message)
                last_error = e
                continue
            except Exception as e:
                message = f"{name} sent a response that could not be handled: {e}"
                if tracking.delivered:
                    logger.exception("Provider %s broke mid-stream", name)
                    await self._finish(tracking, Error(message))
                    return
                logger.warning("Provider %s broke before streaming: %s", name, e)
                last_error = UpstreamFailure(message)
                continue

            await self._finish(tracking, Done())
            return

        await self._finish(tracking, Error(last_error.message))

    @staticmethod
    async def _finish(tracking: _TrackingSink, chunk: StreamChunk) -> None:
        """Send the terminal chunk unless the adapter already did."""
        if tracking.terminated:
            return
        try:
            await tracking.send(chunk)
        except SinkClosed:
            pass
