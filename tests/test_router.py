"""
Tests for ProviderRouter — ordered failover with a single terminal chunk

These tests validate:
- Pre-stream failures fall through to the next provider
- Mid-stream failures end with an Error and no second provider
- Exhausting every provider yields exactly one Error chunk
- Tools are only offered to providers that support them
- A closed sink stops the stream quietly
- Unexpected adapter exceptions fail over or end with one Error
"""

import asyncio

import httpx
import orjson
import pytest

from little_helper.config import ModelSettings, ProviderAuth
from little_helper.errors import UpstreamFailure
from little_helper.providers.base import ChatMessage, Done, Error, StreamSink, Text
from little_helper.providers.router import ProviderRouter
from tests.factories import anthropic_text_stream, mock_transport, sse_body

OPENAI = "api.openai.com"
ANTHROPIC = "api.anthropic.com"
GEMINI = "generativelanguage.googleapis.com"
LOCAL = "127.0.0.1"


def settings(*preference, keys=True) -> ModelSettings:
    auth = ProviderAuth(api_key="k") if keys else ProviderAuth()
    return ModelSettings(provider_preference=list(preference), openai_auth=auth,
                         anthropic_auth=auth, gemini_auth=auth)


def sse(body: bytes) -> httpx.Response:
    return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})


def stream_chunks(model_settings, routes, sink=None, **kwargs):
    """Run generate_stream and return everything the consumer received."""
    async def go():
        async with ProviderRouter(model_settings, transport=mock_transport(routes), env={}) as router:
            target = sink or StreamSink()
            await router.generate_stream([ChatMessage.user("hi")], target, **kwargs)
            return target.drain()
    return asyncio.run(go())


class TestFailover:
    """Ordered failover before the first chunk."""

    def test_failover_on_503(self):
        """openai answers 503, anthropic streams: only anthropic's chunks arrive."""
        chunks = stream_chunks(settings("openai", "anthropic"), {
            OPENAI: httpx.Response(503, text="overloaded"),
            ANTHROPIC: sse(anthropic_text_stream("Hi")),
        })
        assert chunks == [Text("Hi"), Done("end_turn")]

    def test_missing_credentials_are_skipped(self):
        """A provider without a key is passed over without a request."""
        calls = []

        def local(request):
            calls.append(request.url.path)
            return httpx.Response(200, content=b'{"message": {"content": "ok"}, "done": true}\n')

        chunks = stream_chunks(settings("openai", "local", keys=False), {LOCAL: local})
        assert chunks == [Text("ok"), Done()]
        assert calls == ["/api/chat"]

    def test_connection_error_falls_through(self):
        """An unreachable host is a pre-stream failure."""
        chunks = stream_chunks(settings("local", "anthropic"), {
            ANTHROPIC: sse(anthropic_text_stream("from anthropic")),
        })
        assert chunks[0] == Text("from anthropic")

    def test_all_providers_fail_single_error(self):
        """Every provider failing yields exactly one terminal Error."""
        chunks = stream_chunks(settings("openai", "anthropic"), {
            OPENAI: httpx.Response(500, text="a"),
            ANTHROPIC: httpx.Response(500, text="b"),
        })
        assert len(chunks) == 1
        assert isinstance(chunks[0], Error)
        assert chunks[0].message.startswith("anthropic error: 500")

    def test_empty_preference(self):
        """No providers configured is a single Error."""
        chunks = stream_chunks(settings(), {})
        assert chunks == [Error("No providers configured")]


class TestMidStream:
    """Failures after chunks were delivered."""

    def test_mid_stream_failure_does_not_fail_over(self):
        """A read error after the first Text ends with Error; openai is never called."""
        called = []

        async def broken_body():
            yield sse_body({"type": "content_block_delta", "index": 0,
                            "delta": {"type": "text_delta", "text": "Hal"}})
            raise httpx.ReadError("connection reset")

        def openai(request):
            called.append(request)
            return sse(sse_body("[DONE]"))

        chunks = stream_chunks(settings("anthropic", "openai"), {
            ANTHROPIC: lambda request: httpx.Response(200, content=broken_body()),
            OPENAI: openai,
        })

        assert chunks[0] == Text("Hal")
        assert isinstance(chunks[1], Error)
        assert chunks[1].message.startswith("stream read error")
        assert len(chunks) == 2
        assert called == []

    def test_stream_without_terminal_event_gets_done(self):
        """A body that ends without message_stop still ends with Done."""
        body = sse_body({"type": "content_block_delta", "index": 0,
                         "delta": {"type": "text_delta", "text": "x"}})
        chunks = stream_chunks(settings("anthropic"), {ANTHROPIC: sse(body)})
        assert chunks == [Text("x"), Done()]

    def test_closed_sink_stops_quietly(self):
        """A consumer that closed the sink receives nothing and no error is raised."""
        sink = StreamSink()
        sink.close()
        chunks = stream_chunks(settings("anthropic"), {ANTHROPIC: sse(anthropic_text_stream("x"))},
                               sink=sink)
        assert chunks == []


class TestTools:
    """Tool definitions are offered only where supported."""

    def _capture(self, host, response):
        bodies = []

        def handler(request):
            bodies.append(orjson.loads(request.content))
            return response
        return bodies, {host: handler}

    def test_tools_offered_to_openai(self):
        """enable_tools adds function tools to an OpenAI request."""
        bodies, routes = self._capture(OPENAI, sse(sse_body("[DONE]")))
        stream_chunks(settings("openai"), routes, enable_tools=True)
        names = [tool["function"]["name"] for tool in bodies[0]["tools"]]
        assert names == ["web_search", "bash_execute", "file_preview"]

    def test_tools_not_offered_to_gemini(self):
        """Gemini requests never carry tools."""
        body = sse_body({"candidates": [{"content": {"parts": [{"text": "ok"}]}, "finishReason": "STOP"}]})
        bodies, routes = self._capture(GEMINI, sse(body))
        chunks = stream_chunks(settings("gemini"), routes, enable_tools=True)
        assert "tools" not in bodies[0]
        assert chunks == [Text("ok"), Done("STOP")]

    def test_custom_tools(self):
        """Explicit tool definitions replace the built-in set."""
        custom = [{"name": "fuzzy_search", "description": "find",
                   "input_schema": {"type": "object", "properties": {}}}]
        bodies, routes = self._capture(ANTHROPIC, sse(anthropic_text_stream("x")))
        stream_chunks(settings("anthropic"), routes, enable_tools=True, tools=custom)
        assert bodies[0]["tools"] == custom


class TestGenerateAndStatus:
    """Non-streaming generate and provider_status."""

    def test_generate_fails_over(self):
        """generate returns the first successful provider's text."""
        routes = {
            OPENAI: httpx.Response(503, text="busy"),
            ANTHROPIC: httpx.Response(200, json={"content": [{"type": "text", "text": "hello"}]}),
        }

        async def go():
            async with ProviderRouter(settings("openai", "anthropic"),
                                      transport=mock_transport(routes), env={}) as router:
                return await router.generate([ChatMessage.user("hi")])

        assert asyncio.run(go()) == "hello"

    def test_generate_raises_last_error(self):
        """When every provider fails, the last failure is raised."""
        routes = {OPENAI: httpx.Response(401, text="nope")}

        async def go():
            async with ProviderRouter(settings("openai"), transport=mock_transport(routes),
                                      env={}) as router:
                return await router.generate([ChatMessage.user("hi")])

        with pytest.raises(UpstreamFailure, match="openai error: 401"):
            asyncio.run(go())

    def test_provider_status(self):
        """Settings keys, environment keys and local are all reported."""
        model = ModelSettings(provider_preference=["anthropic", "openai", "gemini", "local"],
                              anthropic_auth=ProviderAuth(api_key="k"))
        router = ProviderRouter(model, env={"OPENAI_API_KEY": "env-key"})
        try:
            assert router.provider_status() == {
                "anthropic": True, "openai": True, "gemini": False, "local": True,
            }
        finally:
            asyncio.run(router.aclose())


class TestUnexpectedPayloads:
    """Adapter exceptions outside the error taxonomy still end the stream once."""

    BROKEN_DELTA = {"type": "content_block_delta", "index": 0, "delta": "oops"}

    def test_broken_event_before_output_fails_over(self):
        """A payload the adapter cannot handle counts as a pre-stream failure."""
        chunks = stream_chunks(settings("anthropic", "openai"), {
            ANTHROPIC: sse(sse_body(self.BROKEN_DELTA)),
            OPENAI: sse(sse_body({"choices": [{"delta": {"content": "ok"}}]}, "[DONE]")),
        })
        assert chunks == [Text("ok"), Done()]

    def test_broken_event_after_output_is_error(self):
        """After the first chunk, the same failure becomes one terminal Error."""
        body = sse_body({"type": "content_block_delta", "index": 0,
                         "delta": {"type": "text_delta", "text": "Hal"}},
                        self.BROKEN_DELTA)
        chunks = stream_chunks(settings("anthropic", "openai"), {ANTHROPIC: sse(body)})
        assert chunks[0] == Text("Hal")
        assert len(chunks) == 2
        assert isinstance(chunks[1], Error)
        assert chunks[1].message.startswith("anthropic sent a response that could not be handled")

    def test_broken_event_from_every_provider(self):
        """When nothing else is left, exactly one Error arrives."""
        chunks = stream_chunks(settings("anthropic"), {ANTHROPIC: sse(sse_body(self.BROKEN_DELTA))})
        assert len(chunks) == 1
        assert isinstance(chunks[0], Error)

    def test_malformed_openai_choice(self):
        """A non-object choice is skipped and the stream still terminates once."""
        body = sse_body({"choices": ["oops"]}, {"choices": [{"delta": {"content": "ok"}}]}, "[DONE]")
        chunks = stream_chunks(settings("openai"), {OPENAI: sse(body)})
        assert chunks == [Text("ok"), Done()]
