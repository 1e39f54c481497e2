"""
Providers — Chat backends behind one streaming interface

- Router: ordered failover across providers
- Adapters: OpenAI, Anthropic, Gemini, local Ollama
- SSE: incremental event-stream parser shared by the HTTP adapters
"""

from .anthropic import AnthropicProvider
from .base import (
    ChatMessage, ChatProvider, Done, Error, SinkClosed, StreamChunk, StreamSink, Text,
    Timeouts, ToolInputDelta, ToolUseComplete, ToolUseStart,
)
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai import OpenAIProvider
from .router import ProviderRouter
from .sse import SseEvent, SseParser
from .tools import builtin_tool_definitions

__all__ = [
    # Router
    "ProviderRouter",
    # Adapters
    "ChatProvider", "AnthropicProvider", "OpenAIProvider", "GeminiProvider", "OllamaProvider",
    # Messages and chunks
    "ChatMessage", "StreamChunk", "Text", "ToolUseStart", "ToolInputDelta", "ToolUseComplete",
    "Done", "Error", "StreamSink", "SinkClosed", "Timeouts",
    # Streaming
    "SseEvent", "SseParser",
    "builtin_tool_definitions",
]
