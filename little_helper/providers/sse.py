"""
SSE — Incremental server-sent-events parser

Events are blank-line separated blocks of `event:` and `data:` lines.
Bytes may arrive split anywhere (including inside a UTF-8 sequence); the
parser buffers until a block is complete. Blocks without data are dropped,
as are id:, retry: and comment lines.
"""

import codecs
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

import httpx

from ..errors import Timeout, UpstreamFailure


@dataclass
class SseEvent:
    data: str
    event: Optional[str] = None


class SseParser:
    def __init__(self):
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes) -> List[SseEvent]:
        """Add raw bytes; return every event completed by them."""
        # a CRLF can straddle two chunks
        self._buffer = (self._buffer + self._decoder.decode(chunk)).replace("\r\n", "\n")
        events = []
        while True:
            boundary = self._buffer.find("\n\n")
            if boundary == -1:
                break
            block = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + 2:]
            event = parse_block(block)
            if event is not None:
                events.append(event)
        return events


def parse_block(block: str) -> Optional[SseEvent]:
    event_type = None
    data_lines = []
    for line in block.split("\n"):
        if line.startswith("event:"):
            event_type = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].lstrip(" "))
    if not data_lines:
        return None
    return SseEvent(data="\n".join(data_lines), event=event_type)


async def iter_events(response: httpx.Response, provider: str) -> AsyncIterator[SseEvent]:
    """Parse a streaming response body, mapping read failures to helper errors."""
    parser = SseParser()
    try:
        async for chunk in response.aiter_bytes():
            for event in parser.feed(chunk):
                yield event
    except httpx.TimeoutException as e:
        raise Timeout(f"{provider} stream stalled", str(e)) from e
    except httpx.HTTPError as e:
        raise UpstreamFailure(f"stream read error: {e}") from e
