"""
Skill Events — Progress channel for skill executions

Per execution id the order is Started, Progress*, then exactly one of
Completed, Failed or Timeout. Emission never blocks and never raises: a full
or closed channel drops the event.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class SkillEventType(Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def terminal(self) -> bool:
        return self in (SkillEventType.COMPLETED, SkillEventType.FAILED, SkillEventType.TIMEOUT)


@dataclass
class SkillEvent:
    type: SkillEventType
    execution_id: str
    skill_id: Optional[str] = None
    mode: Optional[str] = None
    message: Optional[str] = None
    percent: Optional[int] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def started(cls, execution_id: str, skill_id: str, mode: str) -> 'SkillEvent':
        return cls(SkillEventType.STARTED, execution_id, skill_id=skill_id, mode=mode)

    @classmethod
    def progress(cls, execution_id: str, message: str,
                 percent: Optional[int] = None) -> 'SkillEvent':
        return cls(SkillEventType.PROGRESS, execution_id, message=message, percent=percent)

    @classmethod
    def completed(cls, execution_id: str, duration_ms: int) -> 'SkillEvent':
        return cls(SkillEventType.COMPLETED, execution_id, duration_ms=duration_ms)

    @classmethod
    def failed(cls, execution_id: str, error: str, duration_ms: int) -> 'SkillEvent':
        return cls(SkillEventType.FAILED, execution_id, error=error, duration_ms=duration_ms)

    @classmethod
    def timed_out(cls, execution_id: str, duration_ms: int) -> 'SkillEvent':
        return cls(SkillEventType.TIMEOUT, execution_id, duration_ms=duration_ms)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type.value,
            "execution_id": self.execution_id,
            "timestamp": self.timestamp.isoformat(),
        }
        for key in ("skill_id", "mode", "message", "percent", "error", "duration_ms"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class EventChannel:
    """
    Non-blocking event queue.

    Usage:
        events = EventChannel()
        executor = SkillExecutor(registry, events=events)
        ...
        for event in events.drain():
            render(event)
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[SkillEvent]" = asyncio.Queue(maxsize)
        self._closed = False
        self.dropped = 0

    def emit(self, event: SkillEvent) -> None:
        if self._closed:
            self.dropped += 1
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Skill event dropped, channel full: %s", event.type.value)

    async def get(self) -> SkillEvent:
        return await self._queue.get()

    def drain(self) -> List[SkillEvent]:
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        """Consumer side: stop receiving."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
