"""
Skill Executor — Checked, timed, audited skill invocation

invoke(id, input, ctx):
  1. registry.check: NotFound -> ModeNotSupported -> PermissionDenied
  2. skill.validate_input: InvalidInput (anything else becomes Internal)
     (a failure in 1-2 returns a Failed record; no events are emitted)
  3. Started event, then execute under the timeout
  4. exactly one of Completed / Failed / Timeout

The returned SkillExecution is the only result channel: errors are recorded
in it, never raised. Every terminal record is written to the audit log.
"""

import asyncio
import logging
import time
from typing import List, Optional, Tuple

from ..core.audit import AuditLog
from ..errors import HelperError, Internal
from .base import BatchExecutionResult, SkillContext, SkillExecution, SkillInput
from .events import EventChannel, SkillEvent
from .registry import SkillRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_CONCURRENT = 4


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class SkillExecutor:
    """
    Runs skills from a registry.

    Usage:
        executor = SkillExecutor(registry, audit=audit, events=EventChannel())
        record = await executor.invoke("fuzzy_search", SkillInput.from_query("budget"), ctx)
    """

    def __init__(self, registry: SkillRegistry, audit: Optional[AuditLog] = None,
                 events: Optional[EventChannel] = None, timeout: float = DEFAULT_TIMEOUT,
                 max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        self.registry = registry
        self.audit = audit
        self.events = events
        self.timeout = timeout
        self.max_concurrent = max_concurrent

    def _emit(self, event: SkillEvent) -> None:
        if self.events is not None:
            self.events.emit(event)

    async def invoke(self, skill_id: str, input: SkillInput, ctx: SkillContext,
                     timeout: Optional[float] = None) -> SkillExecution:
        execution = SkillExecution(skill_id=skill_id, mode=ctx.mode, input=input)

        try:
            skill = self.registry.check(skill_id, ctx)
            skill.validate_input(input)
        except HelperError as e:
            execution.fail(e)
            logger.info("Skill %s rejected: %s", skill_id, e.message)
            self._record(execution)
            return execution
        except Exception as e:
            execution.fail(Internal(f"{type(e).__name__}: {e}"))
            logger.warning("Skill %s input check raised unexpectedly", skill_id, exc_info=True)
            self._record(execution)
            return execution

        self._emit(SkillEvent.started(execution.id, skill_id, ctx.mode.value))
        bound = ctx.bind_progress(
            lambda message, percent=None: self._emit(
                SkillEvent.progress(execution.id, message, percent)))

        start = time.monotonic()
        try:
            output = await asyncio.wait_for(skill.execute(input, bound), timeout or self.timeout)
        except asyncio.TimeoutError:
            execution.timeout(_elapsed_ms(start))
            self._emit(SkillEvent.timed_out(execution.id, execution.duration_ms))
            logger.warning("Skill %s timed out after %dms", skill_id, execution.duration_ms)
        except HelperError as e:
            execution.fail(e, _elapsed_ms(start))
            self._emit(SkillEvent.failed(execution.id, e.message, execution.duration_ms))
            logger.warning("Skill %s failed: %s", skill_id, e.message)
        except Exception as e:
            error = Internal(f"{type(e).__name__}: {e}")
            execution.fail(error, _elapsed_ms(start))
            self._emit(SkillEvent.failed(execution.id, error.message, execution.duration_ms))
            logger.warning("Skill %s raised unexpectedly", skill_id, exc_info=True)
        else:
            execution.complete(output, _elapsed_ms(start))
            self._emit(SkillEvent.completed(execution.id, execution.duration_ms))
            logger.info("Skill %s completed in %dms", skill_id, execution.duration_ms)

        self._record(execution)
        return execution

    def _record(self, execution: SkillExecution) -> None:
        if self.audit is None:
            return
        details = {
            "execution_id": execution.id,
            "mode": execution.mode.value,
            "status": execution.status.value,
            "duration_ms": execution.duration_ms,
        }
        if execution.error:
            details["error"] = execution.error
            details["error_kind"] = execution.error_kind
        self.audit.log_skill_execution(
            execution.skill_id, f"Skill {execution.status.value}", details)
        if not execution.succeeded:
            self.audit.log_error(execution.error or "Unknown error", execution.skill_id,
                                 {"execution_id": execution.id, "kind": execution.error_kind})

    # -- batches --------------------------------------------------------------

    async def execute_batch(self, items: List[Tuple[str, SkillInput]],
                            ctx: SkillContext) -> BatchExecutionResult:
        """Run one after another."""
        start = time.monotonic()
        result = BatchExecutionResult()
        for skill_id, input in items:
            result.add(await self.invoke(skill_id, input, ctx))
        result.total_duration_ms = _elapsed_ms(start)
        return result

    async def execute_concurrent(self, items: List[Tuple[str, SkillInput]], ctx: SkillContext,
                                 max_concurrent: Optional[int] = None) -> BatchExecutionResult:
        """Run up to max_concurrent at a time. Results are in completion order."""
        semaphore = asyncio.Semaphore(max(1, max_concurrent or self.max_concurrent))

        async def run(skill_id: str, input: SkillInput) -> SkillExecution:
            async with semaphore:
                return await self.invoke(skill_id, input, ctx)

        start = time.monotonic()
        result = BatchExecutionResult()
        tasks = [asyncio.ensure_future(run(skill_id, input)) for skill_id, input in items]
        for finished in asyncio.as_completed(tasks):
            result.add(await finished)
        result.total_duration_ms = _elapsed_ms(start)
        return result
