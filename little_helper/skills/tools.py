"""
Skill Tools — Bridge between model tool calls and the skill runtime

Registry skills are offered to tool-capable providers in the
{name, description, input_schema} shape. A completed tool call from the
stream becomes a skill invocation through the executor, so every check
(mode, permission, validation) still applies.
"""

from typing import Any, Dict, List

from ..providers.base import ToolUseComplete
from .base import Mode, SkillContext, SkillExecution, SkillInput
from .executor import SkillExecutor
from .registry import SkillRegistry


def tool_definitions(registry: SkillRegistry, mode: Mode) -> List[Dict[str, Any]]:
    """Tool definitions for every skill available in `mode`."""
    return [
        {
            "name": skill.id,
            "description": skill.description,
            "input_schema": skill.input_schema(),
        }
        for skill in registry.for_mode(mode)
    ]


def tool_input(arguments: Dict[str, Any]) -> SkillInput:
    """Tool arguments become params; a "query" argument is also the query text."""
    params = dict(arguments or {})
    query = params.get("query")
    return SkillInput(query=query if isinstance(query, str) else "", params=params)


async def dispatch_tool_call(chunk: ToolUseComplete, executor: SkillExecutor,
                             ctx: SkillContext) -> SkillExecution:
    return await executor.invoke(chunk.name, tool_input(chunk.input), ctx)


def tool_result_text(execution: SkillExecution) -> str:
    """Text to hand back to the model as the tool result."""
    if not execution.succeeded:
        return f"Error ({execution.error_kind}): {execution.error}"
    output = execution.output
    if output is None or not output.text:
        return "Done."
    return output.text
