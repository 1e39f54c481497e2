"""
Skills — Permissioned capabilities the assistant can invoke

- Types: Skill, SkillInput, SkillOutput, SkillContext, SkillExecution
- Registry: skills and user permissions
- Executor: checked, timed, audited invocation with progress events
- Safety / Shell: command validation and execution
- Builtin: search, index, version and organize skills
- Tools: model tool calls to skill invocations
"""

from .base import (
    BatchExecutionResult, Citation, ExecutionStatus, FileResult, Mode, Permission,
    PermissionLevel, ResultType, SessionApprovals, Skill, SkillContext, SkillExecution,
    SkillInput, SkillOutput, SkillServices, SuggestedAction,
)
from .builtin import builtin_skills, register_builtin_skills
from .events import EventChannel, SkillEvent, SkillEventType
from .executor import SkillExecutor
from .registry import SkillInfo, SkillRegistry
from .safety import CommandRejected, DangerLevel, classify_command, validate_command
from .shell import CommandResult, execute_command
from .tools import dispatch_tool_call, tool_definitions

__all__ = [
    # Types
    "Skill", "SkillInput", "SkillOutput", "SkillContext", "SkillServices", "SkillExecution",
    "SessionApprovals", "FileResult", "Citation", "SuggestedAction", "BatchExecutionResult",
    "Mode", "Permission", "PermissionLevel", "ResultType", "ExecutionStatus",
    # Registry and execution
    "SkillRegistry", "SkillInfo", "SkillExecutor",
    "EventChannel", "SkillEvent", "SkillEventType",
    # Commands
    "CommandRejected", "DangerLevel", "classify_command", "validate_command",
    "CommandResult", "execute_command",
    # Builtins and tools
    "builtin_skills", "register_builtin_skills", "tool_definitions", "dispatch_tool_call",
]
