"""
Skill Types — What a skill is, what it receives and what it returns

- Skill: named capability with a permission class and supported modes
- SkillInput / SkillOutput: request and result payloads
- SkillContext: per-session state handed to every execution
  (mode, session approvals, services, progress reporting, command execution)
- SkillExecution: record of one invocation, always returned, never raised
"""

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..core.file_ops import ActionKind, FileAction
from ..errors import HelperError, InvalidInput
from .safety import validate_command
from .shell import CommandResult, execute_command


class PermissionLevel(Enum):
    SAFE = "safe"              # runs without confirmation
    SENSITIVE = "sensitive"    # needs per-session approval while the user permission is Ask


class Permission(Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    ASK = "ask"


class Mode(Enum):
    FIND = "find"
    FIX = "fix"
    RESEARCH = "research"
    DATA = "data"
    CONTENT = "content"
    BUILD = "build"

    @property
    def display_name(self) -> str:
        return self.value.title()

    @classmethod
    def all(cls) -> Tuple['Mode', ...]:
        return tuple(cls)


class ExecutionStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ResultType(Enum):
    TEXT = "text"
    FILES = "files"
    DATA = "data"
    MIXED = "mixed"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Input / output payloads
# =============================================================================

@dataclass
class SkillInput:
    query: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    context_files: List[Path] = field(default_factory=list)
    conversation: List[str] = field(default_factory=list)

    @classmethod
    def from_query(cls, query: str) -> 'SkillInput':
        return cls(query=query)

    def with_param(self, key: str, value: Any) -> 'SkillInput':
        self.params[key] = value
        return self

    def with_file(self, path: Path) -> 'SkillInput':
        self.context_files.append(Path(path))
        return self

    def param_or_query(self, key: str) -> str:
        """String parameter `key`, falling back to the trimmed query."""
        value = self.params.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return self.query.strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "params": self.params,
            "context_files": [str(p) for p in self.context_files],
            "conversation": list(self.conversation),
        }


@dataclass
class FileResult:
    path: Path
    action: ActionKind
    from_path: Optional[Path] = None
    preview: Optional[str] = None

    @classmethod
    def from_action(cls, action: FileAction, preview: Optional[str] = None) -> 'FileResult':
        return cls(path=action.to_path, action=action.kind, from_path=action.from_path,
                   preview=preview)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": str(self.path), "action": self.action.value}
        if self.from_path is not None:
            data["from"] = str(self.from_path)
        if self.preview is not None:
            data["preview"] = self.preview
        return data


@dataclass
class Citation:
    text: str
    url: str
    accessed_at: datetime = field(default_factory=_now)
    verified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "url": self.url,
            "accessed_at": self.accessed_at.isoformat(),
            "verified": self.verified,
        }


@dataclass
class SuggestedAction:
    """A follow-up the host can offer as a button."""
    label: str
    skill_id: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "skill_id": self.skill_id, "params": self.params}


@dataclass
class SkillOutput:
    result_type: ResultType = ResultType.TEXT
    text: Optional[str] = None
    files: List[FileResult] = field(default_factory=list)
    data: Optional[Any] = None
    citations: List[Citation] = field(default_factory=list)
    suggested_actions: List[SuggestedAction] = field(default_factory=list)

    @classmethod
    def text_result(cls, message: str) -> 'SkillOutput':
        return cls(ResultType.TEXT, text=message)

    @classmethod
    def error(cls, message: str) -> 'SkillOutput':
        return cls(ResultType.ERROR, text=message)

    @classmethod
    def data_result(cls, message: str, data: Any) -> 'SkillOutput':
        return cls(ResultType.DATA, text=message, data=data)

    def with_citation(self, citation: Citation) -> 'SkillOutput':
        self.citations.append(citation)
        return self

    def with_file(self, file: FileResult) -> 'SkillOutput':
        self.files.append(file)
        if self.result_type == ResultType.TEXT:
            self.result_type = ResultType.MIXED
        return self

    def with_suggestion(self, suggestion: SuggestedAction) -> 'SkillOutput':
        self.suggested_actions.append(suggestion)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result_type": self.result_type.value,
            "text": self.text,
            "files": [f.to_dict() for f in self.files],
            "data": self.data,
            "citations": [c.to_dict() for c in self.citations],
            "suggested_actions": [s.to_dict() for s in self.suggested_actions],
        }


# =============================================================================
# Execution context
# =============================================================================

ProgressCallback = Callable[[str, Optional[int]], None]


@dataclass
class SkillServices:
    """Core components skills may use. Absent services are None."""
    index: Any = None          # FileIndex
    file_ops: Any = None       # SafeFileOps
    versions: Any = None       # VersionStore
    embeddings: Any = None     # EmbeddingClient
    audit: Any = None          # AuditLog


class SessionApprovals:
    """Thread-safe set of skill ids the user approved for this session."""

    def __init__(self, approved: Optional[Set[str]] = None):
        self._approved: Set[str] = set(approved or ())
        self._lock = threading.Lock()

    def __contains__(self, skill_id: str) -> bool:
        with self._lock:
            return skill_id in self._approved

    def add(self, skill_id: str) -> None:
        with self._lock:
            self._approved.add(skill_id)

    def discard(self, skill_id: str) -> None:
        with self._lock:
            self._approved.discard(skill_id)


class SkillContext:
    """
    Per-session context handed to every skill execution.

    Copies made by `bind_progress` share the session approvals, so an
    approval recorded anywhere in the session is visible everywhere.
    """

    def __init__(self, mode: Mode, data_dir: Path, working_dir: Optional[Path] = None,
                 services: Optional[SkillServices] = None,
                 allowed_dirs: Optional[List[str]] = None,
                 session_approvals: Optional[SessionApprovals] = None,
                 command_timeout: float = 60.0):
        self.mode = mode
        self.data_dir = Path(data_dir)
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.services = services or SkillServices()
        self.allowed_dirs = list(allowed_dirs or [])
        self.session_approvals = session_approvals or SessionApprovals()
        self.command_timeout = command_timeout
        self._progress: Optional[ProgressCallback] = None

    def is_session_approved(self, skill_id: str) -> bool:
        return skill_id in self.session_approvals

    def approve_session(self, skill_id: str) -> None:
        self.session_approvals.add(skill_id)

    def bind_progress(self, callback: ProgressCallback) -> 'SkillContext':
        bound = copy.copy(self)
        bound._progress = callback
        return bound

    def progress(self, message: str, percent: Optional[int] = None) -> None:
        """Report progress for the running execution (no-op outside one)."""
        if self._progress is not None:
            self._progress(message, percent)

    def resolve_path(self, text: str) -> Path:
        """Absolute paths as given (after ~ expansion); others relative to working_dir."""
        path = Path(text).expanduser()
        return path if path.is_absolute() else self.working_dir / path

    async def execute_command(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Run a shell command on behalf of a skill.

        Runs in working_dir. Raises CommandRejected when the command (or the
        working dir) fails validation against allowed_dirs.
        """
        validate_command(command, self.allowed_dirs, self.working_dir)
        return await execute_command(command, timeout or self.command_timeout,
                                     cwd=self.working_dir)


# =============================================================================
# Skill interface and execution record
# =============================================================================

class Skill(ABC):
    """
    Base class for skills.

    Subclasses set the class attributes and implement `execute`. They may
    raise HelperError subclasses; the executor records them as failures.
    """

    id: str = ""
    name: str = ""
    description: str = ""
    permission_level: PermissionLevel = PermissionLevel.SAFE
    modes: Tuple[Mode, ...] = ()

    @abstractmethod
    async def execute(self, input: SkillInput, ctx: SkillContext) -> SkillOutput:
        """Run the skill."""

    def validate_input(self, input: SkillInput) -> None:
        """Raise InvalidInput when the input cannot be executed."""

    def input_schema(self) -> Dict[str, Any]:
        """JSON schema offered to tool-calling models."""
        return {
            "type": "object",
            "properties": {"query": {"type": "string", "description": "What to do"}},
            "required": ["query"],
        }


def require_param(input: SkillInput, key: str) -> str:
    value = input.param_or_query(key)
    if not value:
        raise InvalidInput(f"Missing '{key}'")
    return value


@dataclass
class SkillExecution:
    skill_id: str
    mode: Mode
    input: SkillInput
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)
    output: Optional[SkillOutput] = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    duration_ms: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def complete(self, output: SkillOutput, duration_ms: int) -> 'SkillExecution':
        self.status = ExecutionStatus.COMPLETED
        self.output = output
        self.duration_ms = duration_ms
        return self

    def fail(self, error: HelperError, duration_ms: int = 0) -> 'SkillExecution':
        self.status = ExecutionStatus.FAILED
        self.error = error.message
        self.error_kind = error.kind.value
        self.duration_ms = duration_ms
        return self

    def timeout(self, duration_ms: int) -> 'SkillExecution':
        self.status = ExecutionStatus.TIMEOUT
        self.error = "Execution timed out"
        self.error_kind = "timeout"
        self.duration_ms = duration_ms
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "skill_id": self.skill_id,
            "mode": self.mode.value,
            "timestamp": self.timestamp.isoformat(),
            "input": self.input.to_dict(),
            "output": self.output.to_dict() if self.output else None,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "error_kind": self.error_kind,
        }


@dataclass
class BatchExecutionResult:
    successful: List[SkillExecution] = field(default_factory=list)
    failed: List[SkillExecution] = field(default_factory=list)
    total_duration_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    def add(self, execution: SkillExecution) -> None:
        (self.successful if execution.succeeded else self.failed).append(execution)
