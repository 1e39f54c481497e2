"""
Audit Log — Append-only record of what the assistant did

Entries are immutable once written. One JSON object per line in
  <data-root>/little_helper/audit/<YYYY-MM-DD>.jsonl
When a day's file grows past the rotation threshold, writing continues in
<YYYY-MM-DD>.1.jsonl, <YYYY-MM-DD>.2.jsonl, ... Old files are never removed.

Appends never raise: a failed write is counted and logged, and the entry
still lands in the in-memory tail so recent activity stays visible.
"""

import logging
import re
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple

import orjson

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 8 * 1024 * 1024
DEFAULT_TAIL_SIZE = 256

_LOG_NAME = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:\.(\d+))?\.jsonl$")


class AuditEventType(Enum):
    SKILL_EXEC = "skill_exec"
    FILE_OP = "file_op"
    PERM_CHANGE = "perm_change"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuditEntry:
    event_type: AuditEventType
    action: str
    skill_id: Optional[str] = None
    file_path: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    user_visible: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)

    # -- constructors ---------------------------------------------------------

    @classmethod
    def skill_execution(cls, skill_id: str, action: str,
                        details: Optional[Dict[str, Any]] = None) -> 'AuditEntry':
        return cls(AuditEventType.SKILL_EXEC, action, skill_id=skill_id, details=details)

    @classmethod
    def file_operation(cls, path: Path, action: str, skill_id: Optional[str] = None,
                       details: Optional[Dict[str, Any]] = None) -> 'AuditEntry':
        return cls(AuditEventType.FILE_OP, action, skill_id=skill_id,
                   file_path=str(path), details=details)

    @classmethod
    def permission_change(cls, skill_id: str, old: str, new: str) -> 'AuditEntry':
        return cls(
            AuditEventType.PERM_CHANGE,
            f"Permission changed from {old} to {new}",
            skill_id=skill_id,
            details={"from": old, "to": new},
        )

    @classmethod
    def error(cls, message: str, skill_id: Optional[str] = None,
              details: Optional[Dict[str, Any]] = None) -> 'AuditEntry':
        return cls(AuditEventType.ERROR, message, skill_id=skill_id, details=details)

    def internal(self) -> 'AuditEntry':
        """Hide from the user-facing activity view."""
        self.user_visible = False
        return self

    # -- serialization --------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "skill_id": self.skill_id,
            "file_path": self.file_path,
            "action": self.action,
            "details": self.details,
            "user_visible": self.user_visible,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'AuditEntry':
        return cls(
            event_type=AuditEventType(d["event_type"]),
            action=d["action"],
            skill_id=d.get("skill_id"),
            file_path=d.get("file_path"),
            details=d.get("details"),
            user_visible=d.get("user_visible", True),
            id=d["id"],
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )


@dataclass
class AuditFilter:
    """
    Query filter. All set fields must match.

    `since` is inclusive, `until` exclusive. Results come newest first unless
    `oldest_first` is set; `limit` applies after ordering.
    """
    event_types: Optional[Set[AuditEventType]] = None
    skill_id: Optional[str] = None
    path_prefix: Optional[str] = None
    user_visible_only: bool = False
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None
    oldest_first: bool = False

    def matches(self, entry: AuditEntry) -> bool:
        if self.event_types is not None and entry.event_type not in self.event_types:
            return False
        if self.skill_id is not None and entry.skill_id != self.skill_id:
            return False
        if self.path_prefix is not None:
            if entry.file_path is None or not entry.file_path.startswith(str(self.path_prefix)):
                return False
        if self.user_visible_only and not entry.user_visible:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp >= self.until:
            return False
        return True


@dataclass
class AuditStats:
    total_entries: int = 0
    skill_executions: int = 0
    file_operations: int = 0
    permission_changes: int = 0
    errors: int = 0
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "skill_executions": self.skill_executions,
            "file_operations": self.file_operations,
            "permission_changes": self.permission_changes,
            "errors": self.errors,
            "oldest_entry": self.oldest_entry.isoformat() if self.oldest_entry else None,
            "newest_entry": self.newest_entry.isoformat() if self.newest_entry else None,
        }


class AuditLog:
    """
    JSONL audit store with per-day files, size rotation, and an in-memory tail.

    Single writer lock; reads go to disk and fall back to the tail.
    """

    def __init__(self, log_dir: Path, max_bytes: int = DEFAULT_MAX_BYTES,
                 tail_size: int = DEFAULT_TAIL_SIZE):
        self.log_dir = Path(log_dir)
        self.max_bytes = max_bytes
        self.failed_appends = 0
        self._lock = threading.Lock()
        self._tail: Deque[AuditEntry] = deque(maxlen=tail_size)
        self._active: Optional[Path] = None

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Audit directory %s unavailable: %s", self.log_dir, e)
        self._load_tail()

    # -- writing --------------------------------------------------------------

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Record an entry. Never raises."""
        with self._lock:
            self._tail.append(entry)
            try:
                line = orjson.dumps(entry.to_dict(), default=str) + b"\n"
                path = self._writable_file(entry.timestamp)
                with open(path, "ab") as f:
                    f.write(line)
            except (OSError, TypeError, ValueError) as e:
                self.failed_appends += 1
                logger.warning("Audit append failed (%d so far): %s", self.failed_appends, e)
        return entry

    def log_skill_execution(self, skill_id: str, action: str,
                            details: Optional[Dict[str, Any]] = None) -> AuditEntry:
        return self.append(AuditEntry.skill_execution(skill_id, action, details))

    def log_file_operation(self, path: Path, action: str,
                           skill_id: Optional[str] = None) -> AuditEntry:
        return self.append(AuditEntry.file_operation(path, action, skill_id))

    def log_permission_change(self, skill_id: str, old: str, new: str) -> AuditEntry:
        return self.append(AuditEntry.permission_change(skill_id, old, new))

    def log_error(self, message: str, skill_id: Optional[str] = None,
                  details: Optional[Dict[str, Any]] = None) -> AuditEntry:
        return self.append(AuditEntry.error(message, skill_id, details))

    def _writable_file(self, when: datetime) -> Path:
        day = when.astimezone(timezone.utc).strftime("%Y-%m-%d")
        active = self._active
        if active is None or not active.name.startswith(day):
            active = self._latest_for_day(day)

        if active.exists() and active.stat().st_size >= self.max_bytes:
            _, n = _parse_log_name(active.name) or (day, 0)
            active = self.log_dir / f"{day}.{n + 1}.jsonl"
            logger.info("Audit log rotated to %s", active.name)

        self._active = active
        return active

    def _latest_for_day(self, day: str) -> Path:
        candidates = [p for p in self.all_log_files() if p.name.startswith(day)]
        if candidates:
            return candidates[-1]
        return self.log_dir / f"{day}.jsonl"

    # -- reading --------------------------------------------------------------

    def all_log_files(self) -> List[Path]:
        """All log files, oldest first."""
        if not self.log_dir.is_dir():
            return []
        found: List[Tuple[Tuple[str, int], Path]] = []
        for path in self.log_dir.iterdir():
            key = _parse_log_name(path.name)
            if key is not None:
                found.append((key, path))
        return [path for _, path in sorted(found)]

    def _read_file(self, path: Path) -> List[AuditEntry]:
        entries = []
        with open(path, "rb") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditEntry.from_dict(orjson.loads(line)))
                except (orjson.JSONDecodeError, KeyError, ValueError, TypeError):
                    continue  # Skip malformed lines
        return entries

    def _read_all(self) -> List[AuditEntry]:
        try:
            entries: List[AuditEntry] = []
            for path in self.all_log_files():
                entries.extend(self._read_file(path))
        except OSError as e:
            logger.warning("Audit read failed, using in-memory tail: %s", e)
            entries = []

        # Entries whose write failed only exist in the tail
        seen = {e.id for e in entries}
        with self._lock:
            entries.extend(e for e in self._tail if e.id not in seen)
        return entries

    def _load_tail(self) -> None:
        files = self.all_log_files()
        loaded: List[AuditEntry] = []
        try:
            for path in reversed(files):
                loaded = self._read_file(path) + loaded
                if len(loaded) >= (self._tail.maxlen or 0):
                    break
        except OSError as e:
            logger.warning("Could not preload audit tail: %s", e)
        loaded.sort(key=lambda e: e.timestamp)
        self._tail.extend(loaded)

    def query(self, filter: Optional[AuditFilter] = None) -> List[AuditEntry]:
        """Entries matching the filter, newest first by default."""
        filter = filter or AuditFilter()
        matched = [e for e in self._read_all() if filter.matches(e)]
        matched.sort(key=lambda e: e.timestamp, reverse=not filter.oldest_first)
        if filter.limit is not None:
            matched = matched[:filter.limit]
        return matched

    def tail(self) -> List[AuditEntry]:
        """The in-memory buffer, oldest first."""
        with self._lock:
            return list(self._tail)

    def recent(self, count: int) -> List[AuditEntry]:
        """Most recent entries from memory, newest first."""
        with self._lock:
            return list(reversed(self._tail))[:count]

    def user_visible_entries(self, limit: int) -> List[AuditEntry]:
        return self.query(AuditFilter(user_visible_only=True, limit=limit))

    def entries_for_skill(self, skill_id: str, limit: int) -> List[AuditEntry]:
        return self.query(AuditFilter(skill_id=skill_id, limit=limit))

    def entries_for_path(self, path: Path, limit: int) -> List[AuditEntry]:
        return self.query(AuditFilter(path_prefix=str(path), limit=limit))

    def stats(self) -> AuditStats:
        entries = self.query(AuditFilter(oldest_first=True))
        return compute_stats(entries)


def compute_stats(entries: Iterable[AuditEntry]) -> AuditStats:
    stats = AuditStats()
    counters = {
        AuditEventType.SKILL_EXEC: "skill_executions",
        AuditEventType.FILE_OP: "file_operations",
        AuditEventType.PERM_CHANGE: "permission_changes",
        AuditEventType.ERROR: "errors",
    }
    for entry in entries:
        stats.total_entries += 1
        name = counters[entry.event_type]
        setattr(stats, name, getattr(stats, name) + 1)
        if stats.oldest_entry is None or entry.timestamp < stats.oldest_entry:
            stats.oldest_entry = entry.timestamp
        if stats.newest_entry is None or entry.timestamp > stats.newest_entry:
            stats.newest_entry = entry.timestamp
    return stats


def _parse_log_name(name: str) -> Optional[Tuple[str, int]]:
    match = _LOG_NAME.match(name)
    if not match:
        return None
    return match.group(1), int(match.group(2) or 0)
