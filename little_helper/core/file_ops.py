"""
Safe File Ops — Mutations that never destroy data

There is deliberately no delete. Removal is `archive`, which moves the file
into <archive-root>/<YYYYMMDD_HHMMSS>/<basename>. A name already taken in
that folder gets a " (n)" suffix.

Every mutation:
- saves the file's present bytes to the version store first (if not already
  the latest stored version)
- records the new bytes as a version
- writes exactly one FileOp entry to the audit log

Preconditions that fail raise OperationBlocked (or NotFound); filesystem
errors are wrapped in Internal.
"""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..errors import Internal, NotFound, OperationBlocked
from .audit import AuditEntry, AuditLog
from .versions import FileVersion, VersionStore, VersionStores, atomic_write, content_hash

logger = logging.getLogger(__name__)


class ActionKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    MOVED = "moved"
    ARCHIVED = "archived"
    UNCHANGED = "unchanged"


@dataclass
class FileAction:
    """What a safe operation did."""
    kind: ActionKind
    to_path: Path
    from_path: Optional[Path] = None
    version: Optional[FileVersion] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "to": str(self.to_path),
            "from": str(self.from_path) if self.from_path else None,
            "version": self.version.version_number if self.version else None,
        }


class SafeFileOps:
    """
    The only write path skills get to the user's files.

    `versions` is a single VersionStore, or VersionStores routing each file
    to the store of its working root.
    """

    def __init__(self, archive_dir: Path, audit: AuditLog,
                 versions: Union[VersionStore, VersionStores]):
        self.archive_dir = Path(archive_dir)
        self.audit = audit
        self.versions = versions

    # -- reads ----------------------------------------------------------------

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def read_file(self, path: Path) -> bytes:
        path = Path(path)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(f"File not found: {path}") from e
        except OSError as e:
            raise Internal(f"Could not read {path}", str(e)) from e

    def read_text(self, path: Path) -> str:
        return self.read_file(path).decode("utf-8", errors="replace")

    # -- mutations ------------------------------------------------------------

    def create(self, path: Path, data: bytes, skill_id: Optional[str] = None) -> FileAction:
        """Create a new file. Fails if anything already exists at the path."""
        path = Path(path)
        if path.exists():
            raise OperationBlocked(f"{path} already exists. Use modify to change it.")
        self._write(path, data)
        version = self.versions.save_version(path)
        self.audit.append(AuditEntry.file_operation(path, "File created", skill_id))
        return FileAction(ActionKind.CREATED, path, version=version)

    def modify(self, path: Path, data: bytes, skill_id: Optional[str] = None) -> FileAction:
        """Replace an existing file's bytes."""
        path = Path(path)
        if not path.is_file():
            raise NotFound(f"File not found: {path}")
        return self._replace(path, data, skill_id)

    def write(self, path: Path, data: bytes, skill_id: Optional[str] = None) -> FileAction:
        """Create or replace. Unchanged bytes are a no-op."""
        path = Path(path)
        if not path.exists():
            return self.create(path, data, skill_id)
        if self.read_file(path) == data:
            return FileAction(ActionKind.UNCHANGED, path)
        return self._replace(path, data, skill_id)

    def append(self, path: Path, data: bytes, skill_id: Optional[str] = None) -> FileAction:
        """Append bytes, creating the file when missing."""
        path = Path(path)
        if not path.exists():
            return self.create(path, data, skill_id)
        return self._replace(path, self.read_file(path) + data, skill_id)

    def move(self, source: Path, destination: Path,
             skill_id: Optional[str] = None) -> FileAction:
        """
        Move a file. The destination must not exist; archive it first.

        The source's history is carried over to the destination.
        """
        source, destination = Path(source), Path(destination)
        if not source.is_file():
            raise NotFound(f"File not found: {source}")
        if destination.exists():
            raise OperationBlocked(
                f"{destination} already exists. Archive it first, then move."
            )

        self._ensure_saved(source)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(destination))
        except OSError as e:
            raise Internal(f"Could not move {source} to {destination}", str(e)) from e

        self.versions.link_history(source, destination)
        version = self.versions.save_version(destination, f"Moved from {source}")

        self.audit.append(AuditEntry.file_operation(
            destination, f"File moved from {source}", skill_id))
        logger.info("Moved %s -> %s", source, destination)
        return FileAction(ActionKind.MOVED, destination, from_path=source, version=version)

    def archive(self, path: Path, skill_id: Optional[str] = None) -> FileAction:
        """Move a file into a fresh timestamped archive folder."""
        return self._archive(Path(path), self.archive_dir / _stamp(), skill_id)

    def archive_to(self, path: Path, subdir: str, skill_id: Optional[str] = None) -> FileAction:
        """Archive under a named folder: <archive-root>/<subdir>/<timestamp>/<basename>."""
        return self._archive(Path(path), self.archive_dir / subdir / _stamp(), skill_id)

    def copy_file(self, source: Path, destination: Path,
                  skill_id: Optional[str] = None) -> FileAction:
        """Copy to a new path. The destination must not exist."""
        source, destination = Path(source), Path(destination)
        if not source.is_file():
            raise NotFound(f"File not found: {source}")
        if destination.exists():
            raise OperationBlocked(f"{destination} already exists. Archive it first.")
        return self.create(destination, self.read_file(source), skill_id)

    def create_dir(self, path: Path) -> Path:
        path = Path(path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise Internal(f"Could not create {path}", str(e)) from e
        return path

    # -- internals ------------------------------------------------------------

    def _archive(self, path: Path, folder: Path, skill_id: Optional[str]) -> FileAction:
        if not path.is_file():
            raise NotFound(f"File not found: {path}")

        target = _free_name(folder, path.name)
        version = self.versions.save_version(path, f"Archived {path.name}")
        try:
            folder.mkdir(parents=True, exist_ok=True)
            shutil.move(str(path), str(target))
        except OSError as e:
            raise Internal(f"Could not archive {path}", str(e)) from e

        self.audit.append(AuditEntry.file_operation(
            path, f"File archived to {target}", skill_id, details={"archived_to": str(target)}))
        logger.info("Archived %s -> %s", path, target)
        return FileAction(ActionKind.ARCHIVED, target, from_path=path, version=version)

    def _replace(self, path: Path, data: bytes, skill_id: Optional[str]) -> FileAction:
        self._ensure_saved(path)
        self._write(path, data)
        version = self.versions.save_version(path)
        self.audit.append(AuditEntry.file_operation(path, "File modified", skill_id))
        return FileAction(ActionKind.MODIFIED, path, version=version)

    def _ensure_saved(self, path: Path) -> None:
        """Store the present bytes unless they are already the latest version."""
        if self.versions.latest_ref(path) != content_hash(self.read_file(path)):
            self.versions.save_version(path)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        try:
            atomic_write(path, data)
        except OSError as e:
            raise Internal(f"Could not write {path}", str(e)) from e


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def _free_name(folder: Path, name: str) -> Path:
    """`folder/name`, or `folder/stem (n)suffix` for the first n not taken."""
    target = folder / name
    stem, suffix = Path(name).stem, Path(name).suffix
    n = 1
    while target.exists():
        target = folder / f"{stem} ({n}){suffix}"
        n += 1
    return target
