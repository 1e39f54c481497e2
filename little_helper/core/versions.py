"""
Version Store — Hidden, content-addressable per-file history

Layout under the working root:
    .little-helper/versions/
        objects/<ab>/<sha256>      one blob per distinct content
        history/<xxh64(key)>.json  {"path": key, "versions": [...]}

History is linear: each record points at its blob and at the previous
record's blob (parent). Version numbers are positions in that list, so they
are dense (1..N) by construction. The `current` flag is computed on read by
comparing the file's present bytes against stored blobs.

A missing or corrupt store reads as empty history and is re-created on the
next save.
"""

import hashlib
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import orjson
import xxhash

from ..config import versions_dir
from ..errors import CurrentMatches, Internal, NotFound

logger = logging.getLogger(__name__)


def format_size(size: int) -> str:
    """Human-readable byte count (one decimal above 1 KB)."""
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.1f} GB"
    if size >= mb:
        return f"{size / mb:.1f} MB"
    if size >= kb:
        return f"{size / kb:.1f} KB"
    return f"{size} B"


@dataclass
class FileVersion:
    """One saved state of a file."""
    version_number: int
    timestamp: datetime
    description: str
    size_bytes: int
    ref: str                        # blob hash
    parent_ref: Optional[str] = None
    is_current: bool = False

    def formatted_time(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d %H:%M")

    def relative_time(self, now: Optional[datetime] = None) -> str:
        """'just now', '5 minutes ago', 'yesterday', ... then the date."""
        now = now or datetime.now(timezone.utc)
        seconds = int((now - self.timestamp).total_seconds())
        if seconds < 60:
            return "just now"
        minutes = seconds // 60
        if minutes < 60:
            return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
        hours = minutes // 60
        if hours < 24:
            return "1 hour ago" if hours == 1 else f"{hours} hours ago"
        days = hours // 24
        if days < 30:
            return "yesterday" if days == 1 else f"{days} days ago"
        return self.formatted_time()

    def formatted_size(self) -> str:
        return format_size(self.size_bytes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_number": self.version_number,
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
            "size_bytes": self.size_bytes,
            "ref": self.ref,
            "parent_ref": self.parent_ref,
            "is_current": self.is_current,
        }


@dataclass
class VersionHistorySummary:
    file_path: str
    file_name: str
    total_versions: int
    first_version_time: Optional[datetime] = None
    current_version_time: Optional[datetime] = None


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class VersionStore:
    """
    Per-root version history.

    Single writer per root (guarded by a lock); distinct roots are independent.
    Paths under the root are keyed by their relative POSIX path, others by
    their absolute path.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self.store_dir = versions_dir(self.root)
        self._lock = threading.Lock()

    @property
    def objects_dir(self) -> Path:
        return self.store_dir / "objects"

    @property
    def history_dir(self) -> Path:
        return self.store_dir / "history"

    # -- public API -----------------------------------------------------------

    def save_version(self, path: Path, description: Optional[str] = None) -> FileVersion:
        """Snapshot the file's current bytes as the next version."""
        path = Path(path)
        data = self._read_file(path)

        with self._lock:
            self._ensure_store()
            key = self._key(path)
            records = self._load_history(key)
            ref = self._store_blob(data)

            if description is None:
                description = f"{'Created' if not records else 'Updated'} {path.name}"

            timestamp = datetime.now(timezone.utc)
            if records:
                last = datetime.fromisoformat(records[-1]["timestamp"])
                if timestamp <= last:
                    timestamp = last + timedelta(microseconds=1)

            record = {
                "ref": ref,
                "parent_ref": records[-1]["ref"] if records else None,
                "timestamp": timestamp.isoformat(),
                "description": description,
                "size_bytes": len(data),
            }
            records.append(record)
            self._write_history(key, records)

        logger.debug("Saved version %d of %s", len(records), key)
        return self._to_version(len(records), record, is_current=True)

    def list_versions(self, path: Path) -> List[FileVersion]:
        """All versions of the file, oldest first (version 1 first)."""
        path = Path(path)
        records = self._load_history(self._key(path))
        current_ref = self._current_ref(path)

        # Only the newest version holding the present bytes is current
        current_index = None
        if current_ref is not None:
            for i in range(len(records) - 1, -1, -1):
                if records[i]["ref"] == current_ref:
                    current_index = i
                    break

        return [
            self._to_version(i + 1, record, is_current=(i == current_index))
            for i, record in enumerate(records)
        ]

    def get_version(self, path: Path, version_number: int) -> FileVersion:
        versions = self.list_versions(path)
        if version_number < 1 or version_number > len(versions):
            raise NotFound(f"Version {version_number} of {Path(path).name} does not exist")
        return versions[version_number - 1]

    def read_version(self, path: Path, version_number: int) -> bytes:
        """Bytes stored for a given version."""
        return self._read_blob(self.get_version(path, version_number).ref)

    def latest_ref(self, path: Path) -> Optional[str]:
        records = self._load_history(self._key(Path(path)))
        return records[-1]["ref"] if records else None

    def restore_version(self, path: Path, version_number: int) -> Optional[FileVersion]:
        """
        Put a historical version back in place.

        The present bytes are saved as a new version first, then the file is
        replaced atomically. Returns that safety snapshot (None when the file
        was missing).

        Raises:
            NotFound: no such version
            CurrentMatches: the file already holds that version's bytes
        """
        path = Path(path)
        target = self.get_version(path, version_number)
        data = self._read_blob(target.ref)

        snapshot = None
        if path.exists():
            if content_hash(self._read_file(path)) == target.ref:
                raise CurrentMatches(
                    f"{path.name} already matches version {version_number}"
                )
            snapshot = self.save_version(
                path, f"Saved version of {path.name} before restoring version {version_number}"
            )

        atomic_write(path, data)
        logger.info("Restored %s to version %d", path, version_number)
        return snapshot

    def link_history(self, source: Path, destination: Path,
                     source_store: Optional['VersionStore'] = None) -> int:
        """
        Carry the source's history over to the destination path.

        `source_store` is the store holding the source's history when it
        lives under another root; its blobs are copied in. Only applies when
        the destination has no history of its own (keeps timestamps
        increasing). Returns the number of records copied.
        """
        src_store = source_store or self
        src_records = src_store._load_history(src_store._key(Path(source)))
        with self._lock:
            dst_key = self._key(Path(destination))
            if not src_records or self._load_history(dst_key):
                return 0
            self._ensure_store()
            if src_store is not self:
                for record in src_records:
                    self._store_blob(src_store._read_blob(record["ref"]))
            self._write_history(dst_key, [dict(r) for r in src_records])
            return len(src_records)

    def summary(self, path: Path) -> VersionHistorySummary:
        path = Path(path)
        versions = self.list_versions(path)
        current = next((v for v in versions if v.is_current), None)
        return VersionHistorySummary(
            file_path=str(path),
            file_name=path.name,
            total_versions=len(versions),
            first_version_time=versions[0].timestamp if versions else None,
            current_version_time=current.timestamp if current else None,
        )

    # -- storage --------------------------------------------------------------

    def _ensure_store(self) -> None:
        created = not self.store_dir.exists()
        self.objects_dir.mkdir(parents=True, exist_ok=True)
        self.history_dir.mkdir(parents=True, exist_ok=True)
        if created:
            _mark_hidden(self.store_dir.parent)

    def _key(self, path: Path) -> str:
        absolute = Path(os.path.abspath(path))
        try:
            return absolute.relative_to(self.root).as_posix()
        except ValueError:
            return absolute.as_posix()

    def _history_path(self, key: str) -> Path:
        return self.history_dir / f"{xxhash.xxh64(key.encode()).hexdigest()}.json"

    def _load_history(self, key: str) -> List[Dict[str, Any]]:
        path = self._history_path(key)
        if not path.exists():
            return []
        try:
            data = orjson.loads(path.read_bytes())
            if data.get("path") != key:
                return []  # hash collision with another path
            return list(data.get("versions", []))
        except (OSError, orjson.JSONDecodeError, AttributeError) as e:
            logger.warning("Version history for %s unreadable, treating as empty: %s", key, e)
            return []

    def _write_history(self, key: str, records: List[Dict[str, Any]]) -> None:
        payload = orjson.dumps({"path": key, "versions": records})
        try:
            atomic_write(self._history_path(key), payload)
        except OSError as e:
            raise Internal(f"Could not write version history for {key}", str(e)) from e

    def _store_blob(self, data: bytes) -> str:
        ref = content_hash(data)
        blob = self.objects_dir / ref[:2] / ref
        if not blob.exists():
            try:
                blob.parent.mkdir(parents=True, exist_ok=True)
                atomic_write(blob, data)
            except OSError as e:
                raise Internal("Could not store file version", str(e)) from e
        return ref

    def _read_blob(self, ref: str) -> bytes:
        blob = self.objects_dir / ref[:2] / ref
        try:
            return blob.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(f"Stored version {ref[:12]} is missing") from e
        except OSError as e:
            raise Internal("Could not read stored version", str(e)) from e

    def _current_ref(self, path: Path) -> Optional[str]:
        try:
            return content_hash(path.read_bytes())
        except OSError:
            return None

    @staticmethod
    def _read_file(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(f"File not found: {path}") from e
        except OSError as e:
            raise Internal(f"Could not read {path}", str(e)) from e

    @staticmethod
    def _to_version(number: int, record: Dict[str, Any], is_current: bool) -> FileVersion:
        return FileVersion(
            version_number=number,
            timestamp=datetime.fromisoformat(record["timestamp"]),
            description=record["description"],
            size_bytes=record["size_bytes"],
            ref=record["ref"],
            parent_ref=record.get("parent_ref"),
            is_current=is_current,
        )


class VersionStores:
    """
    One VersionStore per working root, opened on first use.

    A file's working root is the deepest configured root containing it (the
    allowed folders, for a host); files outside every root use their own
    folder. Offers the VersionStore API, routed by path.

    Usage:
        stores = VersionStores(settings.allowed_dirs)
        stores.save_version(Path("~/Documents/notes.txt").expanduser())
        # -> ~/Documents/.little-helper/versions/
    """

    def __init__(self, roots: Iterable[Union[str, Path]] = ()):
        self.roots = [Path(r).expanduser().resolve() for r in roots if str(r).strip()]
        self._stores: Dict[Path, VersionStore] = {}
        self._lock = threading.Lock()

    def root_for(self, path: Path) -> Path:
        absolute = Path(path).expanduser().resolve()
        containing = [r for r in self.roots if r == absolute or r in absolute.parents]
        if containing:
            return max(containing, key=lambda r: len(r.parts))
        return absolute.parent

    def store_for(self, path: Path) -> VersionStore:
        root = self.root_for(path)
        with self._lock:
            store = self._stores.get(root)
            if store is None:
                store = self._stores[root] = VersionStore(root)
            return store

    def save_version(self, path: Path, description: Optional[str] = None) -> FileVersion:
        return self.store_for(path).save_version(path, description)

    def list_versions(self, path: Path) -> List[FileVersion]:
        return self.store_for(path).list_versions(path)

    def get_version(self, path: Path, version_number: int) -> FileVersion:
        return self.store_for(path).get_version(path, version_number)

    def read_version(self, path: Path, version_number: int) -> bytes:
        return self.store_for(path).read_version(path, version_number)

    def latest_ref(self, path: Path) -> Optional[str]:
        return self.store_for(path).latest_ref(path)

    def restore_version(self, path: Path, version_number: int) -> Optional[FileVersion]:
        return self.store_for(path).restore_version(path, version_number)

    def summary(self, path: Path) -> VersionHistorySummary:
        return self.store_for(path).summary(path)

    def link_history(self, source: Path, destination: Path) -> int:
        return self.store_for(destination).link_history(
            source, destination, source_store=self.store_for(source))


def atomic_write(path: Path, data: bytes) -> None:
    """Write to a temp file in the same directory, then rename over the target."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def _mark_hidden(path: Path) -> None:
    """Dot-prefixed dirs are hidden on Unix; set the attribute on Windows."""
    if os.name != "nt":
        return
    try:
        import ctypes
        FILE_ATTRIBUTE_HIDDEN = 0x02
        ctypes.windll.kernel32.SetFileAttributesW(str(path), FILE_ATTRIBUTE_HIDDEN)
    except (AttributeError, OSError) as e:
        logger.debug("Could not hide %s: %s", path, e)
