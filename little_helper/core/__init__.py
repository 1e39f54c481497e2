"""Core components: audit log, version store, safe file ops, file index, preview tags."""

from .audit import AuditEntry, AuditEventType, AuditFilter, AuditLog, AuditStats
from .file_ops import ActionKind, FileAction, SafeFileOps
from .index import FileIndex, ScanStats, SearchFilter, SearchIntent, SearchResult
from .preview import PreviewKind, PreviewTag, parse_preview_tags, strip_preview_tags
from .versions import FileVersion, VersionStore, VersionStores

__all__ = [
    "AuditEntry", "AuditEventType", "AuditFilter", "AuditLog", "AuditStats",
    "ActionKind", "FileAction", "SafeFileOps",
    "FileIndex", "ScanStats", "SearchFilter", "SearchIntent", "SearchResult",
    "PreviewKind", "PreviewTag", "parse_preview_tags", "strip_preview_tags",
    "FileVersion", "VersionStore", "VersionStores",
]
