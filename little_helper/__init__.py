"""
Little Helper — Local knowledge retrieval and safe file mutation

Core of a desktop assistant: a searchable index of the user's files,
mutations that never lose data (versions, archive, audit), streaming chat
across several model providers, and a permissioned skill runtime.

Usage:
    from little_helper import AppPaths, AuditLog, SafeFileOps, SettingsManager, VersionStores

    paths = AppPaths.from_env().ensure()
    audit = AuditLog(paths.audit_dir)
    settings = SettingsManager(paths).load()
    ops = SafeFileOps(paths.archive_dir, audit, VersionStores(settings.allowed_dirs))
"""

__version__ = "0.1.0"

from .config import AppPaths, AppSettings, ModelSettings, RuntimeConfig, SettingsManager
from .core import (
    AuditEntry, AuditLog, FileIndex, SafeFileOps, SearchResult, VersionStore, VersionStores,
    parse_preview_tags,
)
from .errors import ErrorKind, HelperError
from .providers import ChatMessage, ProviderRouter, StreamSink
from .services import EmbeddingClient
from .skills import SkillContext, SkillExecutor, SkillInput, SkillRegistry

__all__ = [
    "__version__",
    # Configuration
    "AppPaths", "AppSettings", "ModelSettings", "RuntimeConfig", "SettingsManager",
    # Core
    "AuditEntry", "AuditLog", "VersionStore", "VersionStores", "SafeFileOps", "FileIndex",
    "SearchResult",
    "parse_preview_tags",
    # Errors
    "HelperError", "ErrorKind",
    # Providers and services
    "ProviderRouter", "ChatMessage", "StreamSink", "EmbeddingClient",
    # Skills
    "SkillRegistry", "SkillExecutor", "SkillContext", "SkillInput",
]
