"""
Path helpers — user-path expansion and access checks

Used by the command validator and by skills that accept paths from the model.
Sensitive locations (credential stores, keyrings, dotenv files) are refused
regardless of allowed_dirs.
"""

from pathlib import Path
from typing import Iterable, Optional, Union

PathLike = Union[str, Path]

# Directory names whose contents are credentials
SENSITIVE_DIRS = (".ssh", ".aws", ".gnupg", ".kube", ".docker")

# Path fragments (lowercased, forward slashes) that hold keyrings/keychains
SENSITIVE_FRAGMENTS = ("/library/keychains", "/.local/share/keyrings", "/.password-store")

# Basenames that hold secrets
SENSITIVE_FILES = (".env", ".npmrc", ".netrc", ".pypirc", ".git-credentials")


def expand_user_path(path: PathLike) -> Path:
    """Expand a leading ~ to the home directory."""
    text = str(path)
    if text == "~" or text.startswith("~/"):
        return Path(text).expanduser()
    return Path(text)


def is_sensitive_path(path: PathLike) -> bool:
    """True when the path points into a credential store or at a secrets file."""
    text = str(path).replace("\\", "/").lower()
    parts = [p for p in text.split("/") if p]

    if any(part in SENSITIVE_DIRS for part in parts):
        return True
    if any(fragment in text for fragment in SENSITIVE_FRAGMENTS):
        return True
    return bool(parts) and parts[-1] in SENSITIVE_FILES


def _resolve(path: Path) -> Path:
    try:
        return path.resolve()
    except (OSError, RuntimeError):
        return path.absolute()


def is_path_in_allowed_dirs(path: PathLike, allowed_dirs: Iterable[PathLike]) -> bool:
    """
    Check whether a path lies under one of the allowed directories.

    An empty allow-list allows nothing.
    """
    allowed = [d for d in allowed_dirs if str(d).strip()]
    if not allowed:
        return False

    candidate = _resolve(expand_user_path(path))
    for entry in allowed:
        root = _resolve(expand_user_path(entry))
        if candidate == root or root in candidate.parents:
            return True
    return False


def normalize_allowed_dir_input(text: str) -> Optional[Path]:
    """Turn user input into an existing absolute directory, or None."""
    if not text or not text.strip():
        return None
    candidate = _resolve(expand_user_path(text.strip()))
    if candidate.is_dir():
        return candidate
    return None


def strip_glob_prefix(path: str) -> str:
    """Cut a glob pattern back to the directory that precedes the first wildcard."""
    for i, ch in enumerate(path):
        if ch in "*?[]":
            prefix = path[:i]
            sep = max(prefix.rfind("/"), prefix.rfind("\\"))
            return prefix if sep <= 0 else prefix[:sep]
    return path
