"""
Little Helper utilities — Cross-cutting concerns

Reusable helpers shared by the core, the skill runtime, and the CLI.
"""

from .logs import configure_logging
from .paths import (
    expand_user_path, is_path_in_allowed_dirs, is_sensitive_path,
    normalize_allowed_dir_input,
)

__all__ = [
    'configure_logging',
    'expand_user_path', 'is_path_in_allowed_dirs', 'is_sensitive_path',
    'normalize_allowed_dir_input',
]
