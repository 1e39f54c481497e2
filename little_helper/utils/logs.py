"""
Logging setup for the library and the CLI.

Library modules only ever call logging.getLogger(__name__); hosts decide
where records go. configure_logging() is the default wiring used by the CLI.
"""

import logging
import os
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
ENV_LEVEL = "LH_LOG_LEVEL"

_HANDLER_NAME = "little_helper"


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Attach a stream handler to the package logger.

    Level priority: explicit argument, LH_LOG_LEVEL, WARNING.
    Calling this more than once only updates the level.
    """
    if level is None:
        level = os.environ.get(ENV_LEVEL, "WARNING")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    root = logging.getLogger("little_helper")
    root.setLevel(level)

    if not any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    return root
