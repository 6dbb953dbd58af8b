"""Logging for agentgate's entry points.

Every module logs through ``logging.getLogger(__name__)`` under the
``agentgate`` namespace. The console, the MCP server and the supervisor call
configure_logging once at startup; policy decisions, approvals, spawns and
commits then go to stderr or to the file given with ``--log-file``. The
level comes from ``--log-level`` or AGENTGATE_LOG_LEVEL. Model responses
and command lines are logged through abbreviate so one record stays on one
line.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVEL_ENV = "AGENTGATE_LOG_LEVEL"


def configure_logging(log_level: str | None = None, log_file: str | None = None) -> None:
    """Configure the ``agentgate`` logger.

    Does nothing unless a level (argument or AGENTGATE_LOG_LEVEL) or a log
    file is given, so the interactive console stays quiet by default.
    """
    level_name = (log_level or os.getenv(LOG_LEVEL_ENV) or "").upper()
    if not level_name and not log_file:
        return
    if not level_name:
        level_name = "INFO"
    level = logging.getLevelName(level_name)
    if isinstance(level, str):
        raise ValueError(f"Invalid log level: {level_name}")

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path)
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

    logger = logging.getLogger("agentgate")
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers = [handler]


def abbreviate(text: str | None, limit: int = 200) -> str:
    """Return a single-line, truncated preview string."""
    if text is None:
        return ""
    flattened = text.replace("\n", "\\n")
    if len(flattened) <= limit:
        return flattened
    return f"{flattened[:limit]}..."
