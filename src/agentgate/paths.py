"""Default filesystem locations."""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parent

CONFIG_FILENAME = "agentgate.json"


def agentgate_home() -> Path:
    env_home = os.environ.get("AGENTGATE_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path.cwd() / ".agentgate"


def history_path_default() -> Path:
    return agentgate_home() / "console_history"


def config_path_default(workspace: Path | None = None) -> Path:
    return (workspace or Path.cwd()) / CONFIG_FILENAME


__all__ = [
    "PACKAGE_ROOT",
    "CONFIG_FILENAME",
    "agentgate_home",
    "history_path_default",
    "config_path_default",
]
