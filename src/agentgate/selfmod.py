"""Self-modification controller.

Tracks whether an applied edit touched agentgate's own source or config and
turns that into a typed termination. The process never rebuilds or restarts
itself; it exits with ExitStatus.RESTART and the supervisor does the rest.

    NORMAL --own edit--> PENDING_RESTART --commit ok--> EXITING(RESTART)
                                         --commit failed--> EXITING(ERROR)
                                         --nothing to commit--> NORMAL
    NORMAL --quit--> EXITING(NORMAL)
    NORMAL --fatal error--> EXITING(ERROR)
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Iterable

from agentgate.core import ExitStatus, Termination

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    NORMAL = "normal"
    PENDING_RESTART = "pending-restart"
    EXITING = "exiting"


class SelfModificationController:
    """State machine for own-source edits and session termination."""

    def __init__(self, source_roots: Iterable[Path | str] = (), config_files: Iterable[Path | str] = ()):
        self.source_roots = [Path(p).resolve() for p in source_roots]
        self.config_files = [Path(p).resolve() for p in config_files]
        self.state = ControllerState.NORMAL
        self.pending: list[Path] = []
        self.termination: Termination | None = None

    def is_own_path(self, path: Path | str) -> bool:
        """Return True if the path is part of agentgate's own source or config."""
        resolved = Path(path).resolve()
        if resolved in self.config_files:
            return True
        return any(resolved == root or root in resolved.parents for root in self.source_roots)

    def note_edit(self, path: Path | str) -> bool:
        """Record an applied edit. Returns True if it was an own-source edit."""
        if self.state is ControllerState.EXITING or not self.is_own_path(path):
            return False
        self.pending.append(Path(path).resolve())
        if self.state is ControllerState.NORMAL:
            logger.info("self-modification pending path=%s", path)
        self.state = ControllerState.PENDING_RESTART
        return True

    @property
    def restart_pending(self) -> bool:
        return self.state is ControllerState.PENDING_RESTART

    @property
    def exiting(self) -> bool:
        return self.state is ControllerState.EXITING

    def clear_pending(self) -> None:
        """Drop a pending restart whose edits left nothing to commit."""
        if self.state is ControllerState.PENDING_RESTART:
            logger.info("self-modification cleared paths=%s", len(self.pending))
            self.pending.clear()
            self.state = ControllerState.NORMAL

    def commit_succeeded(self, commit: str = "") -> Termination:
        """The own-source change is committed; ask the supervisor to restart."""
        files = ", ".join(p.name for p in self.pending)
        reason = f"self-modification committed ({files})"
        if commit:
            reason += f" at {commit[:12]}"
        logger.info("restart requested reason=%s", reason)
        return self._exit(ExitStatus.RESTART, reason)

    def commit_failed(self, reason: str) -> Termination:
        """Finalizing failed after rollback; the session must end."""
        logger.warning("self-modification failed reason=%s", reason)
        return self._exit(ExitStatus.ERROR, f"self-modification failed: {reason}")

    def quit(self) -> Termination:
        """Operator quit."""
        if self.state is ControllerState.PENDING_RESTART:
            return self._exit(ExitStatus.ERROR, "quit with an uncommitted self-modification")
        return self._exit(ExitStatus.NORMAL, "operator quit")

    def fail(self, reason: str) -> Termination:
        """Unrecoverable error outside self-modification."""
        logger.warning("session failed reason=%s", reason)
        return self._exit(ExitStatus.ERROR, reason)

    def _exit(self, status: ExitStatus, reason: str) -> Termination:
        if self.termination is None:
            self.termination = Termination(status=status, reason=reason)
            self.state = ControllerState.EXITING
        return self.termination
