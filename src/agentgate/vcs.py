"""Git operations used by the auto-commit step."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Sequence

from agentgate.errors import VersionControlError

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30


class GitRepository:
    """Thin wrapper around the git CLI for one working tree."""

    def __init__(self, root: Path | str, git: str = "git"):
        self.root = Path(root).resolve()
        self.git = git

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        argv = [self.git, *args]
        logger.debug("git run args=%s cwd=%s", args, self.root)
        try:
            result = subprocess.run(
                argv,
                cwd=self.root,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise VersionControlError(f"git {args[0]} failed: {exc}") from exc
        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise VersionControlError(f"git {args[0]} failed: {detail}")
        return result

    def is_repository(self) -> bool:
        try:
            result = self._run("rev-parse", "--is-inside-work-tree", check=False)
        except VersionControlError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def stage(self, paths: Sequence[str | Path]) -> None:
        """Stage the given paths."""
        if not paths:
            return
        self._run("add", "--", *[str(p) for p in paths])

    def unstage(self, paths: Sequence[str | Path]) -> None:
        """Remove paths from the index, leaving the working tree alone."""
        if not paths:
            return
        self._run("reset", "-q", "--", *[str(p) for p in paths])

    def staged_diff(self, paths: Sequence[str | Path] = ()) -> str:
        """Staged changes, limited to ``paths`` when given."""
        return self._run("diff", "--cached", "--", *[str(p) for p in paths]).stdout

    def commit(self, message: str, paths: Sequence[str | Path] = ()) -> str:
        """Commit and return the new commit hash.

        With ``paths``, only those paths are committed; anything else already
        in the index stays staged for the operator.
        """
        if paths:
            self._run("commit", "-q", "--only", "-m", message, "--", *[str(p) for p in paths])
        else:
            self._run("commit", "-q", "-m", message)
        commit_hash = self._run("rev-parse", "HEAD").stdout.strip()
        logger.info("git commit hash=%s message=%s", commit_hash[:12], message.splitlines()[0] if message else "")
        return commit_hash

