"""Supervisor loop: rebuild and relaunch agentgate when it asks to restart.

The session itself never restarts in-process. It exits with status 123 after
committing a change to its own source, and this loop optionally rebuilds and
starts it again. Any other status ends the loop with that status.
"""

from __future__ import annotations

import argparse
import logging
import shlex
import subprocess
import sys
from typing import Callable, Sequence

from agentgate.core import ExitStatus
from agentgate.harness.logging_utils import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = ["agentgate"]


def _run(argv: Sequence[str]) -> int:
    return subprocess.call(list(argv))


class Supervisor:
    """Launch a command until it exits with anything other than RESTART."""

    def __init__(
        self,
        command: Sequence[str],
        build: Sequence[str] | None = None,
        runner: Callable[[Sequence[str]], int] = _run,
        max_restarts: int | None = None,
    ):
        self.command = list(command)
        self.build = list(build) if build else None
        self.runner = runner
        self.max_restarts = max_restarts
        self.restarts = 0

    def run(self) -> int:
        """Run the loop and return the final exit status."""
        while True:
            if self.build:
                logger.info("supervisor build command=%s", self.build)
                build_status = self.runner(self.build)
                if build_status != 0:
                    logger.warning("supervisor build failed status=%s", build_status)
                    print(f"[agentgate-supervise] build failed with status {build_status}", file=sys.stderr)
                    return int(ExitStatus.ERROR)

            logger.info("supervisor launch command=%s restarts=%s", self.command, self.restarts)
            status = self.runner(self.command)

            if status != ExitStatus.RESTART:
                if status != ExitStatus.NORMAL:
                    print(f"[agentgate-supervise] exited with status {status}", file=sys.stderr)
                logger.info("supervisor stop status=%s", status)
                return status

            self.restarts += 1
            if self.max_restarts is not None and self.restarts > self.max_restarts:
                print("[agentgate-supervise] too many restarts, giving up", file=sys.stderr)
                return int(ExitStatus.ERROR)
            print("[agentgate-supervise] restart requested, relaunching", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for ``agentgate-supervise``."""
    parser = argparse.ArgumentParser(
        description="Run agentgate and relaunch it whenever it exits with status 123.",
    )
    parser.add_argument("--build", default=None, help="Command to run before every launch (e.g. 'pip install -e .')")
    parser.add_argument("--max-restarts", type=int, default=None, help="Stop after this many restarts")
    parser.add_argument("--log-level", default=None, help="Log level (overrides AGENTGATE_LOG_LEVEL).")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to supervise (default: agentgate)")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    command = args.command
    if command and command[0] == "--":
        command = command[1:]
    supervisor = Supervisor(
        command=command or DEFAULT_COMMAND,
        build=shlex.split(args.build) if args.build else None,
        max_restarts=args.max_restarts,
    )
    sys.exit(supervisor.run())


if __name__ == "__main__":
    main()
