"""agentgate exception hierarchy.

All pipeline errors inherit from GateError. Only SelfModificationError is
allowed to end a session; everything else is reported and the session goes on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentgate.core import ExecutionResult


class GateError(Exception):
    """Base exception for all agentgate errors."""


class ConfigError(GateError):
    """Invalid or missing configuration."""


class NotFound(GateError):
    """A file to add to the context does not exist."""


class ReadError(GateError):
    """A file exists but could not be read."""


class AccessDenied(GateError):
    """An edit targets a file that is not in the context."""

    def __init__(self, path: str) -> None:
        super().__init__(f"'{path}' is not in context; read this file first with /add_file {path}")
        self.path = path


class MatchFailure(GateError):
    """Search text is absent from the file or appears more than once."""

    def __init__(self, path: str, occurrences: int) -> None:
        if occurrences == 0:
            detail = "search text not found"
        else:
            detail = "search text is ambiguous (found more than once)"
        super().__init__(f"{detail} in '{path}'")
        self.path = path
        self.occurrences = occurrences


class ParseError(GateError):
    """A proposed block is malformed and was dropped."""


class WriteError(GateError):
    """Writing an approved edit to disk failed."""


class PolicyViolation(GateError):
    """A command was denied by the policy engine."""

    def __init__(self, command: str, reason: str, rule: str | None = None) -> None:
        super().__init__(f"Command denied by policy: {reason}")
        self.command = command
        self.reason = reason
        self.rule = rule


class UnknownProfile(GateError):
    """A sandbox profile name outside the built-in set was requested."""


class SandboxFailure(GateError):
    """The isolation layer itself could not start the command."""


class SpawnError(GateError):
    """The process could not be spawned."""


class ExecutionTimeout(GateError):
    """A command exceeded its wall-clock limit and was killed."""

    def __init__(self, result: "ExecutionResult") -> None:
        super().__init__(f"Command timed out after {result.duration:.1f}s: {result.command}")
        self.result = result


class UserRejected(GateError):
    """The operator rejected a pending item."""


class UserAborted(GateError):
    """The operator aborted the current batch."""


class VersionControlError(GateError):
    """A git operation failed."""


class SelfModificationError(GateError):
    """Finalizing a self-modification failed; the session must end."""
