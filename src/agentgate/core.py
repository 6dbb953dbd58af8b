"""Core types shared by the action-execution pipeline.

This module defines the fundamental types used throughout the system:
- ExitStatus: Process exit codes understood by the supervisor
- CommandCategory / AutonomyClass: How a proposed command is classified
- PolicyAction / ApprovalDecision / RiskLevel: Decisions made along the way
- ContextEntry / ContextRecord: What the model has been shown
- EditBlock / CommandRequest: Proposed actions parsed from a model response
- EditAction / CommandAction: The closed set of action variants
- ExecutionResult: Outcome of a spawned process
- ActionOutcome / BatchReport: What happened to each action in a batch
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Union


class ExitStatus(IntEnum):
    """Process exit codes shared with the external supervisor loop."""

    NORMAL = 0
    """Ordinary shutdown. The supervisor stops."""

    ERROR = 1
    """Unrecoverable failure. The supervisor stops and reports."""

    RESTART = 123
    """Rebuild and relaunch. Reserved for self-modification."""


class CommandCategory(Enum):
    """Semantic category of a proposed command."""

    CONTEXT = "context-query"
    AGENT = "agent-task"
    SECURITY = "security-query"
    MEMORY = "memory-query"
    EXECUTION = "shell-execution"
    VERSION_CONTROL = "version-control"
    CONFIGURATION = "configuration"


class AutonomyClass(Enum):
    """Whether a command may run without human confirmation."""

    AUTONOMOUS = "autonomous"
    """Read-only or self-descriptive; never prompts the operator."""

    APPROVAL_REQUIRED = "approval-required"
    """State-mutating or externally visible; always prompts the operator."""


AUTONOMY_TABLE: dict[CommandCategory, AutonomyClass] = {
    CommandCategory.CONTEXT: AutonomyClass.AUTONOMOUS,
    CommandCategory.AGENT: AutonomyClass.AUTONOMOUS,
    CommandCategory.SECURITY: AutonomyClass.AUTONOMOUS,
    CommandCategory.MEMORY: AutonomyClass.AUTONOMOUS,
    CommandCategory.EXECUTION: AutonomyClass.APPROVAL_REQUIRED,
    CommandCategory.VERSION_CONTROL: AutonomyClass.APPROVAL_REQUIRED,
    CommandCategory.CONFIGURATION: AutonomyClass.APPROVAL_REQUIRED,
}


class PolicyAction(Enum):
    """Action attached to a policy rule."""

    ALLOW = "allow"
    DENY = "deny"


class ApprovalDecision(Enum):
    """Operator decision for one pending item."""

    APPROVE = "approve"
    """Apply this item only."""

    APPROVE_ALL = "approve-all"
    """Apply this item and every remaining item of the current batch."""

    REJECT = "reject"
    """Skip this item; keep going with the batch."""

    ABORT = "abort"
    """Stop the batch. Unprocessed items are left untouched."""


class RiskLevel(Enum):
    """Risk hint shown alongside an approval request."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ContextEntry:
    """A file the model has been shown, captured byte-for-byte."""

    path: Path
    """Resolved path of the file."""

    content: bytes
    """Snapshot taken when the file was added. Never refreshed."""

    added_at: float = field(default_factory=time.time)

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


@dataclass
class ContextRecord:
    """A non-file item in the context: snippets, results and notes."""

    kind: str
    """One of "snippet", "result" or "note"."""

    text: str
    added_at: float = field(default_factory=time.time)


@dataclass
class EditBlock:
    """A search/replace instruction parsed from a model response."""

    path: str
    """Target path exactly as written by the model."""

    search: str
    replace: str
    response_id: str = ""

    def __str__(self) -> str:
        return f"edit {self.path} (-{len(self.search)} +{len(self.replace)} chars)"


@dataclass
class CommandRequest:
    """A proposed command after classification."""

    raw: str
    """The command line as proposed."""

    category: CommandCategory
    autonomy: AutonomyClass
    verb: str | None = None
    """Control verb (e.g. "/add_file") or None for a plain shell line."""

    argument: str = ""
    """Everything after the control verb."""

    risk: RiskLevel = RiskLevel.LOW

    @property
    def requires_approval(self) -> bool:
        return self.autonomy is AutonomyClass.APPROVAL_REQUIRED

    def __str__(self) -> str:
        return self.raw


@dataclass
class EditAction:
    """Action variant: apply one edit block."""

    block: EditBlock


@dataclass
class CommandAction:
    """Action variant: run one classified command."""

    request: CommandRequest


Action = Union[EditAction, CommandAction]


@dataclass
class ExecutionResult:
    """Result of a spawned process."""

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    duration: float = 0.0
    """Wall-clock seconds from spawn to reap."""

    timed_out: bool = False
    truncated: bool = False
    profile: str = ""
    """Name of the sandbox profile the process ran under."""

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def __str__(self) -> str:
        """Format as readable output."""
        parts = []
        if self.stdout:
            parts.append(self.stdout.rstrip("\n"))
        if self.stderr:
            parts.append(f"[stderr] {self.stderr.rstrip()}")
        if self.timed_out:
            parts.append(f"[timed out after {self.duration:.1f}s]")
        else:
            parts.append(f"[exit code: {self.exit_code}]")
        return "\n".join(parts)

    def as_context(self) -> str:
        """Render the result the way the model sees it."""
        status = "timed out" if self.timed_out else f"exit {self.exit_code}"
        return (
            f"Command: {self.command}\n"
            f"Status: {status} ({self.duration:.2f}s, profile={self.profile})\n"
            f"Stdout:\n{self.stdout}\n"
            f"Stderr:\n{self.stderr}"
        )


class OutcomeStatus(Enum):
    """What happened to one action of a batch."""

    APPLIED = "applied"
    EXECUTED = "executed"
    REJECTED = "rejected"
    ABORTED = "aborted"
    DENIED = "denied"
    FAILED = "failed"


@dataclass
class ActionOutcome:
    """Result of processing one action."""

    action: Action
    status: OutcomeStatus
    message: str = ""
    result: ExecutionResult | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.APPLIED, OutcomeStatus.EXECUTED)

    def __str__(self) -> str:
        target = self.action.block if isinstance(self.action, EditAction) else self.action.request
        text = f"[{self.status.value}] {target}"
        if self.message:
            text += f": {self.message}"
        return text


@dataclass
class Termination:
    """Typed termination signal handed to whoever owns the process."""

    status: ExitStatus
    reason: str = ""


@dataclass
class BatchReport:
    """Everything that happened while processing one model response."""

    response_id: str
    outcomes: list[ActionOutcome] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)
    commit_message: str | None = None
    termination: Termination | None = None

    @property
    def applied_paths(self) -> list[str]:
        return [
            o.action.block.path
            for o in self.outcomes
            if o.status is OutcomeStatus.APPLIED and isinstance(o.action, EditAction)
        ]

    def summary(self) -> str:
        """Human-readable summary of the batch."""
        if not self.outcomes and not self.parse_errors:
            return "No actions found in response"
        lines = [f"Processed {len(self.outcomes)} action(s):"]
        for outcome in self.outcomes:
            lines.append(f"  {outcome}")
        for error in self.parse_errors:
            lines.append(f"  [parse error] {error}")
        if self.commit_message:
            lines.append(f"Committed: {self.commit_message}")
        if self.termination:
            lines.append(f"Exit requested: {self.termination.status.name} {self.termination.reason}".rstrip())
        return "\n".join(lines)
