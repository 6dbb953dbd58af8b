"""Human approval for pending edits and commands.

Key classes:
- ApprovalGate: Protocol every gate implements (``confirm``)
- InteractiveGate: Ask the operator on the terminal via prompt_toolkit
- RejectGate: Unattended mode; every request is rejected
- ApprovalBatch: Per-batch wrapper holding the sticky "approve all" state
- ApprovalHistory: Log of every decision, automatic or not
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

from prompt_toolkit import HTML, print_formatted_text
from prompt_toolkit import prompt as pt_prompt

from agentgate.core import ApprovalDecision, RiskLevel
from agentgate.errors import ConfigError

logger = logging.getLogger(__name__)

APPROVAL_MODES = ("interactive", "reject")

RISK_STYLES = {
    RiskLevel.LOW: "ansigreen",
    RiskLevel.MEDIUM: "ansiyellow",
    RiskLevel.HIGH: "ansired",
    RiskLevel.CRITICAL: "ansibrightred",
}

ANSWERS = {
    "y": ApprovalDecision.APPROVE,
    "yes": ApprovalDecision.APPROVE,
    "a": ApprovalDecision.APPROVE_ALL,
    "all": ApprovalDecision.APPROVE_ALL,
    "n": ApprovalDecision.REJECT,
    "no": ApprovalDecision.REJECT,
    "q": ApprovalDecision.ABORT,
    "quit": ApprovalDecision.ABORT,
    "abort": ApprovalDecision.ABORT,
}


@runtime_checkable
class ApprovalGate(Protocol):
    """Protocol for approval gates.

    Implementations block until a decision is available. The gate never
    sees requests the policy engine denied.
    """

    def confirm(self, description: str, risk: RiskLevel) -> ApprovalDecision:
        """Ask for a decision on one pending item.

        Args:
            description: What will happen, including a diff for edits.
            risk: Risk hint shown next to the request.

        Returns:
            The operator's decision.
        """
        ...


class InteractiveGate:
    """Ask the operator on the terminal for each pending item."""

    def __init__(self, prompt_func: Callable[[str], str] | None = None, show: Callable[[object], None] | None = None):
        """Create an interactive gate.

        Args:
            prompt_func: Reads one answer. Defaults to prompt_toolkit's prompt.
            show: Prints formatted text. Defaults to prompt_toolkit's printer.
        """
        self._prompt = prompt_func or pt_prompt
        self._show = show or print_formatted_text

    def confirm(self, description: str, risk: RiskLevel) -> ApprovalDecision:
        style = RISK_STYLES[risk]
        self._show(HTML(f"\n<b>APPROVAL REQUIRED</b> <{style}>[{risk.value} risk]</{style}>"))
        self._show(description)
        while True:
            try:
                answer = self._prompt("Apply? (y)es / (n)o / (a)ll remaining / (q)uit batch: ")
            except (EOFError, KeyboardInterrupt):
                return ApprovalDecision.ABORT
            decision = ANSWERS.get(answer.strip().lower())
            if decision is not None:
                return decision
            self._show("Please answer y, n, a or q.")


class RejectGate:
    """Reject every request. Used when nobody is available to answer."""

    def confirm(self, description: str, risk: RiskLevel) -> ApprovalDecision:
        return ApprovalDecision.REJECT


def make_gate(mode: str, interactive: ApprovalGate | None = None) -> ApprovalGate:
    """Build the gate for an approval mode.

    Args:
        mode: One of APPROVAL_MODES.
        interactive: Gate to use in interactive mode instead of a terminal prompt.

    Raises:
        ConfigError: If the mode is unknown.
    """
    if mode == "interactive":
        return interactive if interactive is not None else InteractiveGate()
    if mode == "reject":
        return RejectGate()
    raise ConfigError(f"Unknown approval mode '{mode}'. Available: {', '.join(APPROVAL_MODES)}")


@dataclass
class ApprovalRecord:
    """One logged approval decision."""

    description: str
    risk: RiskLevel
    decision: ApprovalDecision
    automatic: bool = False
    """True when the sticky "approve all" answered instead of the gate."""

    timestamp: float = field(default_factory=time.time)

    def __str__(self) -> str:
        how = "auto" if self.automatic else "operator"
        summary = self.description.splitlines()[0] if self.description else ""
        return f"{self.decision.value} ({how}, {self.risk.value}): {summary}"


class ApprovalHistory:
    """Bounded log of approval decisions for the session."""

    def __init__(self, limit: int = 200):
        self.limit = limit
        self.records: list[ApprovalRecord] = []

    def add(self, record: ApprovalRecord) -> None:
        self.records.append(record)
        if len(self.records) > self.limit:
            del self.records[: len(self.records) - self.limit]

    def recent(self, count: int = 10) -> list[ApprovalRecord]:
        return self.records[-count:]


class ApprovalBatch:
    """Approval state for one batch of pending items.

    "Approve all" is sticky only for the batch it was given in; a new batch
    starts a new ApprovalBatch.
    """

    def __init__(self, gate: ApprovalGate, history: ApprovalHistory | None = None):
        self.gate = gate
        self.history = history if history is not None else ApprovalHistory()
        self.approve_all = False
        self.aborted = False

    def confirm(self, description: str, risk: RiskLevel) -> ApprovalDecision:
        """Ask the gate unless the operator already approved everything."""
        if self.aborted:
            return ApprovalDecision.ABORT
        if self.approve_all:
            decision = ApprovalDecision.APPROVE_ALL
            self._record(description, risk, decision, automatic=True)
            return decision

        decision = self.gate.confirm(description, risk)
        if decision is ApprovalDecision.APPROVE_ALL:
            self.approve_all = True
        elif decision is ApprovalDecision.ABORT:
            self.aborted = True
        self._record(description, risk, decision, automatic=False)
        return decision

    def _record(self, description: str, risk: RiskLevel, decision: ApprovalDecision, automatic: bool) -> None:
        self.history.add(ApprovalRecord(description, risk, decision, automatic=automatic))
        logger.info(
            "approval decision=%s risk=%s automatic=%s item=%s",
            decision.value,
            risk.value,
            automatic,
            description.splitlines()[0] if description else "",
        )
