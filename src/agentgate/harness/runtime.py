"""Shared runtime objects for the MCP server."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import anyio.from_thread
from fastmcp import Context

from agentgate.config import GateConfig, load_config
from agentgate.core import ApprovalDecision, RiskLevel, Termination
from agentgate.engine import ExecutionEngine

logger = logging.getLogger(__name__)

EXIT_DELAY_SECONDS = 0.5

ELICIT_CHOICES = {
    "approve": ApprovalDecision.APPROVE,
    "approve-all": ApprovalDecision.APPROVE_ALL,
    "reject": ApprovalDecision.REJECT,
    "abort": ApprovalDecision.ABORT,
}


class ElicitationGate:
    """Approval gate that asks the MCP client through elicitation.

    ``confirm`` runs on a worker thread while the tool call awaits it, and
    hops back to the event loop to send the request. Without a bound
    context, or when the client cannot elicit, the request is rejected.
    """

    def __init__(self):
        self.ctx: Context | None = None

    def confirm(self, description: str, risk: RiskLevel) -> ApprovalDecision:
        if self.ctx is None:
            logger.info("elicitation unavailable reason=no-context; rejecting")
            return ApprovalDecision.REJECT

        message = f"[{risk.value} risk] {description}"
        try:
            result = anyio.from_thread.run(self.ctx.elicit, message, list(ELICIT_CHOICES))
        except Exception as exc:
            logger.warning("elicitation failed error=%s; rejecting", exc)
            return ApprovalDecision.REJECT

        if result.action == "accept":
            return ELICIT_CHOICES.get(str(result.data), ApprovalDecision.REJECT)
        if result.action == "cancel":
            return ApprovalDecision.ABORT
        return ApprovalDecision.REJECT


@dataclass
class GateRuntime:
    """Shared state for every MCP tool call."""

    engine: ExecutionEngine
    gate: ElicitationGate
    lock: threading.Lock = field(default_factory=threading.Lock)
    exit_func: Callable[[int], None] = os._exit

    def acquire(self, wait: bool = True, timeout: float | None = None) -> bool:
        """Acquire the runtime lock."""
        if not wait:
            return self.lock.acquire(blocking=False)
        if timeout is None:
            return self.lock.acquire()
        return self.lock.acquire(timeout=timeout)

    def release(self) -> None:
        """Release the runtime lock."""
        if self.lock.locked():
            self.lock.release()

    def busy(self) -> bool:
        return self.lock.locked()

    def request_exit(self, termination: Termination) -> None:
        """End the process shortly, once the current response has been sent."""
        logger.info("server exit scheduled status=%s reason=%s", int(termination.status), termination.reason)
        timer = threading.Timer(EXIT_DELAY_SECONDS, self.exit_func, args=(int(termination.status),))
        timer.daemon = True
        timer.start()


def create_runtime(config: GateConfig | None = None) -> GateRuntime:
    """Create a runtime whose approvals go to the MCP client."""
    config = config or load_config()
    gate = ElicitationGate()
    engine = ExecutionEngine.from_config(config, gate=gate)
    return GateRuntime(engine=engine, gate=gate)


_runtime: GateRuntime | None = None


def get_runtime(config_path: Path | str | None = None) -> GateRuntime:
    """Get or create the global runtime."""
    global _runtime
    if _runtime is None:
        _runtime = create_runtime(load_config(config_path))
    return _runtime


def reset_runtime() -> None:
    """Reset the global runtime (primarily for tests)."""
    global _runtime
    _runtime = None
