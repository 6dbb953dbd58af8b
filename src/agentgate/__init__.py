"""agentgate: a gated action-execution core for model-proposed changes.

This package provides:
- A context store that acts as the allowlist for file edits
- A search/replace edit parser and an atomic, context-gated applier
- Command classification, an ordered policy engine and sandboxed spawning
- Human approval with per-batch "approve all" and abort
- A self-modification controller that exits with status 123 to restart
- An interactive console, an MCP server and a supervisor loop

Example:
    from agentgate import ExecutionEngine, load_config
    from agentgate.approval import InteractiveGate

    engine = ExecutionEngine.from_config(load_config(), gate=InteractiveGate())
    report = engine.process_response(model_response)
    print(report.summary())
"""

from agentgate.approval import (
    ApprovalBatch,
    ApprovalGate,
    ApprovalHistory,
    InteractiveGate,
    RejectGate,
)
from agentgate.classifier import classify, parse_command_blocks
from agentgate.config import GateConfig, load_config
from agentgate.context import ContextStore
from agentgate.core import (
    ActionOutcome,
    ApprovalDecision,
    AutonomyClass,
    BatchReport,
    CommandAction,
    CommandCategory,
    CommandRequest,
    ContextEntry,
    EditAction,
    EditBlock,
    ExecutionResult,
    ExitStatus,
    OutcomeStatus,
    PolicyAction,
    RiskLevel,
    Termination,
)
from agentgate.edits import EditApplier, parse_edit_blocks
from agentgate.engine import ExecutionEngine
from agentgate.errors import GateError
from agentgate.policy import PolicyDecision, PolicyEngine, PolicyRule, default_policy
from agentgate.sandbox import SandboxProfile, SandboxSelector, spawn
from agentgate.selfmod import SelfModificationController

__version__ = "0.1.0"

__all__ = [
    # Engine
    "ExecutionEngine",
    "GateConfig",
    "load_config",
    # Core types
    "ActionOutcome",
    "ApprovalDecision",
    "AutonomyClass",
    "BatchReport",
    "CommandAction",
    "CommandCategory",
    "CommandRequest",
    "ContextEntry",
    "EditAction",
    "EditBlock",
    "ExecutionResult",
    "ExitStatus",
    "OutcomeStatus",
    "PolicyAction",
    "RiskLevel",
    "Termination",
    "GateError",
    # Components
    "ContextStore",
    "EditApplier",
    "parse_edit_blocks",
    "classify",
    "parse_command_blocks",
    "PolicyEngine",
    "PolicyRule",
    "PolicyDecision",
    "default_policy",
    "SandboxProfile",
    "SandboxSelector",
    "spawn",
    "SelfModificationController",
    # Approval
    "ApprovalGate",
    "ApprovalBatch",
    "ApprovalHistory",
    "InteractiveGate",
    "RejectGate",
]
