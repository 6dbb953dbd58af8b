"""MCP harness for agentgate.

Runs the execution engine behind a FastMCP server so coding agents can
propose edits and commands, with approvals requested from the client.

Usage:
    # Start the MCP server on stdio
    python -m agentgate.harness

    # Or with an explicit config file
    agentgate-mcp --config agentgate.json --log-level info
"""

from agentgate.harness.runtime import ElicitationGate, GateRuntime, create_runtime, get_runtime, reset_runtime
from agentgate.harness.server import create_server, main

__all__ = [
    "ElicitationGate",
    "GateRuntime",
    "create_runtime",
    "get_runtime",
    "reset_runtime",
    "create_server",
    "main",
]
