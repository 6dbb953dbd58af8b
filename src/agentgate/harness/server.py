"""FastMCP server for agentgate.

Exposes the execution engine as MCP tools so a coding agent can propose
edits and commands. Every call goes through the same single-flight runtime,
and every approval is asked of the client through MCP elicitation.
"""

from __future__ import annotations

import argparse
import logging
from typing import Any

import anyio.to_thread
from fastmcp import Context, FastMCP

from agentgate.config import load_config
from agentgate.core import BatchReport, EditAction, ExitStatus
from agentgate.errors import ConfigError
from agentgate.harness.logging_utils import abbreviate, configure_logging
from agentgate.harness.runtime import GateRuntime, create_runtime, get_runtime

logger = logging.getLogger(__name__)


def report_to_dict(report: BatchReport, messages: list[str] | None = None) -> dict[str, Any]:
    """Flatten a batch report into JSON-friendly data."""
    outcomes = []
    for outcome in report.outcomes:
        if isinstance(outcome.action, EditAction):
            item = {"kind": "edit", "target": outcome.action.block.path}
        else:
            request = outcome.action.request
            item = {"kind": "command", "target": request.raw, "category": request.category.value}
        item.update({"status": outcome.status.value, "message": outcome.message})
        if outcome.result is not None:
            item.update(
                {
                    "exit_code": outcome.result.exit_code,
                    "stdout": outcome.result.stdout,
                    "stderr": outcome.result.stderr,
                    "timed_out": outcome.result.timed_out,
                }
            )
        outcomes.append(item)

    data: dict[str, Any] = {
        "success": not report.parse_errors and all(o.ok for o in report.outcomes),
        "outcomes": outcomes,
        "parse_errors": report.parse_errors,
        "commit_message": report.commit_message,
        "summary": report.summary(),
    }
    if report.termination is not None:
        data["exit_status"] = int(report.termination.status)
        data["exit_reason"] = report.termination.reason
    if messages is not None:
        data["messages"] = messages
    return data


def create_server(name: str = "agentgate", runtime: GateRuntime | None = None) -> FastMCP:
    """Create and configure the FastMCP server.

    Args:
        name: Name for the MCP server.
        runtime: Shared runtime; the global one by default.

    Returns:
        Configured FastMCP instance with agentgate tools.
    """
    mcp = FastMCP(name)

    runtime = runtime or get_runtime()
    engine = runtime.engine

    async def run_gated(ctx: Context | None, func, *args) -> BatchReport:
        """Run an engine call on a worker thread with approvals bound to ctx."""
        await anyio.to_thread.run_sync(runtime.acquire)
        try:
            runtime.gate.ctx = ctx
            report = await anyio.to_thread.run_sync(func, *args)
        finally:
            runtime.gate.ctx = None
            runtime.release()
        if report.termination is not None and report.termination.status is not ExitStatus.NORMAL:
            runtime.request_exit(report.termination)
        return report

    @mcp.tool()
    async def propose(response: str, ctx: Context, request: str = "") -> dict[str, Any]:
        """Process a model response containing edit blocks and command blocks.

        Edit blocks use the format:

            path/to/file
            <<<<<<< SEARCH
            exact text currently in the file
            =======
            replacement text
            >>>>>>> REPLACE

        Commands go in ```bash, ```sh or ```command fenced blocks, one per
        line. Files must be added with context_add before they can be edited.
        Each mutating action is confirmed through an elicitation request.

        Args:
            response: The full model response text.
            request: The prompt that produced it (used for commit messages).

        Returns:
            Dict with:
            - success: Whether every action was applied or executed
            - outcomes: Per-action status, message and command output
            - parse_errors: Blocks that were malformed and dropped
            - commit_message: Message of the auto-commit, if one was made
            - exit_status: Present when the server is about to exit (123 = restart)
        """
        logger.info("propose response=%s", abbreviate(response))
        report = await run_gated(ctx, engine.process_response, response, "", request)
        return report_to_dict(report, engine.operator.get_pending_messages())

    @mcp.tool()
    async def run_command(command: str, ctx: Context) -> dict[str, Any]:
        """Run one command line or control verb through the policy and sandbox.

        Args:
            command: A shell line (e.g. "ls -la") or a verb such as "/git_status".

        Returns:
            Same shape as propose.
        """
        logger.info("run command=%s", abbreviate(command))
        report = await run_gated(ctx, engine.run_command, command)
        return report_to_dict(report, engine.operator.get_pending_messages())

    @mcp.tool()
    async def context_add(path: str) -> dict[str, Any]:
        """Add a file to the context so it can be edited.

        Args:
            path: File path, relative to the workspace.
        """
        logger.info("context add path=%s", path)
        report = await run_gated(None, engine.run_command, f"/add_file {path}")
        return report_to_dict(report, engine.operator.get_pending_messages())

    @mcp.tool()
    def context_show(full: bool = False) -> dict[str, Any]:
        """Show what is in the context.

        Args:
            full: Return the full text the model sees instead of a listing.
        """
        if not runtime.acquire(wait=False):
            return {"success": False, "error": "agentgate is busy"}
        try:
            text = engine.context.format_for_model() if full else engine.context.show()
            return {"success": True, "context": text, "files": [str(p) for p in engine.context.files]}
        finally:
            runtime.release()

    @mcp.tool()
    def policy_reload() -> dict[str, Any]:
        """Re-read the policy rules from the configuration file.

        On error the previous rules stay in force.
        """
        if not runtime.acquire(wait=False):
            return {"success": False, "error": "agentgate is busy"}
        try:
            message = engine.reload_policy()
            return {"success": True, "message": message}
        except ConfigError as exc:
            return {"success": False, "error": str(exc)}
        finally:
            runtime.release()

    @mcp.tool()
    def status() -> dict[str, Any]:
        """Describe the sandbox, approval mode and active policy."""
        return {
            "busy": runtime.busy(),
            "workspace": str(engine.context.root),
            "approval_mode": engine.approval_mode,
            "sandbox_profile": engine.sandbox.profile_name,
            "sandbox_backend": engine.sandbox.backend_name,
            "policy_rules": len(engine.policy.rules),
            "context_files": len(engine.context.files),
            "security": engine.security_status(),
        }

    return mcp


def main():
    """Entry point for running agentgate as an MCP server."""
    parser = argparse.ArgumentParser(description="agentgate MCP server")
    parser.add_argument("--config", default=None, help="Path to agentgate.json")
    parser.add_argument("--workspace", default=None, help="Project directory (defaults to cwd)")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (overrides AGENTGATE_LOG_LEVEL).",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Log file path (defaults to stderr).",
    )

    args = parser.parse_args()

    configure_logging(args.log_level, args.log_file)

    try:
        if args.config or args.workspace:
            runtime = create_runtime(load_config(args.config, args.workspace))
        else:
            runtime = get_runtime()
    except ConfigError as exc:
        parser.exit(int(ExitStatus.ERROR), f"agentgate: {exc}\n")

    server = create_server(runtime=runtime)
    server.run()


if __name__ == "__main__":
    main()
