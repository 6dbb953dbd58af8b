"""Interactive operator console.

The operator pastes model responses (``:response`` ... ``:end``) or loads
them from a file, and can run control verbs directly. The process exits
with the status the session ended in: 0 on quit, 123 after a committed
self-modification, 1 on an unrecoverable error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence

from prompt_toolkit import HTML, PromptSession, print_formatted_text
from prompt_toolkit.history import FileHistory

from agentgate.approval import APPROVAL_MODES, InteractiveGate
from agentgate.classifier import CONTROL_VERBS
from agentgate.config import load_config
from agentgate.core import BatchReport, ExitStatus
from agentgate.engine import ExecutionEngine
from agentgate.errors import ConfigError
from agentgate.harness.logging_utils import configure_logging
from agentgate.paths import history_path_default

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  :response             paste a model response, finish with :end
  /load_response FILE   process a model response stored in FILE
  /add_file PATH        add a file to the context (required before editing it)
  /show_context         list what is in the context
  /run COMMAND          run a shell command through policy, sandbox and approval
  /git_status           show the working tree status
  /security             show sandbox, approval mode and policy
  /help                 show this help
  /quit                 end the session
Other verbs: """ + ", ".join(CONTROL_VERBS)

QUIT_COMMANDS = {"/quit", "/exit", ":q", ":quit"}


class Console:
    """Read-eval loop around an ExecutionEngine."""

    def __init__(
        self,
        engine: ExecutionEngine,
        read_line: Callable[[str], str],
        show: Callable[[object], None] = print_formatted_text,
    ):
        self.engine = engine
        self._read = read_line
        self._show = show

    def run(self) -> ExitStatus:
        """Loop until the operator quits or the session terminates."""
        self._show(HTML("<b>agentgate</b> ready. Type /help for commands."))
        self._flush()
        while True:
            try:
                line = self._read("agentgate> ")
            except KeyboardInterrupt:
                continue
            except EOFError:
                line = "/quit"
            try:
                keep_going = self.handle_line(line)
            except Exception as exc:
                logger.exception("console line failed line=%s", line)
                self._flush()
                self.engine.fail(f"unrecoverable error: {exc}")
                break
            if not keep_going:
                break
        termination = self.engine.termination
        status = termination.status if termination else ExitStatus.NORMAL
        if termination and termination.reason:
            self._show(f"Exiting ({status.name.lower()}): {termination.reason}")
        return status

    def handle_line(self, line: str) -> bool:
        """Handle one input line. Returns False when the session should end."""
        stripped = line.strip()
        if not stripped:
            return True

        if stripped in QUIT_COMMANDS:
            self.engine.quit()
            return False
        if stripped in ("/help", ":help"):
            self._show(HELP_TEXT)
            return True
        if stripped == ":response":
            response = self._read_block()
            if response is not None:
                self._process(response)
        elif stripped.startswith("/load_response"):
            self._load_response(stripped.partition(" ")[2].strip())
        else:
            self._print_report(self.engine.run_command(stripped))

        return self.engine.termination is None

    def _read_block(self) -> str | None:
        self._show("Paste the response, finish with :end")
        lines = []
        while True:
            try:
                block_line = self._read("... ")
            except (EOFError, KeyboardInterrupt):
                self._show("Response discarded.")
                return None
            if block_line.strip() == ":end":
                break
            lines.append(block_line)
        return "\n".join(lines) + "\n"

    def _load_response(self, name: str) -> None:
        if not name:
            self._show("usage: /load_response FILE")
            return
        path = Path(name).expanduser()
        try:
            response = path.read_text(encoding="utf-8")
        except OSError as exc:
            self._show(f"Failed to read response file '{name}': {exc}")
            return
        self._process(response, response_id=path.name)

    def _process(self, response: str, response_id: str = "") -> None:
        report = self.engine.process_response(response, response_id=response_id)
        self._print_report(report)

    def _print_report(self, report: BatchReport) -> None:
        self._flush()
        for outcome in report.outcomes:
            if outcome.result is not None:
                self._show(str(outcome.result))
        if report.outcomes or report.parse_errors:
            self._show(report.summary())

    def _flush(self) -> None:
        for message in self.engine.operator.get_pending_messages():
            self._show(message)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for the interactive console."""
    parser = argparse.ArgumentParser(description="agentgate interactive session")
    parser.add_argument("--config", default=None, help="Path to agentgate.json")
    parser.add_argument("--workspace", default=None, help="Project directory (defaults to cwd)")
    parser.add_argument("--approval", choices=APPROVAL_MODES, default=None, help="Override the approval mode")
    parser.add_argument("--log-level", default=None, help="Log level (overrides AGENTGATE_LOG_LEVEL).")
    parser.add_argument("--log-file", default=None, help="Log file path (defaults to stderr).")
    args = parser.parse_args(argv)

    configure_logging(args.log_level, args.log_file)

    try:
        config = load_config(args.config, args.workspace)
    except ConfigError as exc:
        print(f"agentgate: {exc}", file=sys.stderr)
        sys.exit(int(ExitStatus.ERROR))
    if args.approval:
        config.approval_mode = args.approval

    history_path = history_path_default()
    history_path.parent.mkdir(parents=True, exist_ok=True)
    session = PromptSession(history=FileHistory(str(history_path)))

    engine = ExecutionEngine.from_config(config, gate=InteractiveGate())
    console = Console(engine, read_line=session.prompt)
    status = console.run()
    logger.info("console exit status=%s", int(status))
    sys.exit(int(status))


if __name__ == "__main__":
    main()
