"""Execution engine: the single gate every proposed action passes through.

Pipeline for one model response:

1. Parse edit blocks and command blocks. Broken blocks become parse errors.
2. Classify every command exactly once.
3. Edits, in order: context check, on-disk match, approval, atomic write.
4. Commit applied edits. An own-source edit turns a successful commit into
   a restart request and a failed one into a rollback and an error exit.
5. Commands, in order: policy, sandbox, approval, spawn, record.

Autonomous commands skip the approval step and never spawn a process.
Policy denials are final and never reach the operator.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from agentgate.approval import APPROVAL_MODES, ApprovalBatch, ApprovalGate, ApprovalHistory, make_gate
from agentgate.classifier import classify, parse_command_blocks, shell_text
from agentgate.collaborators import (
    AgentBackend,
    CommitMessageGenerator,
    EmptyAgentDirectory,
    InMemoryNotes,
    MemoryBackend,
    default_commit_generator,
    fallback_commit_message,
)
from agentgate.config import GateConfig, load_policy
from agentgate.context import ContextStore
from agentgate.core import (
    Action,
    ActionOutcome,
    ApprovalDecision,
    BatchReport,
    CommandAction,
    CommandCategory,
    CommandRequest,
    EditAction,
    EditBlock,
    OutcomeStatus,
    RiskLevel,
    Termination,
)
from agentgate.edits import EditApplier, PreparedEdit, atomic_write, parse_edit_blocks
from agentgate.errors import (
    AccessDenied,
    ConfigError,
    ExecutionTimeout,
    MatchFailure,
    NotFound,
    ParseError,
    PolicyViolation,
    ReadError,
    SandboxFailure,
    SelfModificationError,
    SpawnError,
    UnknownProfile,
    UserAborted,
    UserRejected,
    VersionControlError,
    WriteError,
)
from agentgate.operator import OperatorChannel
from agentgate.policy import PolicyEngine
from agentgate.sandbox import (
    DEFAULT_MAX_OUTPUT_CHARS,
    DEFAULT_TIMEOUT,
    SandboxSelector,
    spawn,
)
from agentgate.selfmod import SelfModificationController
from agentgate.vcs import GitRepository

logger = logging.getLogger(__name__)


class ExecutionEngine:
    """Single-flight processor for model responses and operator commands.

    All public entry points take the same lock, so concurrent callers are
    serialized and at most one gated action is in flight.
    """

    def __init__(
        self,
        context: ContextStore,
        policy: PolicyEngine,
        sandbox: SandboxSelector,
        gate: ApprovalGate,
        controller: SelfModificationController | None = None,
        repo: GitRepository | None = None,
        commit_generator: CommitMessageGenerator | None = None,
        agents: AgentBackend | None = None,
        memory: MemoryBackend | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
        auto_commit: bool = True,
        approval_mode: str = "interactive",
        config_path: Path | None = None,
    ):
        self.context = context
        self.operator: OperatorChannel = context.operator
        self.policy = policy
        self.sandbox = sandbox
        self.controller = controller or SelfModificationController()
        self.repo = repo
        self.commit_generator = commit_generator
        self.agents = agents or EmptyAgentDirectory()
        self.memory = memory or InMemoryNotes()
        self.timeout = timeout
        self.max_output_chars = max_output_chars
        self.auto_commit = auto_commit
        self.config_path = config_path
        self.applier = EditApplier(context)
        self.history = ApprovalHistory()
        self._operator_gate = gate
        self.approval_mode = "interactive"
        self.set_approval_mode(approval_mode)
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: GateConfig,
        gate: ApprovalGate,
        operator: OperatorChannel | None = None,
        commit_generator: CommitMessageGenerator | None = None,
    ) -> "ExecutionEngine":
        """Wire an engine from a loaded configuration."""
        context = ContextStore(root=config.workspace, operator=operator, max_results=config.max_results)
        repo = GitRepository(config.workspace)
        if commit_generator is None and config.auto_commit:
            commit_generator = default_commit_generator(config.commit_model)
        engine = cls(
            context=context,
            policy=config.policy,
            sandbox=SandboxSelector(config.workspace, backend=config.sandbox_backend, profile=config.sandbox_profile),
            gate=gate,
            controller=SelfModificationController(config.source_roots, config.config_files),
            repo=repo if repo.is_repository() else None,
            commit_generator=commit_generator,
            timeout=config.timeout,
            max_output_chars=config.max_output_chars,
            auto_commit=config.auto_commit,
            approval_mode=config.approval_mode,
            config_path=config.path,
        )
        if config.policy_error:
            engine.operator.say(f"Warning: policy failed to load ({config.policy_error}); all commands are denied.")
        return engine

    @property
    def gate(self) -> ApprovalGate:
        return make_gate(self.approval_mode, interactive=self._operator_gate)

    @property
    def termination(self) -> Termination | None:
        return self.controller.termination

    def busy(self) -> bool:
        return self._lock.locked()

    # -- entry points -------------------------------------------------------

    def process_response(self, response: str, response_id: str = "", request: str = "") -> BatchReport:
        """Process every edit and command proposed in a model response.

        Args:
            response: Raw model response text.
            response_id: Identifier carried on parsed edit blocks.
            request: The operator prompt that produced the response; used for
                commit messages.
        """
        with self._lock:
            report = BatchReport(response_id=response_id)
            parsed_edits = parse_edit_blocks(response, response_id)
            parsed_commands = parse_command_blocks(response, exclude=parsed_edits.spans)

            edits: list[Action] = [EditAction(block) for block in parsed_edits.blocks]
            commands: list[Action] = []
            errors: list[ParseError] = parsed_edits.errors + parsed_commands.errors
            for raw in parsed_commands.commands:
                try:
                    commands.append(CommandAction(classify(raw)))
                except ParseError as exc:
                    errors.append(exc)

            for error in errors:
                report.parse_errors.append(str(error))
                self.operator.say(f"Parse error: {error}")
                self._report_error(str(error))

            self._run_batch(edits, commands, report, request or response_id)
            return report

    def run_command(self, raw: str) -> BatchReport:
        """Run one command line as its own batch."""
        with self._lock:
            report = BatchReport(response_id="command")
            try:
                action = CommandAction(classify(raw))
            except ParseError as exc:
                report.parse_errors.append(str(exc))
                self.operator.say(f"Parse error: {exc}")
                self._report_error(str(exc))
                return report
            self._run_batch([], [action], report, raw)
            return report

    def apply_edit(self, block: EditBlock, request: str = "") -> BatchReport:
        """Apply one edit block as its own batch."""
        with self._lock:
            report = BatchReport(response_id=block.response_id)
            self._run_batch([EditAction(block)], [], report, request or str(block))
            return report

    def quit(self) -> Termination:
        with self._lock:
            return self.controller.quit()

    def fail(self, reason: str) -> Termination:
        """End the session after an unrecoverable error."""
        with self._lock:
            return self.controller.fail(reason)

    # -- batch processing ---------------------------------------------------

    def _run_batch(self, edits: list[Action], commands: list[Action], report: BatchReport, request: str) -> None:
        if self.controller.exiting:
            report.termination = self.controller.termination
            for action in edits + commands:
                report.outcomes.append(ActionOutcome(action, OutcomeStatus.ABORTED, "session is exiting"))
            return

        batch = ApprovalBatch(self.gate, self.history)
        applied: list[PreparedEdit] = []

        for action in edits:
            report.outcomes.append(self._step(action, batch, applied))

        if applied:
            self._finalize_edits(applied, report, request)

        for action in commands:
            if self.controller.exiting:
                outcome = ActionOutcome(action, OutcomeStatus.ABORTED, "skipped: session is exiting")
            else:
                outcome = self._step(action, batch, applied)
            report.outcomes.append(outcome)

        report.termination = self.controller.termination
        logger.info(
            "batch done response_id=%s actions=%s parse_errors=%s",
            report.response_id,
            len(report.outcomes),
            len(report.parse_errors),
        )

    def _step(self, action: Action, batch: ApprovalBatch, applied: list[PreparedEdit]) -> ActionOutcome:
        if batch.aborted:
            outcome = ActionOutcome(action, OutcomeStatus.ABORTED, "batch aborted by operator")
        else:
            outcome = self._process(action, batch, applied)
        self.operator.say(str(outcome))
        return outcome

    def _process(self, action: Action, batch: ApprovalBatch, applied: list[PreparedEdit]) -> ActionOutcome:
        if isinstance(action, EditAction):
            return self._apply_edit(action, batch, applied)
        if isinstance(action, CommandAction):
            return self._run_request(action, batch)
        raise TypeError(f"Unknown action type: {type(action).__name__}")

    def _decision_outcome(self, action: Action, decision: ApprovalDecision) -> ActionOutcome | None:
        """Outcome for a non-approving decision, or None to proceed."""
        if decision is ApprovalDecision.REJECT:
            reason = "rejected by operator"
            return ActionOutcome(action, OutcomeStatus.REJECTED, reason, error=UserRejected(reason))
        if decision is ApprovalDecision.ABORT:
            reason = "batch aborted by operator"
            return ActionOutcome(action, OutcomeStatus.ABORTED, reason, error=UserAborted(reason))
        return None

    # -- edits --------------------------------------------------------------

    def _apply_edit(self, action: EditAction, batch: ApprovalBatch, applied: list[PreparedEdit]) -> ActionOutcome:
        block = action.block
        try:
            prepared = self.applier.prepare(block)
        except AccessDenied as exc:
            self._report_error(str(exc))
            return ActionOutcome(action, OutcomeStatus.DENIED, str(exc), error=exc)
        except (MatchFailure, ReadError) as exc:
            self._report_error(f"Edit failed: {exc}")
            return ActionOutcome(action, OutcomeStatus.FAILED, str(exc), error=exc)

        own = self.controller.is_own_path(prepared.path)
        display = self.context.display_path(prepared.path)
        title = f"Edit {display}" + (" (agentgate's own source; applying restarts the session)" if own else "")
        risk = RiskLevel.HIGH if own else RiskLevel.MEDIUM

        skipped = self._decision_outcome(action, batch.confirm(f"{title}\n{prepared.diff(display)}", risk))
        if skipped is not None:
            return skipped

        try:
            self.applier.write(prepared)
        except (WriteError, ReadError) as exc:
            self._report_error(f"Edit failed: {exc}")
            return ActionOutcome(action, OutcomeStatus.FAILED, str(exc), error=exc)

        applied.append(prepared)
        if prepared.changed:
            self.controller.note_edit(prepared.path)
        return ActionOutcome(action, OutcomeStatus.APPLIED, f"applied to {display}")

    def _finalize_edits(self, applied: list[PreparedEdit], report: BatchReport, request: str) -> None:
        own = self.controller.restart_pending
        if not own and not self.auto_commit:
            return
        if self.repo is None:
            if own:
                self._abandon_self_edit(applied, report, "workspace is not a git repository")
            else:
                self.operator.say("Warning: not a git repository; edits were not committed.")
            return

        paths = [p.path for p in applied]
        try:
            self.repo.stage(paths)
            diff = self.repo.staged_diff(paths)
            if not diff.strip():
                self.operator.say("Warning: no changes to commit.")
                if own:
                    self.controller.clear_pending()
                return
            message = self._commit_message(request, diff)
            commit = self.repo.commit(message, paths)
        except VersionControlError as exc:
            if own:
                self._abandon_self_edit(applied, report, str(exc))
            else:
                logger.warning("auto-commit failed error=%s", exc)
                self.operator.say(f"Warning: edits applied but not committed: {exc}")
            return

        report.commit_message = message
        self.operator.say(f"Committed: {message}")
        if own:
            report.termination = self.controller.commit_succeeded(commit)

    def _abandon_self_edit(self, applied: list[PreparedEdit], report: BatchReport, reason: str) -> None:
        error = SelfModificationError(f"could not commit own-source edit: {reason}")
        self._rollback(applied)
        self.operator.say(f"Error: {error}")
        self._report_error(str(error))
        report.termination = self.controller.commit_failed(reason)

    def _commit_message(self, request: str, diff: str) -> str:
        if self.commit_generator is not None:
            try:
                return self.commit_generator.generate(request, diff)
            except Exception as exc:
                logger.warning("commit message generation failed error=%s", exc)
                self.operator.say(f"Warning: failed to generate commit message: {exc}")
        return fallback_commit_message(request)

    def _rollback(self, applied: list[PreparedEdit]) -> None:
        """Put every file of the batch back to its pre-edit bytes."""
        for prepared in reversed(applied):
            atomic_write(prepared.path, prepared.original)
            logger.warning("rolled back path=%s", prepared.path)
        if self.repo is not None:
            try:
                self.repo.unstage([p.path for p in applied])
            except VersionControlError as exc:
                logger.warning("unstage after rollback failed error=%s", exc)
        self.operator.say(f"Rolled back {len(applied)} edit(s) to the last committed state.")

    # -- commands -----------------------------------------------------------

    def _run_request(self, action: CommandAction, batch: ApprovalBatch) -> ActionOutcome:
        request = action.request
        if not request.requires_approval:
            return self._autonomous(action)

        shell = shell_text(request)
        if shell is None:
            skipped = self._decision_outcome(action, batch.confirm(f"Change configuration: {request.raw}", request.risk))
            if skipped is not None:
                return skipped
            return self._configure(action)

        try:
            self.policy.check(shell)
        except PolicyViolation as exc:
            self._report_error(f"{request.raw}: {exc}")
            return ActionOutcome(action, OutcomeStatus.DENIED, exc.reason, error=exc)

        try:
            invocation = self.sandbox.select()
        except (SandboxFailure, UnknownProfile) as exc:
            self._report_error(f"{request.raw}: {exc}")
            return ActionOutcome(action, OutcomeStatus.FAILED, str(exc), error=exc)

        description = f"Run command: {shell}\nSandbox: {invocation.backend.name}/{invocation.profile.name}"
        skipped = self._decision_outcome(action, batch.confirm(description, request.risk))
        if skipped is not None:
            return skipped

        try:
            result = spawn(invocation, shell, timeout=self.timeout, max_output_chars=self.max_output_chars)
        except ExecutionTimeout as exc:
            self.context.record(exc.result)
            self._report_error(str(exc))
            return ActionOutcome(action, OutcomeStatus.FAILED, str(exc), result=exc.result, error=exc)
        except (SandboxFailure, SpawnError) as exc:
            self._report_error(f"{request.raw}: {exc}")
            return ActionOutcome(action, OutcomeStatus.FAILED, str(exc), error=exc)

        self.context.record(result)
        if request.verb == "/run_add":
            self.context.add_snippet(result.as_context())
        return ActionOutcome(action, OutcomeStatus.EXECUTED, f"exit code {result.exit_code}", result=result)

    def _autonomous(self, action: CommandAction) -> ActionOutcome:
        request = action.request
        try:
            message = self._answer(request)
        except (NotFound, ReadError, ConfigError) as exc:
            self._report_error(f"{request.raw}: {exc}")
            return ActionOutcome(action, OutcomeStatus.FAILED, str(exc), error=exc)

        if request.category in (CommandCategory.AGENT, CommandCategory.MEMORY, CommandCategory.SECURITY):
            self.context.note(f"{request.raw}\n{message}")
        return ActionOutcome(action, OutcomeStatus.EXECUTED, message)

    def _answer(self, request: CommandRequest) -> str:
        """Run an autonomous control verb and return its output."""
        verb, arg = request.verb, request.argument
        if verb == "/add_file":
            if not arg:
                raise NotFound("usage: /add_file PATH")
            entry = self.context.add(arg)
            return f"added {self.context.display_path(entry.path)}"
        if verb == "/add_snippet":
            self.context.add_snippet(arg)
            return "snippet added"
        if verb == "/show_context":
            return self.context.show()
        if verb == "/clear_context":
            self.context.clear()
            return "context cleared"
        if verb == "/agents":
            names = self.agents.list_agents()
            return "Agents: " + ", ".join(names) if names else "No agents are configured."
        if verb == "/agent":
            return self.agents.describe(arg)
        if verb in ("/delegate", "/ask_agent"):
            name, _, text = arg.partition(" ")
            if not name or not text:
                raise NotFound(f"usage: {verb} AGENT TEXT")
            if verb == "/delegate":
                return self.agents.delegate(name, text)
            return self.agents.ask(name, text)
        if verb == "/security":
            return self.security_status()
        if verb == "/sandbox":
            return self.sandbox.describe()
        if verb == "/approval":
            return self.approval_status()
        if verb == "/config":
            return self.config_status()
        if verb == "/memory":
            return self._memory(arg)
        raise NotFound(f"Unknown command: {verb}")

    def _memory(self, arg: str) -> str:
        sub, _, rest = arg.partition(" ")
        if sub in ("", "show"):
            return self.memory.show()
        if sub == "search":
            hits = self.memory.search(rest)
            return "\n".join(hits) if hits else f"No memory entries match '{rest}'."
        if sub == "add":
            if not rest:
                raise NotFound("usage: /memory add TEXT")
            self.memory.add(rest)
            return "memory entry added"
        raise NotFound(f"Unknown memory command: {sub}")

    def _configure(self, action: CommandAction) -> ActionOutcome:
        request = action.request
        verb, arg = request.verb, request.argument
        try:
            if verb == "/sandbox":
                profile = self.sandbox.set_profile(arg)
                message = f"sandbox profile set to {profile.name}"
            elif verb == "/approval":
                self.set_approval_mode(arg)
                message = f"approval mode set to {self.approval_mode}"
            elif verb == "/config" and arg == "reload":
                message = self.reload_policy()
            else:
                raise ConfigError(f"Unknown configuration command: {request.raw}")
        except (ConfigError, UnknownProfile) as exc:
            self._report_error(f"{request.raw}: {exc}")
            return ActionOutcome(action, OutcomeStatus.FAILED, str(exc), error=exc)
        return ActionOutcome(action, OutcomeStatus.EXECUTED, message)

    # -- configuration --------------------------------------------------------

    def set_approval_mode(self, mode: str) -> None:
        """Switch approval mode. No mode skips the gate.

        Raises:
            ConfigError: If the mode is unknown.
        """
        if mode not in APPROVAL_MODES:
            raise ConfigError(f"Unknown approval mode '{mode}'. Available: {', '.join(APPROVAL_MODES)}")
        self.approval_mode = mode
        logger.info("approval mode set mode=%s", mode)

    def reload_policy(self) -> str:
        """Re-read the policy from the config file, keeping the old rules on error.

        Raises:
            ConfigError: If there is no config file or it is malformed.
        """
        if self.config_path is None:
            raise ConfigError("no configuration file to reload")
        try:
            fresh = load_policy(self.config_path)
        except ConfigError as exc:
            logger.warning("policy reload failed path=%s error=%s; keeping previous rules", self.config_path, exc)
            raise ConfigError(f"reload failed, previous policy kept: {exc}") from exc
        self.policy.replace(fresh)
        logger.info("policy reloaded path=%s rules=%s", self.config_path, len(fresh.rules))
        return f"policy reloaded: {len(fresh.rules)} rule(s)"

    def security_status(self) -> str:
        return "\n".join([self.sandbox.describe(), self.approval_status(), self.policy.describe()])

    def approval_status(self) -> str:
        lines = [f"Approval mode: {self.approval_mode}"]
        lines.extend(f"  {record}" for record in self.history.recent(5))
        return "\n".join(lines)

    def config_status(self) -> str:
        return "\n".join(
            [
                f"Config file: {self.config_path or '(built-in defaults)'}",
                f"Timeout: {self.timeout}s, max output: {self.max_output_chars} chars",
                f"Auto-commit: {'on' if self.auto_commit else 'off'}",
                self.policy.describe(),
            ]
        )

    def _report_error(self, message: str) -> None:
        """Record a pipeline error where the model will see it on its next turn."""
        self.context.note(message)

