"""Policy engine for proposed shell commands.

Evaluation order for each command segment:

1. Exact rules, looked up in a dict keyed by the literal command text.
2. Pattern rules in declaration order. First match wins.
3. The fallback action (deny unless explicitly configured otherwise).

Overlapping allow and deny patterns are resolved purely by their order, so
put specific denies before broad allows. A deny is final; nothing later in
the pipeline (approval included) can turn it into an allow.

Compound lines (``&&``, ``||``, ``;``, ``|``, ``&``, subshell parentheses and
line breaks) are split and every segment must be allowed. Command
substitution is always denied. A segment that redirects output into a file
(``>``, ``>>``) is only allowed by a pattern that itself names the redirect;
deny rules still apply to it.
"""

from __future__ import annotations

import fnmatch
import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Iterable

from agentgate.core import PolicyAction
from agentgate.errors import ConfigError, PolicyViolation

logger = logging.getLogger(__name__)

PUNCTUATION_CHARS = "();<>|&\n\r"
SEPARATOR_CHARS = frozenset(";|()\n\r")
SUBSTITUTION_MARKERS = ("$(", "`")


@dataclass
class PolicyRule:
    """One ordered policy rule."""

    pattern: str
    action: PolicyAction
    exact: bool = False
    """Literal comparison against the whole segment, served from the fast path."""

    order: int = 0
    syntax: str = "glob"
    """"glob" (shell wildcards) or "regex" (full match)."""

    message: str = ""
    _regex: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.syntax not in ("glob", "regex"):
            raise ConfigError(f"Unknown pattern syntax '{self.syntax}' for rule '{self.pattern}'")
        if self.exact:
            return
        if self.syntax == "regex":
            source = self.pattern
        else:
            source = fnmatch.translate(self.pattern)
        try:
            self._regex = re.compile(source, re.DOTALL)
        except re.error as exc:
            raise ConfigError(f"Invalid pattern '{self.pattern}': {exc}") from exc

    @property
    def names_redirect(self) -> bool:
        return ">" in self.pattern

    def matches(self, command: str, writes_file: bool = False) -> bool:
        if self.exact:
            return command == self.pattern
        if writes_file and self.action is PolicyAction.ALLOW and not self.names_redirect:
            return False
        return self._regex.fullmatch(command) is not None

    def __str__(self) -> str:
        kind = "exact" if self.exact else self.syntax
        return f"#{self.order} {self.action.value} {kind} '{self.pattern}'"


@dataclass
class PolicyDecision:
    """Outcome of evaluating one command."""

    action: PolicyAction
    reason: str
    rule: PolicyRule | None = None
    matched_by: str = "default"
    """"exact", "pattern", "default" or "syntax" (for unparseable lines)."""

    segment: str = ""

    @property
    def allowed(self) -> bool:
        return self.action is PolicyAction.ALLOW


@dataclass
class Segment:
    """One simple command out of a compound line."""

    text: str
    writes_file: bool = False


def _is_separator(token: str) -> bool:
    if not token or any(ch not in PUNCTUATION_CHARS for ch in token):
        return False
    return any(ch in SEPARATOR_CHARS for ch in token) or set(token) == {"&"}


def _is_fd_duplication(token: str, following: str | None) -> bool:
    # 2>&1, >&-
    return token.endswith("&") and following is not None and (following.isdigit() or following == "-")


def split_segments(command: str) -> list[Segment]:
    """Split a shell line on control operators and line breaks.

    Raises:
        ValueError: If the line cannot be tokenized (unbalanced quotes).
    """
    lexer = shlex.shlex(command, posix=True, punctuation_chars=PUNCTUATION_CHARS)
    lexer.whitespace = " \t"
    lexer.whitespace_split = True
    lexer.commenters = ""
    tokens = list(lexer)

    segments: list[Segment] = []
    current: list[str] = []
    writes_file = False
    for index, token in enumerate(tokens):
        if _is_separator(token):
            if current:
                segments.append(Segment(" ".join(current), writes_file))
            current = []
            writes_file = False
            continue
        if ">" in token and all(ch in PUNCTUATION_CHARS for ch in token):
            following = tokens[index + 1] if index + 1 < len(tokens) else None
            if not _is_fd_duplication(token, following):
                writes_file = True
        current.append(token)
    if current:
        segments.append(Segment(" ".join(current), writes_file))
    return segments


class PolicyEngine:
    """Ordered allow/deny rules with a literal fast path.

    Example:
        engine = PolicyEngine()
        engine.deny("rm *").allow("ls", exact=True).allow("git log *")
        engine.evaluate("ls").matched_by  # "exact"
    """

    def __init__(self, rules: Iterable[PolicyRule] = (), default: PolicyAction = PolicyAction.DENY):
        self.default = default
        self.rules: list[PolicyRule] = []
        self._exact: dict[str, PolicyRule] = {}
        self._patterns: list[PolicyRule] = []
        for rule in rules:
            self.add_rule(rule)

    def add_rule(self, rule: PolicyRule) -> "PolicyEngine":
        """Append a rule. Its order index is its position."""
        rule.order = len(self.rules)
        self.rules.append(rule)
        if rule.exact:
            # The first exact rule for a literal wins, like any other rule.
            self._exact.setdefault(rule.pattern, rule)
        else:
            self._patterns.append(rule)
        return self

    def allow(self, pattern: str, exact: bool = False, syntax: str = "glob") -> "PolicyEngine":
        """Add an ALLOW rule."""
        return self.add_rule(PolicyRule(pattern=pattern, action=PolicyAction.ALLOW, exact=exact, syntax=syntax))

    def deny(self, pattern: str, exact: bool = False, syntax: str = "glob", message: str = "") -> "PolicyEngine":
        """Add a DENY rule."""
        return self.add_rule(
            PolicyRule(pattern=pattern, action=PolicyAction.DENY, exact=exact, syntax=syntax, message=message)
        )

    def replace(self, other: "PolicyEngine") -> None:
        """Swap in another engine's rules. Used by reload."""
        self.default = other.default
        self.rules = other.rules
        self._exact = other._exact
        self._patterns = other._patterns

    def evaluate(self, command: str) -> PolicyDecision:
        """Evaluate a whole command line. Any denied segment denies the line."""
        text = command.strip()
        if any(marker in text for marker in SUBSTITUTION_MARKERS):
            decision = PolicyDecision(
                PolicyAction.DENY, "command substitution is not allowed", matched_by="syntax", segment=text
            )
            self._log(text, decision)
            return decision

        try:
            segments = split_segments(text)
        except ValueError as exc:
            decision = PolicyDecision(
                PolicyAction.DENY, f"unable to parse command: {exc}", matched_by="syntax", segment=text
            )
            self._log(text, decision)
            return decision

        if not segments:
            decision = PolicyDecision(PolicyAction.DENY, "empty command", matched_by="syntax")
            self._log(text, decision)
            return decision

        decision = None
        for segment in segments:
            decision = self.evaluate_segment(segment.text, writes_file=segment.writes_file)
            if not decision.allowed:
                break
        self._log(text, decision)
        return decision

    def evaluate_segment(self, segment: str, writes_file: bool = False) -> PolicyDecision:
        """Evaluate a single simple command."""
        rule = self._exact.get(segment)
        if rule is not None:
            return self._decision(rule, "exact", segment)

        for rule in self._patterns:
            if rule.matches(segment, writes_file=writes_file):
                return self._decision(rule, "pattern", segment)

        reason = "no rule matched; default is " + self.default.value
        if writes_file and self.default is PolicyAction.DENY:
            reason = "output redirection is not allowed by any rule; default is deny"
        return PolicyDecision(self.default, reason, matched_by="default", segment=segment)

    def check(self, command: str) -> PolicyDecision:
        """Evaluate and raise on deny.

        Raises:
            PolicyViolation: If any segment of the command is denied.
        """
        decision = self.evaluate(command)
        if not decision.allowed:
            rule = str(decision.rule) if decision.rule else None
            raise PolicyViolation(command, decision.reason, rule=rule)
        return decision

    def describe(self) -> str:
        """Operator-facing listing of the active rules."""
        lines = [f"Policy: {len(self.rules)} rule(s), default {self.default.value}"]
        lines.extend(f"  {rule}" for rule in self.rules)
        return "\n".join(lines)

    def _decision(self, rule: PolicyRule, matched_by: str, segment: str) -> PolicyDecision:
        reason = rule.message or f"matched rule {rule}"
        return PolicyDecision(rule.action, reason, rule=rule, matched_by=matched_by, segment=segment)

    def _log(self, command: str, decision: PolicyDecision) -> None:
        if decision.allowed:
            logger.debug("policy allow command=%s matched_by=%s", command, decision.matched_by)
        else:
            logger.info("policy deny command=%s reason=%s", command, decision.reason)


def default_policy() -> PolicyEngine:
    """Built-in rules used when no configuration provides a policy."""
    engine = PolicyEngine(default=PolicyAction.DENY)
    for pattern in ("rm *", "sudo *", "chmod *", "chown *", "git push *--force*", "git push -f*"):
        engine.deny(pattern, message=f"'{pattern}' is denied by the built-in policy")
    for literal in ("ls", "pwd", "date", "whoami", "git status", "git diff", "git log", "git branch", "git commit"):
        engine.allow(literal, exact=True)
    for pattern in (
        "ls *",
        "cat *",
        "echo *",
        "git log *",
        "git diff *",
        "git show *",
        "git status *",
        "git add *",
        "git commit *",
    ):
        engine.allow(pattern)
    return engine


def policy_from_config(data: dict) -> PolicyEngine:
    """Build an engine from the ``policy`` section of the config file.

    Raises:
        ConfigError: If the section is malformed.
    """
    if not isinstance(data, dict):
        raise ConfigError("'policy' must be an object")

    default_name = data.get("default", "deny")
    try:
        default = PolicyAction(default_name)
    except ValueError as exc:
        raise ConfigError(f"Invalid policy default '{default_name}'") from exc

    raw_rules = data.get("rules", [])
    if not isinstance(raw_rules, list):
        raise ConfigError("'policy.rules' must be a list")

    engine = PolicyEngine(default=default)
    for index, raw in enumerate(raw_rules):
        if not isinstance(raw, dict) or not isinstance(raw.get("pattern"), str):
            raise ConfigError(f"Policy rule {index} must be an object with a string 'pattern'")
        try:
            action = PolicyAction(raw.get("action", "deny"))
        except ValueError as exc:
            raise ConfigError(f"Policy rule {index} has invalid action '{raw.get('action')}'") from exc
        engine.add_rule(
            PolicyRule(
                pattern=raw["pattern"],
                action=action,
                exact=bool(raw.get("exact", False)),
                syntax=raw.get("syntax", "glob"),
                message=raw.get("message", ""),
            )
        )
    return engine
