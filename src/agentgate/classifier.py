"""Command blocks and command classification.

A model proposes commands inside fenced blocks tagged ``bash``, ``sh`` or
``command``. Every non-empty line is one command. Lines starting with ``/``
are control verbs; anything else is a shell line.

Classification happens exactly once per command and fixes both the category
and the autonomy class before any policy or sandbox decision is made.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Iterable

from agentgate.core import AUTONOMY_TABLE, CommandCategory, CommandRequest, RiskLevel
from agentgate.edits import split_lines
from agentgate.errors import ParseError

logger = logging.getLogger(__name__)

FENCE_LANGUAGES = ("bash", "sh", "command")

_FENCE_OPEN = re.compile(r"^```\s*(\w+)\s*$")
_FENCE_CLOSE = "```"


# Verbs whose category does not depend on their argument.
VERB_CATEGORIES: dict[str, CommandCategory] = {
    "/add_file": CommandCategory.CONTEXT,
    "/add_snippet": CommandCategory.CONTEXT,
    "/show_context": CommandCategory.CONTEXT,
    "/clear_context": CommandCategory.CONTEXT,
    "/run": CommandCategory.EXECUTION,
    "/run_add": CommandCategory.EXECUTION,
    "/git_add": CommandCategory.VERSION_CONTROL,
    "/git_commit": CommandCategory.VERSION_CONTROL,
    "/git_status": CommandCategory.VERSION_CONTROL,
    "/git_diff": CommandCategory.VERSION_CONTROL,
    "/agents": CommandCategory.AGENT,
    "/agent": CommandCategory.AGENT,
    "/delegate": CommandCategory.AGENT,
    "/ask_agent": CommandCategory.AGENT,
    "/security": CommandCategory.SECURITY,
    "/memory": CommandCategory.MEMORY,
    "/config": CommandCategory.CONFIGURATION,
}

# Verbs that only query state without an argument and change it with one.
QUERY_OR_SET_VERBS = ("/sandbox", "/approval")

CONTROL_VERBS = tuple(VERB_CATEGORIES) + QUERY_OR_SET_VERBS

REQUIRED_ARGUMENT = {
    "/add_file": "PATH",
    "/add_snippet": "TEXT",
    "/run": "COMMAND",
    "/run_add": "COMMAND",
    "/git_commit": "MESSAGE",
    "/agent": "NAME",
    "/delegate": "AGENT TASK",
    "/ask_agent": "AGENT QUESTION",
}

CRITICAL_COMMANDS = frozenset({"rm", "sudo", "chmod", "chown", "mkfs", "dd"})
MEDIUM_COMMANDS = frozenset({"mv", "cp", "ln", "touch", "mkdir"})
HIGH_RISK_FLAGS = ("--force", "-rf", "-fr")


@dataclass
class ParsedCommands:
    """Command lines found in a response, plus any broken blocks."""

    commands: list[str] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)


def parse_command_blocks(response: str, exclude: Iterable[tuple[int, int]] = ()) -> ParsedCommands:
    """Extract command lines from fenced blocks, in order.

    Fences tagged with another language are skipped whole. An unterminated
    command fence is reported and its lines are dropped.

    Args:
        response: Raw model response.
        exclude: Line ranges to ignore, typically the edit blocks, so a fence
            quoted inside search or replacement text is never executed.
    """
    parsed = ParsedCommands()
    lines = split_lines(response)
    for start, end in exclude:
        lines[start:end] = [""] * (end - start)
    i = 0

    while i < len(lines):
        match = _FENCE_OPEN.match(lines[i].strip())
        if not match:
            i += 1
            continue

        language = match.group(1).lower()
        body: list[str] = []
        i += 1
        closed = False
        while i < len(lines):
            if lines[i].strip() == _FENCE_CLOSE:
                closed = True
                i += 1
                break
            body.append(lines[i])
            i += 1

        if language not in FENCE_LANGUAGES:
            continue
        if not closed:
            parsed.errors.append(ParseError(f"Unterminated ```{language} block"))
            continue

        for line in body:
            stripped = line.strip()
            if stripped and not stripped.startswith("#"):
                parsed.commands.append(stripped)

    logger.debug("command parse commands=%s errors=%s", len(parsed.commands), len(parsed.errors))
    return parsed


def split_verb(raw: str) -> tuple[str | None, str]:
    """Split a control line into (verb, argument). Shell lines give (None, raw)."""
    text = raw.strip()
    if not text.startswith("/"):
        return None, text
    verb, _, argument = text.partition(" ")
    return verb, argument.strip()


def classify(raw: str) -> CommandRequest:
    """Classify a proposed command.

    Raises:
        ParseError: If the line is empty or uses an unknown control verb.
    """
    text = raw.strip()
    if not text:
        raise ParseError("Empty command")

    verb, argument = split_verb(text)
    if verb is None:
        category = _shell_category(text)
    elif verb in VERB_CATEGORIES:
        category = VERB_CATEGORIES[verb]
    elif verb in QUERY_OR_SET_VERBS:
        category = CommandCategory.CONFIGURATION if argument else CommandCategory.SECURITY
    else:
        raise ParseError(f"Unknown command: {verb}")

    if verb == "/config" and argument in ("", "show"):
        category = CommandCategory.SECURITY
    if verb in REQUIRED_ARGUMENT and not argument:
        raise ParseError(f"usage: {verb} {REQUIRED_ARGUMENT[verb]}")

    request = CommandRequest(
        raw=text,
        category=category,
        autonomy=AUTONOMY_TABLE[category],
        verb=verb,
        argument=argument,
    )
    request.risk = assess_risk(shell_text(request) or text)
    logger.debug(
        "classify command=%s category=%s autonomy=%s risk=%s",
        text,
        category.value,
        request.autonomy.value,
        request.risk.value,
    )
    return request


def _shell_category(text: str) -> CommandCategory:
    first = text.split(None, 1)[0]
    if first == "git":
        return CommandCategory.VERSION_CONTROL
    return CommandCategory.EXECUTION


def shell_text(request: CommandRequest) -> str | None:
    """Shell line a request will spawn, or None if it spawns nothing.

    Version-control verbs are translated to the git command they stand for,
    so they pass through the same policy rules as a typed git line.
    """
    if request.verb is None:
        return request.raw
    if request.verb in ("/run", "/run_add"):
        return request.argument or None
    if request.verb == "/git_add":
        paths = request.argument or "."
        return f"git add {paths}"
    if request.verb == "/git_commit":
        return f"git commit -m {shlex.quote(request.argument)}"
    if request.verb == "/git_status":
        return "git status"
    if request.verb == "/git_diff":
        return f"git diff {request.argument}".rstrip()
    return None


def assess_risk(command: str) -> RiskLevel:
    """Rough risk hint shown to the operator. Never used to allow anything."""
    words = command.split()
    if not words:
        return RiskLevel.LOW
    if words[0] in CRITICAL_COMMANDS:
        return RiskLevel.CRITICAL
    if any(flag in words for flag in HIGH_RISK_FLAGS):
        return RiskLevel.HIGH
    if words[0] in MEDIUM_COMMANDS:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
