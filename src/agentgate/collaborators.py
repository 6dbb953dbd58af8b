"""External collaborators, specified only at their boundary.

The execution core never talks to a language model or a knowledge base
directly. It calls these protocols, and the outer runtime decides what sits
behind them.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol, runtime_checkable

import anthropic

from agentgate.errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_MODEL = "claude-sonnet-4-20250514"
MAX_DIFF_CHARS = 12_000

COMMIT_PROMPT = """Generate a conventional commit message for the following changes.

Original request: {request}

Git diff:
{diff}

Requirements:
- Use conventional commit format (type: description)
- Keep under 72 characters
- Use present tense
- Choose one type: feat, fix, docs, style, refactor, test, chore

Return only the commit message, nothing else."""


@runtime_checkable
class CommitMessageGenerator(Protocol):
    """Turns a staged diff into a commit message."""

    def generate(self, request: str, diff: str) -> str:
        """Return a one-line commit message. May raise on any failure."""
        ...


class AnthropicCommitMessageGenerator:
    """Commit messages from the Anthropic Messages API."""

    def __init__(self, model: str = DEFAULT_COMMIT_MODEL, max_tokens: int = 100, client=None):
        self.model = model
        self.max_tokens = max_tokens
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = anthropic.Anthropic()
        return self._client

    def generate(self, request: str, diff: str) -> str:
        prompt = COMMIT_PROMPT.format(request=request or "(none)", diff=diff[:MAX_DIFF_CHARS])
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )

        text_parts = []
        for block in response.content:
            if hasattr(block, "text"):
                text_parts.append(block.text)

        message = "".join(text_parts).strip().strip('"').strip()
        if not message:
            raise ValueError("empty commit message from model")
        return message.splitlines()[0]


def default_commit_generator(model: str = DEFAULT_COMMIT_MODEL) -> CommitMessageGenerator | None:
    """Anthropic generator when an API key is present, otherwise None."""
    if not os.environ.get("ANTHROPIC_API_KEY"):
        logger.debug("commit generator disabled reason=no-api-key")
        return None
    return AnthropicCommitMessageGenerator(model=model)


def fallback_commit_message(request: str) -> str:
    summary = " ".join(request.split())
    return f"Auto-commit: {summary or 'apply approved edits'}"[:200]


@runtime_checkable
class AgentBackend(Protocol):
    """Directory of sub-agents that tasks can be routed to."""

    def list_agents(self) -> list[str]: ...

    def describe(self, name: str) -> str: ...

    def delegate(self, name: str, task: str) -> str: ...

    def ask(self, name: str, question: str) -> str: ...


class EmptyAgentDirectory:
    """Agent backend with no agents registered."""

    def list_agents(self) -> list[str]:
        return []

    def describe(self, name: str) -> str:
        raise NotFound(f"Unknown agent '{name}'")

    def delegate(self, name: str, task: str) -> str:
        raise NotFound(f"Unknown agent '{name}'")

    def ask(self, name: str, question: str) -> str:
        raise NotFound(f"Unknown agent '{name}'")


@runtime_checkable
class MemoryBackend(Protocol):
    """Persistent notes the model can consult."""

    def show(self) -> str: ...

    def search(self, query: str) -> list[str]: ...

    def add(self, text: str) -> None: ...


class InMemoryNotes:
    """Notes kept for the lifetime of the process."""

    def __init__(self):
        self.notes: list[str] = []

    def show(self) -> str:
        if not self.notes:
            return "Memory is empty."
        return "\n".join(f"{i}. {note}" for i, note in enumerate(self.notes, 1))

    def search(self, query: str) -> list[str]:
        needle = query.lower()
        return [note for note in self.notes if needle in note.lower()]

    def add(self, text: str) -> None:
        self.notes.append(text)
