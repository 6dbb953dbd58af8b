"""Tests for the external collaborator boundaries."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from agentgate.collaborators import (
    AnthropicCommitMessageGenerator,
    CommitMessageGenerator,
    EmptyAgentDirectory,
    InMemoryNotes,
    default_commit_generator,
    fallback_commit_message,
)
from agentgate.errors import NotFound


def fake_client(text):
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(content=[SimpleNamespace(text=text)])
    return client


class TestAnthropicCommitMessageGenerator:
    """Tests for the Anthropic-backed generator."""

    def test_generate(self):
        client = fake_client('"feat: add widget"\n\nlonger body')
        generator = AnthropicCommitMessageGenerator(model="test-model", client=client)

        message = generator.generate("add a widget", "diff --git a/x b/x")

        assert message == "feat: add widget"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 100
        prompt = kwargs["messages"][0]["content"]
        assert "Original request: add a widget" in prompt
        assert "diff --git a/x b/x" in prompt

    def test_empty_reply_raises(self):
        generator = AnthropicCommitMessageGenerator(client=fake_client("  "))
        with pytest.raises(ValueError):
            generator.generate("x", "diff")

    def test_satisfies_protocol(self):
        assert isinstance(AnthropicCommitMessageGenerator(client=MagicMock()), CommitMessageGenerator)


class TestDefaultCommitGenerator:
    """Tests for default_commit_generator."""

    def test_without_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert default_commit_generator() is None

    def test_with_api_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        generator = default_commit_generator("some-model")

        assert isinstance(generator, AnthropicCommitMessageGenerator)
        assert generator.model == "some-model"


def test_fallback_commit_message():
    assert fallback_commit_message("fix  the\nbug") == "Auto-commit: fix the bug"
    assert fallback_commit_message("") == "Auto-commit: apply approved edits"


class TestEmptyAgentDirectory:
    """Tests for the default agent backend."""

    def test_no_agents(self):
        agents = EmptyAgentDirectory()
        assert agents.list_agents() == []
        with pytest.raises(NotFound):
            agents.delegate("reviewer", "look at this")


class TestInMemoryNotes:
    """Tests for the default memory backend."""

    def test_notes(self):
        notes = InMemoryNotes()
        assert notes.show() == "Memory is empty."

        notes.add("Use tabs")
        notes.add("Run pytest")

        assert notes.show() == "1. Use tabs\n2. Run pytest"
        assert notes.search("TABS") == ["Use tabs"]
