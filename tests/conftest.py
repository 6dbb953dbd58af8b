"""Shared fixtures for agentgate tests."""

import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from agentgate.context import ContextStore
from agentgate.core import ApprovalDecision, RiskLevel
from agentgate.engine import ExecutionEngine
from agentgate.policy import default_policy
from agentgate.sandbox import SandboxSelector
from agentgate.selfmod import SelfModificationController
from agentgate.vcs import GitRepository

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


class ScriptedGate:
    """Approval gate that replays a fixed list of decisions."""

    def __init__(self, *decisions: ApprovalDecision):
        self.decisions = list(decisions)
        self.calls: list[tuple[str, RiskLevel]] = []

    def confirm(self, description: str, risk: RiskLevel) -> ApprovalDecision:
        self.calls.append((description, risk))
        if not self.decisions:
            raise AssertionError(f"unexpected approval request: {description}")
        return self.decisions.pop(0)


def init_git(path: Path) -> GitRepository:
    """Turn a directory into a git repository with one initial commit."""
    def git(*args):
        subprocess.run(["git", *args], cwd=path, check=True, capture_output=True)

    git("init", "-q")
    git("config", "user.email", "test@example.com")
    git("config", "user.name", "Test")
    git("config", "commit.gpgsign", "false")
    (path / ".gitignore").write_text(".agentgate/\n")
    git("add", ".")
    git("commit", "-q", "-m", "initial")
    return GitRepository(path)


def git_output(path: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=path, check=True, capture_output=True, text=True)
    return result.stdout


def commit_count(path: Path) -> int:
    return int(git_output(path, "rev-list", "--count", "HEAD").strip())


def make_engine(workspace: Path, gate, policy=None, repo=None, source_roots=(), **kwargs) -> ExecutionEngine:
    """Engine wired for tests: unconfined backend, built-in policy."""
    return ExecutionEngine(
        context=ContextStore(workspace),
        policy=policy or default_policy(),
        sandbox=SandboxSelector(workspace, backend="none"),
        gate=gate,
        controller=SelfModificationController(source_roots),
        repo=repo,
        **kwargs,
    )


@pytest.fixture
def workspace():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td).resolve()


@pytest.fixture
def git_workspace(workspace):
    """Temporary project directory that is a git repository."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    (workspace / "app.txt").write_text("a=1\nb=2\n")
    repo = init_git(workspace)
    return workspace, repo
