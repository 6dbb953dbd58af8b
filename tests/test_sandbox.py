"""Tests for sandbox profiles, backends and spawning."""

import os
import sys
import tempfile
from pathlib import Path

import pytest

from agentgate.errors import ExecutionTimeout, SandboxFailure, SpawnError, UnknownProfile
from agentgate.sandbox import (
    PROFILE_NAMES,
    SYSTEM_READ_PATHS,
    BwrapBackend,
    SandboxInvocation,
    SandboxSelector,
    SeatbeltBackend,
    UnconfinedBackend,
    builtin_profile,
    resolve_backend,
    spawn,
    truncate,
)


class FailingBackend(UnconfinedBackend):
    """Confined backend whose wrapper always fails to set up."""

    name = "bwrap"
    confined = True

    def prefix(self, profile, workspace):
        return ["/bin/sh", "-c", "echo 'bwrap: setting up uid map: Permission denied' >&2; exit 1", "wrapper"]


def unconfined(workspace, profile="development"):
    return SandboxInvocation(builtin_profile(profile, workspace), UnconfinedBackend(), workspace)


class TestProfiles:
    """Tests for the built-in profiles."""

    def test_minimal(self, workspace):
        """Test that minimal reads system paths only and writes nothing."""
        profile = builtin_profile("minimal", workspace)

        assert workspace not in profile.read_paths
        assert profile.write_paths == []
        assert not profile.allow_network
        assert not profile.allow_subprocesses

    def test_read_only(self, workspace):
        profile = builtin_profile("read_only", workspace)

        assert workspace in profile.read_paths
        assert profile.write_paths == []
        assert profile.allow_subprocesses

    def test_development(self, workspace):
        """Test that development may write the workspace and temp dir."""
        profile = builtin_profile("development", workspace)

        assert workspace in profile.write_paths
        assert Path(tempfile.gettempdir()).resolve() in profile.write_paths
        assert not profile.allow_network

    def test_hyphenated_name(self, workspace):
        assert builtin_profile("read-only", workspace).name == "read_only"

    def test_unknown_profile(self, workspace):
        with pytest.raises(UnknownProfile, match="Available: minimal, read_only, development"):
            builtin_profile("custom", workspace)

    def test_describe(self, workspace):
        text = builtin_profile("minimal", workspace).describe()
        assert "Profile 'minimal'" in text
        assert "write:   (none)" in text


class TestBackends:
    """Tests for backend argv generation."""

    def test_bwrap_argv(self, workspace):
        """Test the bubblewrap prefix for the development profile."""
        profile = builtin_profile("development", workspace)
        argv = BwrapBackend().prefix(profile, workspace)

        assert argv[:3] == ["bwrap", "--die-with-parent", "--unshare-all"]
        assert "--share-net" not in argv
        assert ["--bind-try", str(workspace), str(workspace)] == argv[argv.index("--bind-try"):][:3]
        assert argv[-2:] == ["--chdir", str(workspace)]
        read_index = argv.index("--ro-bind-try")
        assert argv[read_index + 1] == SYSTEM_READ_PATHS[0]

    def test_bwrap_share_net(self, workspace):
        profile = builtin_profile("minimal", workspace)
        profile.allow_network = True
        assert "--share-net" in BwrapBackend().prefix(profile, workspace)

    def test_seatbelt_profile_text(self, workspace):
        """Test that the generated profile denies by default."""
        text = SeatbeltBackend().render(builtin_profile("read_only", workspace))

        assert "(deny default)" in text
        assert f'(allow file-read* (subpath "{workspace}"))' in text
        assert "file-write* (subpath" not in text
        assert "(allow process-fork)" in text
        assert "network-outbound" not in text

    def test_seatbelt_prefix(self, workspace):
        argv = SeatbeltBackend().prefix(builtin_profile("minimal", workspace), workspace)
        assert argv[:2] == ["sandbox-exec", "-p"]
        assert "(allow process-fork)" not in argv[2]

    def test_invocation_argv(self, workspace):
        invocation = unconfined(workspace)
        assert invocation.argv("ls -la") == ["/bin/sh", "-c", "ls -la"]

    def test_resolve_none(self):
        assert resolve_backend("none").confined is False

    def test_resolve_unknown(self):
        with pytest.raises(SandboxFailure, match="Unknown sandbox backend"):
            resolve_backend("docker")

    @pytest.mark.skipif(sys.platform == "darwin", reason="seatbelt exists on macOS")
    def test_resolve_unavailable(self):
        with pytest.raises(SandboxFailure, match="not available"):
            resolve_backend("seatbelt")


class TestSandboxSelector:
    """Tests for SandboxSelector."""

    def test_select_active_profile(self, workspace):
        selector = SandboxSelector(workspace, backend="none", profile="read_only")
        invocation = selector.select()

        assert invocation.profile.name == "read_only"
        assert invocation.backend.name == "none"

    def test_set_profile(self, workspace):
        selector = SandboxSelector(workspace, backend="none")
        selector.set_profile("minimal")

        assert selector.select().profile.name == "minimal"
        assert selector.select("development").profile.name == "development"

    def test_unknown_profile_at_construction(self, workspace):
        with pytest.raises(UnknownProfile):
            SandboxSelector(workspace, profile="everything")

    def test_unusable_backend_fails_on_select(self, workspace):
        """Test that backend errors surface when a command needs it."""
        selector = SandboxSelector(workspace, backend="docker")

        with pytest.raises(SandboxFailure):
            selector.select()


class TestSpawn:
    """Tests for spawn."""

    def test_captures_output(self, workspace):
        """Test stdout, stderr and exit code capture."""
        result = spawn(unconfined(workspace), "echo out; echo err >&2; exit 3")

        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert result.exit_code == 3
        assert not result.success
        assert result.profile == "development"

    def test_runs_in_workspace(self, workspace):
        result = spawn(unconfined(workspace), "pwd")
        assert Path(result.stdout.strip()).resolve() == workspace

    def test_timeout_kills_process(self, workspace):
        """Test that a timed-out command is dead when the error is raised."""
        with pytest.raises(ExecutionTimeout) as exc_info:
            spawn(unconfined(workspace), "echo $$ > pid.txt; exec sleep 30", timeout=0.5)

        result = exc_info.value.result
        assert result.timed_out
        assert result.duration < 10
        pid = int((workspace / "pid.txt").read_text().strip())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    def test_output_truncated(self, workspace):
        result = spawn(unconfined(workspace), "yes x | head -n 50 | tr -d '\\n'", max_output_chars=10)

        assert result.truncated
        assert result.stdout.startswith("x" * 10)
        assert "[truncated 40 chars]" in result.stdout

    def test_sandbox_setup_failure(self, workspace):
        """Test that a wrapper failure is reported as SandboxFailure."""
        invocation = SandboxInvocation(builtin_profile("minimal", workspace), FailingBackend(), workspace)

        with pytest.raises(SandboxFailure, match="could not confine"):
            spawn(invocation, "echo never")

    def test_spawn_error(self, workspace):
        invocation = unconfined(workspace)
        invocation.workspace = workspace / "missing"

        with pytest.raises(SpawnError):
            spawn(invocation, "true")


class TestTruncate:
    """Tests for truncate."""

    def test_short_text_untouched(self):
        assert truncate("abc", 10) == ("abc", False)

    def test_long_text(self):
        text, truncated = truncate("abcdef", 4)
        assert truncated
        assert text == "abcd\n... [truncated 2 chars]"

    def test_no_limit(self):
        assert truncate("abcdef", 0) == ("abcdef", False)


def test_profile_names():
    assert PROFILE_NAMES == ("minimal", "read_only", "development")
