"""Tests for configuration loading."""

import json

import pytest

from agentgate.config import GateConfig, load_config, load_policy
from agentgate.errors import ConfigError
from agentgate.paths import PACKAGE_ROOT


def write_config(workspace, payload):
    path = workspace / "agentgate.json"
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, workspace):
        """Test that a missing default file gives built-in settings."""
        config = load_config(workspace=workspace)

        assert isinstance(config, GateConfig)
        assert config.workspace == workspace
        assert config.sandbox_profile == "development"
        assert config.sandbox_backend == "auto"
        assert config.approval_mode == "interactive"
        assert config.policy_error is None
        assert config.policy.evaluate("ls").allowed
        assert config.source_roots == [PACKAGE_ROOT]

    def test_explicit_missing_file(self, workspace):
        with pytest.raises(ConfigError, match="not found"):
            load_config(workspace / "nope.json", workspace)

    def test_sections(self, workspace):
        path = write_config(
            workspace,
            {
                "sandbox": {"profile": "read-only", "backend": "none"},
                "execution": {"timeout": 5, "max_output_chars": 100, "max_results": 3},
                "approval": {"mode": "reject"},
                "commit": {"enabled": False, "model": "some-model"},
                "self": {"source_roots": ["tool"], "config_files": "tool.json"},
            },
        )

        config = load_config(path, workspace)

        assert config.path == path
        assert config.sandbox_profile == "read_only"
        assert config.sandbox_backend == "none"
        assert config.timeout == 5.0
        assert config.max_output_chars == 100
        assert config.max_results == 3
        assert config.approval_mode == "reject"
        assert config.auto_commit is False
        assert config.commit_model == "some-model"
        assert config.source_roots == [workspace / "tool"]
        assert config.config_files == [workspace / "tool.json"]

    def test_policy_section(self, workspace):
        path = write_config(workspace, {"policy": {"rules": [{"pattern": "make *", "action": "allow"}]}})
        config = load_config(path, workspace)

        assert config.policy.evaluate("make test").allowed
        assert not config.policy.evaluate("ls").allowed

    def test_malformed_json_fails_closed(self, workspace):
        """Test that a broken file denies every command."""
        path = write_config(workspace, "{broken")
        config = load_config(path, workspace)

        assert config.policy_error is not None
        assert config.policy.rules == []
        assert not config.policy.evaluate("ls").allowed

    def test_bad_policy_fails_closed(self, workspace):
        path = write_config(workspace, {"policy": {"rules": [{"pattern": "(", "action": "allow", "syntax": "regex"}]}})
        config = load_config(path, workspace)

        assert "Invalid pattern" in config.policy_error
        assert not config.policy.evaluate("ls").allowed

    @pytest.mark.parametrize(
        "payload",
        [
            {"sandbox": {"profile": "everything"}},
            {"sandbox": {"backend": "docker"}},
            {"sandbox": "none"},
            {"execution": {"timeout": 0}},
            {"execution": {"timeout": "soon"}},
            {"approval": {"mode": "auto"}},
            {"self": {"source_roots": 3}},
        ],
    )
    def test_invalid_sections(self, workspace, payload):
        path = write_config(workspace, payload)
        with pytest.raises(ConfigError):
            load_config(path, workspace)


class TestLoadPolicy:
    """Tests for load_policy."""

    def test_reads_policy(self, workspace):
        path = write_config(workspace, {"policy": {"default": "allow", "rules": []}})
        assert load_policy(path).evaluate("anything").allowed

    def test_invalid_json(self, workspace):
        path = write_config(workspace, "[]")
        with pytest.raises(ConfigError):
            load_policy(path)
