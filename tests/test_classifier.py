"""Tests for command block parsing and classification."""

import pytest

from agentgate.classifier import assess_risk, classify, parse_command_blocks, shell_text, split_verb
from agentgate.core import AutonomyClass, CommandCategory, RiskLevel
from agentgate.edits import parse_edit_blocks
from agentgate.errors import ParseError


class TestParseCommandBlocks:
    """Tests for parse_command_blocks."""

    def test_bash_block(self):
        """Test that every non-empty line of a bash fence is a command."""
        response = "Run these:\n```bash\nls -la\n\npwd\n```\n"
        parsed = parse_command_blocks(response)

        assert parsed.commands == ["ls -la", "pwd"]
        assert parsed.errors == []

    def test_all_command_languages(self):
        """Test the sh and command fence tags."""
        response = "```sh\necho 1\n```\n```command\n/show_context\n```\n"
        assert parse_command_blocks(response).commands == ["echo 1", "/show_context"]

    def test_other_languages_ignored(self):
        """Test that python and untagged fences are not commands."""
        response = "```python\nimport os\n```\n```\nrm -rf /\n```\n```bash\nls\n```\n"
        assert parse_command_blocks(response).commands == ["ls"]

    def test_comment_lines_skipped(self):
        """Test that shell comments are not proposed as commands."""
        response = "```bash\n# list files\nls\n```\n"
        assert parse_command_blocks(response).commands == ["ls"]

    def test_unterminated_block(self):
        """Test that an open fence produces a ParseError and no commands."""
        parsed = parse_command_blocks("```bash\nrm -rf build\n")

        assert parsed.commands == []
        assert "Unterminated" in str(parsed.errors[0])

    def test_fence_inside_edit_block_excluded(self):
        """Test that fences quoted inside an edit block are not executed."""
        response = (
            "README.md\n"
            "<<<<<<< SEARCH\n"
            "old\n"
            "=======\n"
            "```bash\n"
            "make install\n"
            "```\n"
            ">>>>>>> REPLACE\n"
            "```bash\n"
            "ls\n"
            "```\n"
        )
        edits = parse_edit_blocks(response)
        parsed = parse_command_blocks(response, exclude=edits.spans)

        assert parsed.commands == ["ls"]


class TestClassify:
    """Tests for classify."""

    @pytest.mark.parametrize(
        "raw, category",
        [
            ("/add_file src/app.py", CommandCategory.CONTEXT),
            ("/show_context", CommandCategory.CONTEXT),
            ("/agents", CommandCategory.AGENT),
            ("/security", CommandCategory.SECURITY),
            ("/memory search foo", CommandCategory.MEMORY),
            ("/sandbox", CommandCategory.SECURITY),
            ("/config", CommandCategory.SECURITY),
            ("/config show", CommandCategory.SECURITY),
            ("/run make test", CommandCategory.EXECUTION),
            ("ls -la", CommandCategory.EXECUTION),
            ("/git_status", CommandCategory.VERSION_CONTROL),
            ("git log --oneline", CommandCategory.VERSION_CONTROL),
            ("/sandbox read_only", CommandCategory.CONFIGURATION),
            ("/approval reject", CommandCategory.CONFIGURATION),
            ("/config reload", CommandCategory.CONFIGURATION),
        ],
    )
    def test_categories(self, raw, category):
        """Test the category of each verb family."""
        assert classify(raw).category is category

    def test_autonomy_follows_category(self):
        """Test that autonomy is derived from the category table."""
        assert classify("/show_context").autonomy is AutonomyClass.AUTONOMOUS
        assert not classify("/show_context").requires_approval
        assert classify("ls").autonomy is AutonomyClass.APPROVAL_REQUIRED
        assert classify("/git_commit msg").requires_approval

    def test_unknown_verb(self):
        """Test that an unknown control verb is a parse error."""
        with pytest.raises(ParseError, match="Unknown command: /frobnicate"):
            classify("/frobnicate now")

    def test_missing_argument(self):
        """Test that verbs needing an argument reject an empty one."""
        with pytest.raises(ParseError, match="usage: /run COMMAND"):
            classify("/run")
        with pytest.raises(ParseError, match="usage: /add_file PATH"):
            classify("/add_file   ")

    def test_empty_command(self):
        with pytest.raises(ParseError):
            classify("   ")

    def test_verb_and_argument(self):
        """Test that the verb and argument are recorded."""
        request = classify("  /add_file  src/app.py ")
        assert request.verb == "/add_file"
        assert request.argument == "src/app.py"
        assert request.raw == "/add_file  src/app.py"

    def test_split_verb(self):
        assert split_verb("/run ls -la") == ("/run", "ls -la")
        assert split_verb("ls -la") == (None, "ls -la")


class TestShellText:
    """Tests for shell_text."""

    def test_plain_line(self):
        assert shell_text(classify("ls -la")) == "ls -la"

    def test_run_verbs(self):
        assert shell_text(classify("/run make test")) == "make test"
        assert shell_text(classify("/run_add pytest -q")) == "pytest -q"

    def test_git_verbs(self):
        """Test that git verbs map to the git command they stand for."""
        assert shell_text(classify("/git_add")) == "git add ."
        assert shell_text(classify("/git_add src")) == "git add src"
        assert shell_text(classify("/git_status")) == "git status"
        assert shell_text(classify("/git_diff")) == "git diff"
        assert shell_text(classify("/git_commit fix bug")) == "git commit -m 'fix bug'"

    def test_non_spawning_verbs(self):
        assert shell_text(classify("/show_context")) is None
        assert shell_text(classify("/sandbox minimal")) is None


class TestAssessRisk:
    """Tests for assess_risk."""

    def test_levels(self):
        assert assess_risk("ls -la") is RiskLevel.LOW
        assert assess_risk("mkdir build") is RiskLevel.MEDIUM
        assert assess_risk("git push --force") is RiskLevel.HIGH
        assert assess_risk("rm -rf build") is RiskLevel.CRITICAL

    def test_risk_attached_to_request(self):
        """Test that classification stores the risk of the spawned line."""
        assert classify("/run sudo reboot").risk is RiskLevel.CRITICAL
