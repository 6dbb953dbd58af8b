"""Tests for the policy engine."""

import pytest

from agentgate.core import PolicyAction
from agentgate.errors import ConfigError, PolicyViolation
from agentgate.policy import PolicyEngine, PolicyRule, default_policy, policy_from_config, split_segments


class TestPolicyEngine:
    """Tests for PolicyEngine evaluation order."""

    def test_exact_fast_path(self):
        """Test that a literal rule is served from the exact table."""
        engine = PolicyEngine().deny("l*").allow("ls", exact=True)
        decision = engine.evaluate("ls")

        assert decision.allowed
        assert decision.matched_by == "exact"

    def test_first_pattern_wins(self):
        """Test that overlapping patterns resolve by declaration order."""
        engine = PolicyEngine().deny("rm *").allow("*")

        assert not engine.evaluate("rm -rf /").allowed
        assert engine.evaluate("make build").allowed

        reordered = PolicyEngine().allow("*").deny("rm *")
        assert reordered.evaluate("rm -rf /").allowed

    def test_default_deny(self):
        """Test that unmatched commands fall back to deny."""
        decision = PolicyEngine().allow("ls *").evaluate("curl example.com")

        assert not decision.allowed
        assert decision.matched_by == "default"

    def test_default_allow_when_configured(self):
        engine = PolicyEngine(default=PolicyAction.ALLOW).deny("rm *")

        assert engine.evaluate("make").allowed
        assert not engine.evaluate("rm x").allowed

    def test_compound_any_denied_segment_denies(self):
        """Test that every segment of a compound line must be allowed."""
        engine = PolicyEngine().allow("ls *").allow("echo *").deny("rm *")

        assert engine.evaluate("ls -la && echo done").allowed
        decision = engine.evaluate("ls -la; rm -rf /")
        assert not decision.allowed
        assert decision.segment == "rm -rf /"
        assert not engine.evaluate("echo hi | rm x").allowed
        assert not engine.evaluate("ls & rm x").allowed

    def test_line_breaks_split_segments(self):
        """Test that every line of a multi-line command is evaluated on its own."""
        engine = default_policy()

        for command in ("ls\nrm -rf victim", "ls\r\nrm -rf victim", "ls # note\nrm -rf victim"):
            decision = engine.evaluate(command)
            assert not decision.allowed, command
            assert decision.segment == "rm -rf victim"

        assert engine.evaluate("ls\necho done").allowed

    def test_newline_inside_quotes_does_not_split(self):
        assert default_policy().evaluate("echo 'a\nb'").allowed

    def test_subshell_segments_evaluated(self):
        decision = default_policy().evaluate("(rm -rf victim)")
        assert not decision.allowed
        assert decision.segment == "rm -rf victim"

    def test_output_redirection_needs_explicit_rule(self):
        """Test that a broad allow does not cover writing into a file."""
        engine = default_policy()

        for command in ("echo x > notes.txt", "cat a >> b", "ls &> out.log"):
            decision = engine.evaluate(command)
            assert not decision.allowed, command
            assert decision.matched_by == "default"
            assert "redirection" in decision.reason

        assert engine.evaluate("ls missing 2>&1").allowed
        assert engine.evaluate("cat < input.txt").allowed

        explicit = PolicyEngine().allow("echo * > *")
        assert explicit.evaluate("echo x > notes.txt").allowed

    def test_redirection_still_hits_deny_rules(self):
        decision = default_policy().evaluate("rm -rf build > log.txt")
        assert not decision.allowed
        assert decision.matched_by == "pattern"

    def test_operators_inside_quotes_do_not_split(self):
        engine = PolicyEngine().allow("echo *")
        assert engine.evaluate("echo 'a; rm -rf /'").allowed

    def test_command_substitution_denied(self):
        """Test that substitution is denied regardless of rules."""
        engine = PolicyEngine(default=PolicyAction.ALLOW)

        for command in ("echo $(rm -rf /)", "echo `id`"):
            decision = engine.evaluate(command)
            assert not decision.allowed
            assert decision.matched_by == "syntax"

    def test_unbalanced_quotes_denied(self):
        engine = PolicyEngine(default=PolicyAction.ALLOW)
        assert not engine.evaluate("echo 'oops").allowed

    def test_empty_command_denied(self):
        assert not PolicyEngine(default=PolicyAction.ALLOW).evaluate("   ").allowed

    def test_regex_rules(self):
        """Test full-match regular expression rules."""
        engine = PolicyEngine().allow(r"pytest( -q)?", syntax="regex")

        assert engine.evaluate("pytest").allowed
        assert engine.evaluate("pytest -q").allowed
        assert not engine.evaluate("pytest -q; id").allowed
        assert not engine.evaluate("pytest -x").allowed

    def test_rule_order_indices(self):
        engine = PolicyEngine().deny("a").allow("b", exact=True)
        assert [rule.order for rule in engine.rules] == [0, 1]

    def test_check_raises(self):
        """Test that check turns a deny into PolicyViolation."""
        engine = PolicyEngine().deny("rm *", message="no deleting")

        with pytest.raises(PolicyViolation) as exc_info:
            engine.check("rm -rf build")

        assert exc_info.value.reason == "no deleting"
        assert "Command denied by policy" in str(exc_info.value)

    def test_replace(self):
        engine = PolicyEngine().allow("ls", exact=True)
        engine.replace(PolicyEngine().allow("pwd", exact=True))

        assert engine.evaluate("pwd").allowed
        assert not engine.evaluate("ls").allowed

    def test_describe(self):
        text = PolicyEngine().deny("rm *").describe()
        assert "1 rule(s)" in text
        assert "deny glob 'rm *'" in text


class TestPolicyRule:
    """Tests for PolicyRule validation."""

    def test_invalid_regex(self):
        with pytest.raises(ConfigError):
            PolicyRule(pattern="(", action=PolicyAction.ALLOW, syntax="regex")

    def test_unknown_syntax(self):
        with pytest.raises(ConfigError):
            PolicyRule(pattern="ls", action=PolicyAction.ALLOW, syntax="sql")


class TestDefaultPolicy:
    """Tests for the built-in rules."""

    def test_common_reads_allowed(self):
        engine = default_policy()
        for command in ("ls", "pwd", "git status", "cat README.md", "echo hi", "git log --oneline"):
            assert engine.evaluate(command).allowed, command

    def test_dangerous_commands_denied(self):
        engine = default_policy()
        for command in ("rm -rf /", "sudo ls", "chmod 777 x", "git push --force origin main", "curl x"):
            assert not engine.evaluate(command).allowed, command


class TestPolicyFromConfig:
    """Tests for policy_from_config."""

    def test_rules_parsed_in_order(self):
        engine = policy_from_config(
            {
                "default": "deny",
                "rules": [
                    {"pattern": "make clean", "action": "deny"},
                    {"pattern": "make *", "action": "allow"},
                    {"pattern": "pwd", "action": "allow", "exact": True},
                ],
            }
        )

        assert not engine.evaluate("make clean").allowed
        assert engine.evaluate("make test").allowed
        assert engine.evaluate("pwd").matched_by == "exact"

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"default": "maybe"},
            {"rules": "ls"},
            {"rules": [{"action": "allow"}]},
            {"rules": [{"pattern": "ls", "action": "sometimes"}]},
        ],
    )
    def test_malformed(self, data):
        with pytest.raises(ConfigError):
            policy_from_config(data)


def test_split_segments():
    segments = split_segments("ls -la && echo 'a b' | wc -l\necho x > out.txt")

    assert [segment.text for segment in segments] == ["ls -la", "echo a b", "wc -l", "echo x > out.txt"]
    assert [segment.writes_file for segment in segments] == [False, False, False, True]
