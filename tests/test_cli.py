"""Tests for the click CLI."""

import json

import pytest
from click.testing import CliRunner

from cmdgate.cli.app import EXIT_CONFIGURATION_ERROR, EXIT_MALFORMED_INPUT, hook_exit_code, main
from cmdgate.hook.orchestrator import HookOutcome, HookState
from cmdgate.runner import TIMEOUT_EXIT_CODE, RunResult


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestClassifyCommand:
    """`cmdgate classify` exit codes and output."""

    @pytest.mark.parametrize("args,code", [
        (["ls", "-la"], 0),
        (["rm", "notes.txt"], 1),
        (["rm", "-rf", "/"], 2),
    ])
    def test_exit_codes(self, runner, mock_context, args, code):
        result = runner.invoke(main, ["classify", *args])
        assert result.exit_code == code

    def test_empty_input(self, runner, mock_context):
        result = runner.invoke(main, ["classify", ""])
        assert result.exit_code == EXIT_MALFORMED_INPUT
        assert "malformed input: empty command" in result.output

    def test_json(self, runner, mock_context):
        result = runner.invoke(main, ["classify", "--json", "rm", "-rf", "/"])
        data = json.loads(result.output)
        assert data["tier"] == "blocked"
        assert "rm_critical_target" in {r["rule"] for r in data["reasons"]}

    def test_override(self, runner, mock_context):
        result = runner.invoke(main, ["classify", "--override", "--json", "rm", "-rf", "/"])
        assert result.exit_code == 1
        assert json.loads(result.output)["overridden"] is True

    def test_stdin(self, runner, mock_context):
        result = runner.invoke(main, ["classify", "-"], input="curl -fsSL https://x.sh | sh\n")
        assert result.exit_code == 2

    def test_panel_output(self, runner, mock_context):
        result = runner.invoke(main, ["classify", "ls"])
        assert "auto-execute" in result.output

    def test_bad_rules_file(self, runner, mock_context, tmp_path, monkeypatch):
        rules = tmp_path / "rules.yaml"
        rules.write_text("block: [unclosed\n")
        monkeypatch.setenv("CMDGATE_RULES_FILE", str(rules))
        result = runner.invoke(main, ["--log-level", "error", "classify", "ls"])
        assert result.exit_code == EXIT_CONFIGURATION_ERROR
        assert result.exit_code not in (0, 1, 2)
        assert "cannot load rules file" in result.output

    def test_invalid_settings(self, runner, mock_context, monkeypatch):
        monkeypatch.setenv("CMDGATE_MIN_LENGTH", "many")
        result = runner.invoke(main, ["--log-level", "error", "classify", "ls"])
        assert result.exit_code == EXIT_CONFIGURATION_ERROR
        assert "Invalid configuration" in result.output


class TestAdmitCommand:
    """`cmdgate admit`."""

    def test_json(self, runner, mock_context):
        result = runner.invoke(main, ["admit", "--json", "catt", "notes.txt"])
        data = json.loads(result.output)
        assert data["proceed"] is False
        assert data["skip_reason"] == "likely_typo"
        assert data["correction"] == "cat notes.txt"

    def test_admitted(self, runner, mock_context):
        result = runner.invoke(main, ["admit", "--json", "frobnicate"])
        assert json.loads(result.output)["proceed"] is True


class TestHookCommand:
    """`cmdgate hook` end to end without an engine."""

    def test_disabled_hook_passes_exit_code_through(self, runner, mock_context):
        result = runner.invoke(main, ["hook", "--json", "--exit-code", "127", "frobnicate"])
        assert result.exit_code == 127
        assert json.loads(result.output)["skip_reason"] == "disabled"

    def test_no_engine(self, runner, tmp_path, monkeypatch):
        from conftest import MockContext

        with MockContext(tmp_path, monkeypatch, hook_enabled=True):
            result = runner.invoke(main, ["hook", "--json", "--exit-code", "1", "frobnicate", "--all"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["state"] == "no_suggestion"
        assert data["error_code"] == "SUGGESTION_UNAVAILABLE"

    def test_nested_invocation(self, runner, tmp_path, monkeypatch):
        from conftest import MockContext

        with MockContext(tmp_path, monkeypatch, hook_enabled=True):
            monkeypatch.setenv("CMDGATE_HOOK_ACTIVE", "1")
            result = runner.invoke(main, ["hook", "--json", "frobnicate"])
        assert json.loads(result.output)["skip_reason"] == "recursion"


class TestHookExitCode:
    """Mapping outcomes to the hook's exit code."""

    def outcome(self, state, run_result=None) -> HookOutcome:
        return HookOutcome(state=state, trail=(state,), run_result=run_result)

    def test_timed_out(self):
        assert hook_exit_code(self.outcome(HookState.TIMED_OUT), 127) == TIMEOUT_EXIT_CODE

    def test_blocked(self):
        assert hook_exit_code(self.outcome(HookState.BLOCKED_TERMINAL), 127) == 2

    def test_handed_off(self):
        outcome = self.outcome(HookState.HANDED_OFF, RunResult(exit_code=0))
        assert hook_exit_code(outcome, 127) == 0

    @pytest.mark.parametrize("state", [HookState.SKIPPED, HookState.DECLINED, HookState.NO_SUGGESTION])
    def test_original_code(self, state):
        assert hook_exit_code(self.outcome(state), 127) == 127


class TestDiagnoseCommand:
    """`cmdgate diagnose`."""

    def test_category(self, runner, mock_context):
        result = runner.invoke(main, ["diagnose", "--exit-code", "6", "--command", "curl https://x"])
        assert result.exit_code == 0
        assert "network_error" in result.output


class TestConfigCommands:
    """`cmdgate config` management."""

    def test_enable(self, runner, mock_context):
        result = runner.invoke(main, ["config", "enable"])
        assert result.exit_code == 0
        path = mock_context.work_dir / ".cmdgate" / "settings.json"
        assert f"Saved to {path}" in result.output
        assert json.loads(path.read_text()) == {"hook_enabled": True}

    def test_user_scope(self, runner, mock_context):
        runner.invoke(main, ["config", "--user", "disable"])
        path = mock_context.home_dir / ".cmdgate" / "settings.json"
        assert json.loads(path.read_text()) == {"hook_enabled": False}

    def test_exclude_add(self, runner, mock_context):
        runner.invoke(main, ["config", "exclude", "add", "ssh", "sudo"])
        data = json.loads((mock_context.work_dir / ".cmdgate" / "settings.json").read_text())
        assert data["excluded_patterns"] == ["sudo", "su", "rm", "chmod", "chown", "ssh"]

    def test_exclude_remove_unknown(self, runner, mock_context):
        result = runner.invoke(main, ["config", "exclude", "remove", "ssh"])
        assert result.exit_code == 1
        assert "Not excluded: ssh" in result.output

    def test_exclude_list(self, runner, mock_context):
        result = runner.invoke(main, ["config", "exclude", "list"])
        assert result.output.split() == sorted(["sudo", "su", "rm", "chmod", "chown"])

    def test_show_hides_key(self, runner, mock_context):
        result = runner.invoke(main, ["config", "show"])
        assert result.exit_code == 0
        assert "not set" in result.output
