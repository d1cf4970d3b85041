"""Tests for hook prompt context."""

import pytest

from cmdgate.hook.context import (
    MAX_EXCERPT_CHARS,
    PROMPT_INSTRUCTIONS,
    ErrorContext,
    build_prompt,
    context_relevance,
    environment_context,
    likely_intended,
)
from cmdgate.hook.error_classifier import ErrorCategory


class TestErrorContext:
    """Raw input reconstruction."""

    def test_raw_input(self):
        context = ErrorContext(command="gti", args=("status", "-s"))
        assert context.raw_input == "gti status -s"

    def test_raw_input_without_args(self):
        assert ErrorContext(command="lss").raw_input == "lss"


class TestContextRelevance:
    """Relatedness of two command lines."""

    @pytest.mark.parametrize("current,previous,expected", [
        ("git push", "git commit -m x", 0.8),
        ("gitk", "git log", 0.8),
        ("docker ps", "ls -la", 0.2),
        ("", "ls", 0.0),
        ("ls", "   ", 0.0),
    ])
    def test_relevance(self, current, previous, expected):
        assert context_relevance(current, previous) == expected


class TestLikelyIntended:
    """Recent similar commands close to the input."""

    def test_close_match(self):
        context = ErrorContext(command="git", args=("stauts",), recent_similar="git status")
        assert likely_intended(context) == "git status"

    def test_distant_match(self):
        context = ErrorContext(command="make", recent_similar="git status")
        assert likely_intended(context) is None

    def test_no_history(self):
        assert likely_intended(ErrorContext(command="git")) is None


class TestBuildPrompt:
    """The user message sent to the engine."""

    def test_minimal(self):
        prompt = build_prompt(ErrorContext(command="lss"), ErrorCategory.UNKNOWN)
        lines = prompt.split("\n")
        assert lines[0] == "User attempted to run command: lss"
        assert "Error analysis: unknown - The failure cause is unclear." in lines
        assert "Mode: Reactive suggestion (after the command failed)" in lines
        assert prompt.endswith(PROMPT_INSTRUCTIONS)

    def test_full_context(self):
        context = ErrorContext(
            command="git",
            args=("stauts",),
            exit_code=1,
            stderr="git: 'stauts' is not a git command.",
            current_directory="/work/app",
            user_context="zsh",
            last_command="git add .",
            recent_similar="git status",
        )
        prompt = build_prompt(context, ErrorCategory.SYNTAX_ERROR)
        assert "With arguments: stauts" in prompt
        assert "Exit code: 1" in prompt
        assert "Shell error: git: 'stauts' is not a git command." in prompt
        assert "Current directory: /work/app" in prompt
        assert "User context: zsh" in prompt
        assert "Previous command: git add . (likely related)" in prompt
        assert "Recent similar command: git status" in prompt
        assert "Likely intended: git status" in prompt

    def test_unrelated_previous_command(self):
        context = ErrorContext(command="docker", args=("ps",), last_command="ls -la")
        prompt = build_prompt(context, ErrorCategory.UNKNOWN)
        assert "Previous command: ls -la\n" in prompt

    def test_blank_output_omitted(self):
        prompt = build_prompt(ErrorContext(command="x", stderr="  \n", stdout=""), ErrorCategory.UNKNOWN)
        assert "Shell error" not in prompt
        assert "Output:" not in prompt

    def test_long_output_excerpted(self):
        context = ErrorContext(command="x", stderr="e" * (MAX_EXCERPT_CHARS * 2))
        prompt = build_prompt(context, ErrorCategory.UNKNOWN)
        assert "e" * MAX_EXCERPT_CHARS + "..." in prompt
        assert "e" * (MAX_EXCERPT_CHARS + 1) not in prompt

    def test_preexec_mode(self):
        prompt = build_prompt(ErrorContext(command="x", preexec_mode=True), ErrorCategory.UNKNOWN)
        assert "Mode: Proactive suggestion (before execution)" in prompt


class TestEnvironmentContext:
    """Structured environment facts."""

    def test_uses_context_directory(self):
        info = environment_context(ErrorContext(command="x", current_directory="/srv", exit_code=2))
        assert info["working_directory"] == "/srv"
        assert info["exit_code"] == 2

    def test_without_context(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        info = environment_context()
        assert info["working_directory"] == str(tmp_path)
        assert "exit_code" not in info
