"""Prompt context for the shell-failure hook.

Collects what the shell reported about a failure and turns it into the
user message sent to the suggestion engine.
"""

import getpass
import os
import platform
from dataclasses import dataclass
from typing import Any

from cmdgate.hook.admission import similarity
from cmdgate.hook.error_classifier import CATEGORY_HINTS, ErrorCategory

# Recent command similar enough to be named as the likely intent
LIKELY_INTENDED_SIMILARITY = 0.7

# Output excerpts included in the prompt
MAX_EXCERPT_CHARS = 1000

PROMPT_INSTRUCTIONS = """\
Based on this context, suggest the single command the user most likely intended to run. Consider:
1. Possible typos or misspellings
2. Missing package installations
3. Alternative commands that accomplish the same goal
4. Context from previous commands
5. Current directory relevance

Respond with a JSON object in exactly this format:
{
  "command": "the suggested command",
  "explanation": "brief explanation of why this command is suggested",
  "auto_execute": false
}

Do not include any other text or formatting, just the JSON object."""


@dataclass(frozen=True)
class ErrorContext:
    """What the shell reported about one failed input.

    Attributes:
        command: Program name the user typed.
        args: Remaining words.
        exit_code: Exit code, None for failures without one.
        stderr: Captured standard error, if the shell captured it.
        stdout: Captured standard output.
        current_directory: Working directory of the failing shell.
        user_context: Free-form note from the shell integration.
        last_command: Previous command in the shell history.
        recent_similar: A recent history entry resembling this input.
        preexec_mode: True when called before execution rather than after
            a failure.
    """

    command: str
    args: tuple[str, ...] = ()
    exit_code: int | None = None
    stderr: str = ""
    stdout: str = ""
    current_directory: str | None = None
    user_context: str | None = None
    last_command: str | None = None
    recent_similar: str | None = None
    preexec_mode: bool = False

    @property
    def raw_input(self) -> str:
        """The input line as the user typed it."""
        return " ".join([self.command, *self.args]).strip()


def context_relevance(current: str, previous: str) -> float:
    """How related two command lines look, judged by their first words.

    0.8 when the current program starts with the previous one's first three
    characters, 0.6 when both share a three-character prefix the other way
    round, 0.2 otherwise, 0.0 when either is empty.
    """
    current_parts = current.split()
    previous_parts = previous.split()
    if not current_parts or not previous_parts:
        return 0.0

    current_base, previous_base = current_parts[0], previous_parts[0]
    if current_base.startswith(previous_base[:3]):
        return 0.8
    if len(current_base) >= 3 and len(previous_base) >= 3 and current_base[:3] == previous_base[:3]:
        return 0.6
    return 0.2


def likely_intended(context: ErrorContext) -> str | None:
    """The recent similar command, when it is close enough to the input."""
    if not context.recent_similar:
        return None
    if similarity(context.raw_input, context.recent_similar) > LIKELY_INTENDED_SIMILARITY:
        return context.recent_similar
    return None


def _excerpt(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_EXCERPT_CHARS:
        return text[:MAX_EXCERPT_CHARS] + "..."
    return text


def build_prompt(context: ErrorContext, category: ErrorCategory) -> str:
    """Build the user message for the suggestion engine."""
    parts = [f"User attempted to run command: {context.command}"]
    if context.args:
        parts.append(f"With arguments: {' '.join(context.args)}")
    if context.exit_code is not None:
        parts.append(f"Exit code: {context.exit_code}")
    if context.stderr.strip():
        parts.append(f"Shell error: {_excerpt(context.stderr)}")
    if context.stdout.strip():
        parts.append(f"Output: {_excerpt(context.stdout)}")
    if context.current_directory:
        parts.append(f"Current directory: {context.current_directory}")
    if context.user_context:
        parts.append(f"User context: {context.user_context}")
    if context.last_command:
        line = f"Previous command: {context.last_command}"
        if context_relevance(context.raw_input, context.last_command) >= 0.6:
            line += " (likely related)"
        parts.append(line)
    if context.recent_similar:
        parts.append(f"Recent similar command: {context.recent_similar}")

    parts.append(f"Error analysis: {category.value} - {CATEGORY_HINTS[category]}")
    intended = likely_intended(context)
    if intended:
        parts.append(f"Likely intended: {intended}")

    if context.preexec_mode:
        parts.append("Mode: Proactive suggestion (before execution)")
    else:
        parts.append("Mode: Reactive suggestion (after the command failed)")

    return "\n".join(parts) + "\n\n" + PROMPT_INSTRUCTIONS


def environment_context(context: ErrorContext | None = None) -> dict[str, Any]:
    """Structured environment facts for engines that take fields."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = None

    info: dict[str, Any] = {
        "working_directory": (context.current_directory if context else None) or os.getcwd(),
        "user": user,
        "shell": os.environ.get("SHELL"),
        "home": os.path.expanduser("~"),
        "os": platform.system(),
    }
    if context is not None:
        info["exit_code"] = context.exit_code
    return info
