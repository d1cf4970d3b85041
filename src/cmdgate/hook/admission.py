"""Admission filter for the shell-failure hook.

Decides whether a failed or unrecognized shell input is worth a suggestion
request at all. Checks run in a fixed order and the first failing one wins:
length bounds, excluded patterns, URL shape, likely typo.
"""

import re
from dataclasses import dataclass
from enum import Enum

from cmdgate.config import HookConfig

# Commands a typo is most likely aimed at
KNOWN_COMMANDS: tuple[str, ...] = (
    "ls", "cd", "pwd", "cat", "echo", "grep", "find", "git", "vim", "nano",
    "cp", "mv", "mkdir", "rmdir", "touch", "head", "tail", "sort", "uniq",
    "less", "more", "make", "man", "ps", "top", "kill", "which", "clear",
    "history", "export", "source", "ssh", "scp", "curl", "wget", "tar",
    "unzip", "diff", "sed", "awk", "chmod", "chown", "docker", "kubectl",
    "python", "python3", "pip", "npm", "node", "yarn", "cargo", "brew",
    "code", "exit",
)

URL_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9+.-]*://")


class SkipReason(Enum):
    """Why an input did not reach the suggestion engine."""

    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    EXCLUDED = "excluded"
    LOOKS_LIKE_URL = "looks_like_url"
    LIKELY_TYPO = "likely_typo"
    DISABLED = "disabled"
    RECURSION = "recursion"


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of the admission checks.

    Attributes:
        proceed: Whether the input may go to the suggestion engine.
        skip_reason: The first check that failed, when not proceeding.
        correction: For LIKELY_TYPO, the input with the typo fixed.
        detail: Human-readable explanation.
    """

    proceed: bool
    skip_reason: SkipReason | None = None
    correction: str | None = None
    detail: str = ""

    @classmethod
    def admit(cls) -> "AdmissionDecision":
        return cls(proceed=True, detail="admitted")

    @classmethod
    def skip(cls, reason: SkipReason, detail: str, correction: str | None = None) -> "AdmissionDecision":
        return cls(proceed=False, skip_reason=reason, correction=correction, detail=detail)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit-cost insert, delete and substitute."""
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,  # deletion
                current[j - 1] + 1,  # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1.0 for equal strings, falling towards 0.0 as edits accumulate."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / longest


def typo_threshold(word: str) -> int:
    """Edits tolerated before a word stops counting as a typo."""
    return len(word) // 4


class AdmissionFilter:
    """Gate in front of the suggestion engine.

    Example:
        decision = AdmissionFilter(config).evaluate("catt notes.txt")
        decision.skip_reason  # SkipReason.LIKELY_TYPO
        decision.correction   # "cat notes.txt"
    """

    def __init__(self, config: HookConfig, known_commands: tuple[str, ...] = KNOWN_COMMANDS):
        self.config = config
        self.known_commands = known_commands
        self._excluded = sorted(config.excluded_patterns)

    def evaluate(self, raw: str) -> AdmissionDecision:
        """Run the admission checks on a raw input line."""
        text = raw.strip()

        if len(text) < self.config.min_length:
            return AdmissionDecision.skip(
                SkipReason.TOO_SHORT,
                f"shorter than {self.config.min_length} characters",
            )
        if len(text) > self.config.max_length:
            return AdmissionDecision.skip(
                SkipReason.TOO_LONG,
                f"longer than {self.config.max_length} characters",
            )

        pattern = self.excluded_pattern(text)
        if pattern is not None:
            return AdmissionDecision.skip(SkipReason.EXCLUDED, f"matches excluded pattern '{pattern}'")

        if URL_PATTERN.search(text):
            return AdmissionDecision.skip(SkipReason.LOOKS_LIKE_URL, "looks like a URL")

        correction = self.correct_typo(text)
        if correction is not None:
            return AdmissionDecision.skip(
                SkipReason.LIKELY_TYPO,
                f"likely a typo of '{correction.split()[0]}'",
                correction=correction,
            )

        return AdmissionDecision.admit()

    def excluded_pattern(self, text: str) -> str | None:
        """The first excluded pattern found anywhere in the input, case-sensitive."""
        return next((pattern for pattern in self._excluded if pattern in text), None)

    def correct_typo(self, text: str) -> str | None:
        """Input with its first word replaced by the closest known command.

        Returns None when the first word is itself known or no known command
        is within the word's typo threshold.
        """
        parts = text.split(maxsplit=1)
        if not parts:
            return None
        word = parts[0]
        if word in self.known_commands:
            return None

        threshold = typo_threshold(word)
        if threshold < 1:
            return None

        best: tuple[int, str] | None = None
        for known in self.known_commands:
            if abs(len(known) - len(word)) > threshold:
                continue
            distance = edit_distance(word, known)
            if 1 <= distance <= threshold and (best is None or distance < best[0]):
                best = (distance, known)

        if best is None:
            return None
        return " ".join([best[1], *parts[1:]])
