"""Error classifier for failed shell commands.

Maps an exit code and captured output to one ErrorCategory. Rules are
ordered and the first match wins. The category only enriches the prompt
sent to the suggestion engine; it never changes a risk verdict.
"""

import posixpath
import shlex
from dataclasses import dataclass
from enum import Enum

# Output is lower-cased and cut to this many characters before matching
MAX_MATCH_CHARS = 4096


class ErrorCategory(Enum):
    """Category of a shell failure."""

    COMMAND_NOT_FOUND = "command_not_found"
    PERMISSION_DENIED = "permission_denied"
    FILE_NOT_FOUND = "file_not_found"
    SYNTAX_ERROR = "syntax_error"
    NETWORK_ERROR = "network_error"
    DISK_SPACE = "disk_space"
    CONFIGURATION_ERROR = "configuration_error"
    DEPENDENCY_MISSING = "dependency_missing"
    SERVICE_DOWN = "service_down"
    AUTHENTICATION_FAILED = "authentication_failed"
    TIMEOUT_ERROR = "timeout_error"
    UNKNOWN = "unknown"


# One-line hints added to the suggestion prompt
CATEGORY_HINTS: dict[ErrorCategory, str] = {
    ErrorCategory.COMMAND_NOT_FOUND: "The command does not exist; look for a typo or a package that provides it.",
    ErrorCategory.PERMISSION_DENIED: "The user lacks permission; suggest fixing ownership rather than escalating.",
    ErrorCategory.FILE_NOT_FOUND: "A path does not exist; check spelling and the working directory.",
    ErrorCategory.SYNTAX_ERROR: "The invocation is malformed; check options and argument order.",
    ErrorCategory.NETWORK_ERROR: "A network operation failed; check the host, DNS and connectivity.",
    ErrorCategory.DISK_SPACE: "The disk is full; suggest finding and freeing space.",
    ErrorCategory.CONFIGURATION_ERROR: "A configuration file is invalid; suggest locating and validating it.",
    ErrorCategory.DEPENDENCY_MISSING: "A library, module or binary is missing; suggest installing it.",
    ErrorCategory.SERVICE_DOWN: "A required service is not running; suggest checking or starting it.",
    ErrorCategory.AUTHENTICATION_FAILED: "Credentials were rejected; suggest re-authenticating.",
    ErrorCategory.TIMEOUT_ERROR: "The command timed out; suggest a longer timeout or a lighter operation.",
    ErrorCategory.UNKNOWN: "The failure cause is unclear.",
}

# program -> exit codes meaning a network failure
NETWORK_EXIT_CODES: dict[str, frozenset[int]] = {
    "curl": frozenset({5, 6, 7, 28, 35, 52, 56}),
    "wget": frozenset({4}),
    "ssh": frozenset({255}),
    "scp": frozenset({255}),
    "sftp": frozenset({255}),
}

# curl's DNS and connect failures, assumed when the program is unknown
DEFAULT_NETWORK_EXIT_CODES = frozenset({6, 7})

AUTH_EXIT_CODES: dict[str, frozenset[int]] = {
    "curl": frozenset({67}),
    "wget": frozenset({6}),
}

# 124 from timeout(1), 142 for SIGALRM in a shell, -14 from a subprocess
TIMEOUT_EXIT_CODES = frozenset({124, 142, -14})


@dataclass(frozen=True)
class CategoryRule:
    """Exit codes and phrases that identify one category."""

    category: ErrorCategory
    exit_codes: frozenset[int] = frozenset()
    phrases: tuple[str, ...] = ()


# Evaluation order matters: first match wins
CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        ErrorCategory.COMMAND_NOT_FOUND,
        frozenset({127}),
        ("command not found", "not recognized as an internal or external command", "no such command"),
    ),
    CategoryRule(
        ErrorCategory.PERMISSION_DENIED,
        frozenset({126}),
        ("permission denied", "operation not permitted", "access denied", "eacces",
         "must be root", "are you root", "must be run as root"),
    ),
    CategoryRule(
        ErrorCategory.FILE_NOT_FOUND,
        phrases=("no such file", "cannot find the path", "cannot access", "enoent",
                 "does not exist", "not a directory"),
    ),
    CategoryRule(
        ErrorCategory.SYNTAX_ERROR,
        frozenset({2}),
        ("invalid option", "unknown option", "unrecognized option", "illegal option",
         "unknown flag", "unknown switch", "invalid argument", "usage:", "syntax error",
         "unexpected token", "missing operand", "requires an argument", "unrecognized arguments"),
    ),
    CategoryRule(
        ErrorCategory.NETWORK_ERROR,
        phrases=("could not resolve host", "unable to resolve host", "name or service not known",
                 "temporary failure in name resolution", "connection refused", "connection reset",
                 "connection timed out", "network is unreachable", "no route to host",
                 "failed to connect", "could not connect", "ssl certificate problem"),
    ),
    CategoryRule(
        ErrorCategory.DISK_SPACE,
        phrases=("no space left on device", "disk full", "disk quota exceeded",
                 "not enough space", "enospc", "out of disk space"),
    ),
    CategoryRule(
        ErrorCategory.CONFIGURATION_ERROR,
        phrases=("invalid configuration", "configuration error", "config error", "bad configuration",
                 "malformed", "failed to parse", "parse error", "invalid config"),
    ),
    CategoryRule(
        ErrorCategory.DEPENDENCY_MISSING,
        phrases=("no module named", "modulenotfounderror", "cannot find module",
                 "error while loading shared libraries", "cannot open shared object",
                 "library not loaded", "unable to locate package", "is not installed",
                 "not installed", "missing dependency", "package not found", "executable file not found"),
    ),
    CategoryRule(
        ErrorCategory.SERVICE_DOWN,
        phrases=("is not running", "service unavailable", "inactive (dead)", "failed to start",
                 "daemon not running", "is the docker daemon running", "cannot connect to the docker daemon"),
    ),
    CategoryRule(
        ErrorCategory.AUTHENTICATION_FAILED,
        phrases=("authentication failed", "authentication required", "invalid credentials",
                 "bad credentials", "unauthorized", "login failed", "invalid username or password",
                 "token expired", "could not read username"),
    ),
    CategoryRule(
        ErrorCategory.TIMEOUT_ERROR,
        TIMEOUT_EXIT_CODES,
        ("timed out", "timeout expired", "deadline exceeded"),
    ),
)


def _bound(text: str) -> str:
    """Lower-case text, keeping its head and tail when too long."""
    if len(text) > MAX_MATCH_CHARS:
        half = MAX_MATCH_CHARS // 2
        text = text[:half] + "\n" + text[-half:]
    return text.lower()


def program_of(command: str | None) -> str | None:
    """Base name of the program a command line runs, if it can be told."""
    if not command or not command.strip():
        return None
    try:
        words = shlex.split(command)
    except ValueError:
        words = command.split()
    while words and "=" in words[0] and not words[0].startswith("="):
        words = words[1:]
    if not words:
        return None
    return posixpath.basename(words[0]) or words[0]


class ErrorClassifier:
    """Rule-ordered classification of shell failures.

    Total: every (exit code, stderr, stdout) triple maps to exactly one
    category, UNKNOWN when nothing matches.
    """

    def __init__(self, rules: tuple[CategoryRule, ...] = CATEGORY_RULES):
        self.rules = rules

    def classify(
        self,
        exit_code: int | None,
        stderr: str = "",
        stdout: str = "",
        command: str | None = None,
    ) -> ErrorCategory:
        """Classify a failure.

        Args:
            exit_code: Process exit code; None for failures without one.
            stderr: Captured standard error.
            stdout: Captured standard output.
            command: The command that failed, used for program-specific
                exit codes.

        Returns:
            The first matching ErrorCategory.
        """
        text = _bound(stderr or "") + "\n" + _bound(stdout or "")
        program = program_of(command)

        for rule in self.rules:
            codes = self._exit_codes(rule, program)
            if exit_code is not None and exit_code in codes:
                return rule.category
            if any(phrase in text for phrase in rule.phrases):
                return rule.category
        return ErrorCategory.UNKNOWN

    @staticmethod
    def _exit_codes(rule: CategoryRule, program: str | None) -> frozenset[int]:
        if rule.category == ErrorCategory.NETWORK_ERROR:
            if program is None:
                return DEFAULT_NETWORK_EXIT_CODES
            return NETWORK_EXIT_CODES.get(program, frozenset())
        if rule.category == ErrorCategory.AUTHENTICATION_FAILED and program is not None:
            return AUTH_EXIT_CODES.get(program, frozenset())
        return rule.exit_codes
