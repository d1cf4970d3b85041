"""Data models for command risk classification.

Provides the tier ordering, the logical units produced by the tokenizer,
rules and their matches, and the final verdict.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable


class RiskTier(IntEnum):
    """Risk tier of a command. Higher tiers win when rules combine."""

    AUTO_EXECUTE = 0
    CONFIRM = 1
    BLOCKED = 2

    @property
    def label(self) -> str:
        return {
            RiskTier.AUTO_EXECUTE: "auto-execute",
            RiskTier.CONFIRM: "confirm",
            RiskTier.BLOCKED: "blocked",
        }[self]


class RuleScope(Enum):
    """Whether a rule looks at one unit or at the whole command line."""

    UNIT = "unit"
    LINE = "line"


class RuleKind(Enum):
    """Matcher family of a rule."""

    PROGRAM = "program"
    ARGUMENTS = "arguments"
    NETWORK = "network"
    PRIVILEGE = "privilege"
    REDIRECT = "redirect"
    INDIRECTION = "indirection"
    PATTERN = "pattern"


class UnitOrigin(Enum):
    """How a logical unit was reached from the top-level command."""

    TOP_LEVEL = "top_level"
    SUBSHELL = "subshell"  # ( ... ) group
    COMMAND_SUBSTITUTION = "command_substitution"  # $( ... ) and `...`
    PROCESS_SUBSTITUTION = "process_substitution"  # <( ... ) and >( ... )
    EVAL = "eval"
    SHELL_COMMAND = "shell_command"  # sh -c '...'
    XARGS = "xargs"
    FIND_EXEC = "find_exec"
    DECODED = "decoded"  # recovered from base64/hex/octal encodings

    @property
    def is_indirect(self) -> bool:
        return self not in (UnitOrigin.TOP_LEVEL, UnitOrigin.SUBSHELL)


@dataclass(frozen=True)
class Redirect:
    """A shell redirection. The target is data, never code."""

    operator: str  # e.g. ">", ">>", "<", "2>", "&>", ">&"
    target: str

    @property
    def is_write(self) -> bool:
        return ">" in self.operator

    @property
    def is_fd_dup(self) -> bool:
        """``2>&1`` style duplication, which writes no file."""
        return self.operator.endswith("&") and (self.target.isdigit() or self.target == "-")


@dataclass(frozen=True)
class LogicalUnit:
    """One executable sub-command of a command line."""

    index: int
    text: str
    argv: tuple[str, ...] = ()
    wrappers: tuple[str, ...] = ()  # sudo, env, nohup, time, ...
    redirections: tuple[Redirect, ...] = ()
    origin: UnitOrigin = UnitOrigin.TOP_LEVEL
    depth: int = 0
    parent: int | None = None
    operator: str | None = None  # operator preceding this unit
    stdin_from: str | None = None  # program piping into this unit
    background: bool = False
    opaque: bool = False
    opaque_reason: str | None = None

    @property
    def program(self) -> str:
        """Base name of the executed program, e.g. ``rm`` for ``/bin/rm``."""
        if not self.argv:
            return ""
        return posixpath.basename(self.argv[0]) or self.argv[0]

    @property
    def args(self) -> tuple[str, ...]:
        return self.argv[1:]

    @property
    def indirect(self) -> bool:
        return self.origin.is_indirect


@dataclass
class TokenizeResult:
    """Result of tokenizing a command line."""

    command: str
    units: list[LogicalUnit] = field(default_factory=list)
    has_pipes: bool = False
    has_chains: bool = False  # ;, &&, ||, newline
    has_substitutions: bool = False  # $(), ``, <(), >()
    has_redirections: bool = False
    has_background: bool = False
    has_indirection: bool = False  # eval, sh -c, xargs, find -exec, decoded payloads
    parse_errors: list[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def is_opaque(self) -> bool:
        return any(unit.opaque for unit in self.units)


# Matchers return True (or a reason string overriding the rule's own) on a hit.
# LINE-scope matchers receive None as the unit.
Matcher = Callable[["LogicalUnit | None", "TokenizeResult"], "bool | str | None"]


@dataclass(frozen=True)
class Rule:
    """A named risk pattern with the tier it assigns.

    ``{program}`` in the reason is replaced with the matched unit's program.
    """

    name: str
    tier: RiskTier
    reason: str
    matcher: Matcher = field(compare=False, repr=False)
    scope: RuleScope = RuleScope.UNIT
    kind: RuleKind = RuleKind.PROGRAM

    def evaluate(self, unit: LogicalUnit | None, result: TokenizeResult) -> RuleMatch | None:
        hit = self.matcher(unit, result)
        if not hit:
            return None
        if isinstance(hit, str):
            reason = hit
        elif unit is not None:
            reason = self.reason.replace("{program}", unit.program)
        else:
            reason = self.reason
        return RuleMatch(
            rule_name=self.name,
            tier=self.tier,
            reason=reason,
            unit_index=unit.index if unit is not None else None,
            unit_text=unit.text if unit is not None else None,
        )


@dataclass(frozen=True)
class RuleMatch:
    """A rule that fired, attributed to the unit that triggered it."""

    rule_name: str
    tier: RiskTier
    reason: str
    unit_index: int | None = None  # None for whole-line rules
    unit_text: str | None = None

    def describe(self) -> str:
        if self.unit_text:
            return f"{self.reason} [{self.unit_text}]"
        return self.reason


@dataclass(frozen=True)
class Verdict:
    """Outcome of classifying a command.

    A pure function of the normalized input: equal commands with the same
    override flag give equal verdicts.
    """

    command: str
    tier: RiskTier
    matches: tuple[RuleMatch, ...] = ()
    units: tuple[LogicalUnit, ...] = ()
    overridden: bool = False
    truncated: bool = False
    encodings: tuple[str, ...] = ()

    @property
    def matched_reasons(self) -> tuple[str, ...]:
        return tuple(match.reason for match in self.matches)

    @property
    def requires_confirmation(self) -> bool:
        return self.tier == RiskTier.CONFIRM

    @property
    def is_blocked(self) -> bool:
        return self.tier == RiskTier.BLOCKED

    @property
    def auto_execute(self) -> bool:
        return self.tier == RiskTier.AUTO_EXECUTE

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 auto-execute, 1 confirm, 2 blocked."""
        return int(self.tier)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "command": self.command,
            "tier": self.tier.label,
            "requires_confirmation": self.requires_confirmation,
            "overridden": self.overridden,
            "truncated": self.truncated,
            "encodings": list(self.encodings),
            "reasons": [
                {
                    "rule": match.rule_name,
                    "tier": match.tier.label,
                    "reason": match.reason,
                    "unit": match.unit_text,
                }
                for match in self.matches
            ],
            "units": [unit.text for unit in self.units],
        }
