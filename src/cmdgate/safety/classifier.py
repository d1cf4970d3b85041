"""Risk classifier combining preprocessing, tokenization and rules.

Produces one Verdict per command line:
- tier is the maximum over every rule matched by every unit and by the
  whole line
- unparseable units, truncated input and encoded content raise the floor
  to CONFIRM
- AUTO_EXECUTE is reserved for lines whose every unit is read-only and
  reached without indirection

Classification is total: any str or bytes input returns a Verdict.
"""

import dataclasses

from cmdgate.config import get_settings
from cmdgate.logging import Loggers
from cmdgate.safety.models import LogicalUnit, RiskTier, RuleMatch, TokenizeResult, Verdict
from cmdgate.safety.paths import is_null_sink
from cmdgate.safety.preprocessor import InputPreprocessor
from cmdgate.safety.rules import RuleEngine, RuleSet
from cmdgate.safety.tokenizer import CommandTokenizer

logger = Loggers.safety()

# Wrappers that change nothing about what the wrapped command can do
TRANSPARENT_WRAPPERS = frozenset({"time"})


class RiskClassifier:
    """Classifies command lines into risk tiers.

    Instances hold no per-call state and can be shared.
    """

    def __init__(
        self,
        rule_set: RuleSet | None = None,
        preprocessor: InputPreprocessor | None = None,
        tokenizer: CommandTokenizer | None = None,
    ):
        """Initialize classifier.

        Args:
            rule_set: Rules to apply. Defaults to the built-in rules.
            preprocessor: Input preprocessor. Created if omitted.
            tokenizer: Command tokenizer. Created if omitted.
        """
        self.engine = RuleEngine(rule_set or RuleSet.default())
        self.preprocessor = preprocessor or InputPreprocessor()
        self.tokenizer = tokenizer or CommandTokenizer()

    def classify(self, command: str | bytes, override: bool = False) -> Verdict:
        """Classify a command line.

        Args:
            command: Command text. Bytes are decoded as UTF-8 with replacement.
            override: Relax a BLOCKED verdict to CONFIRM. Never yields
                AUTO_EXECUTE and never skips classification.

        Returns:
            Verdict for the whole line.
        """
        try:
            verdict = self._classify(command)
        except Exception as e:
            logger.error("classification_failed", error=str(e), error_type=type(e).__name__)
            text = command.decode("utf-8", errors="replace") if isinstance(command, bytes) else str(command)
            verdict = Verdict(
                command=text,
                tier=RiskTier.CONFIRM,
                matches=(RuleMatch("internal_error", RiskTier.CONFIRM, "internal analysis error"),),
            )

        if override and verdict.tier == RiskTier.BLOCKED:
            verdict = dataclasses.replace(verdict, tier=RiskTier.CONFIRM, overridden=True)

        logger.debug(
            "command_classified",
            tier=verdict.tier.label,
            reasons=len(verdict.matches),
            overridden=verdict.overridden,
        )
        return verdict

    def _classify(self, command: str | bytes) -> Verdict:
        # Layer 1: bound the input and decode obfuscation
        pre = self.preprocessor.process(command)
        text = pre.normalized_command
        if not text.strip():
            return Verdict(
                command=text,
                tier=RiskTier.CONFIRM,
                matches=(RuleMatch("empty_command", RiskTier.CONFIRM, "empty command"),),
            )

        # Layer 2: split into logical units, decoded payloads included
        result = self.tokenizer.tokenize(text, pre.decoded_payloads)

        # Layer 3: rules, exhaustively per unit, then whole-line rules
        matches: list[RuleMatch] = []
        for unit in result.units:
            if unit.opaque:
                matches.append(RuleMatch(
                    "parse_opacity",
                    RiskTier.CONFIRM,
                    f"could not be fully parsed: {unit.opaque_reason}",
                    unit.index,
                    unit.text,
                ))
            matches.extend(self.engine.evaluate(unit, result))
        matches.extend(self.engine.match_line(result))

        # Layer 4: input-level floors
        if pre.truncated or result.truncated:
            matches.append(RuleMatch(
                "truncated_input", RiskTier.CONFIRM, "command too long to analyze completely",
            ))
        if pre.is_blocked:
            matches.append(RuleMatch("obfuscation", RiskTier.BLOCKED, pre.block_reason or "obfuscated"))
        elif pre.has_encoding:
            matches.append(RuleMatch(
                "encoded_content",
                RiskTier.CONFIRM,
                f"contains encoded content ({', '.join(pre.encodings_detected)})",
            ))

        # Layer 5: with no concerns, only read-only lines run unprompted
        if matches:
            tier = max(match.tier for match in matches)
        else:
            matches = self._allowlist_failures(result)
            tier = RiskTier.CONFIRM if matches else RiskTier.AUTO_EXECUTE

        return Verdict(
            command=text,
            tier=tier,
            matches=tuple(matches),
            units=tuple(result.units),
            truncated=pre.truncated or result.truncated,
            encodings=tuple(pre.encodings_detected),
        )

    def _allowlist_failures(self, result: TokenizeResult) -> list[RuleMatch]:
        failures = []
        for unit in result.units:
            reason = self._auto_execute_blocker(unit)
            if reason is not None:
                failures.append(RuleMatch("not_allowlisted", RiskTier.CONFIRM, reason, unit.index, unit.text))
        return failures

    def _auto_execute_blocker(self, unit: LogicalUnit) -> str | None:
        """First reason a unit cannot run without confirmation, if any."""
        if unit.indirect:
            return f"'{unit.text}' runs through {unit.origin.value.replace('_', ' ')}"
        reason = self.engine.allowlist.check(unit)
        if reason is not None:
            return reason
        for wrapper in unit.wrappers:
            if wrapper not in TRANSPARENT_WRAPPERS:
                return f"'{wrapper}' wrapper changes how '{unit.program}' runs"
        for redirect in unit.redirections:
            if redirect.is_write and not redirect.is_fd_dup and not is_null_sink(redirect.target):
                return f"writes to '{redirect.target}'"
        return None


# Process-wide default classifier (lazy initialization)
_default_classifier: RiskClassifier | None = None


def get_classifier() -> RiskClassifier:
    """Get the process-wide classifier, loading user rules on first use."""
    global _default_classifier

    if _default_classifier is None:
        settings = get_settings()
        rule_set = RuleSet.from_yaml(settings.rules_file) if settings.rules_file else RuleSet.default()
        _default_classifier = RiskClassifier(rule_set)

    return _default_classifier


def set_classifier(classifier: RiskClassifier | None) -> None:
    """Replace the process-wide classifier (None resets to lazy loading)."""
    global _default_classifier
    _default_classifier = classifier


def classify(command: str | bytes, *, override: bool = False) -> Verdict:
    """Classify a command with the process-wide classifier.

    Args:
        command: Command text.
        override: Relax BLOCKED to CONFIRM.

    Returns:
        Verdict for the command.
    """
    return get_classifier().classify(command, override=override)
