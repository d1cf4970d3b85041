"""Command risk classification.

Decides, for any candidate command string, whether it may run unprompted,
needs confirmation, or must never run:
- Input preprocessing: bounding, control characters, encodings, homoglyphs
- Tokenization into logical units, nested substitutions and indirection
  included
- Exhaustive rule matching per unit and per line
- Aggregation into a single Verdict

Usage:
    from cmdgate.safety import classify

    classify("ls -la").tier              # RiskTier.AUTO_EXECUTE
    classify("rm -rf ./build").tier      # RiskTier.CONFIRM
    classify("rm -rf /").tier            # RiskTier.BLOCKED
    classify("echo cm0gLXJmIC8= | base64 -d | bash").tier  # RiskTier.BLOCKED
"""

from cmdgate.safety.classifier import RiskClassifier, classify, get_classifier, set_classifier
from cmdgate.safety.models import (
    LogicalUnit,
    Redirect,
    RiskTier,
    Rule,
    RuleKind,
    RuleMatch,
    RuleScope,
    TokenizeResult,
    UnitOrigin,
    Verdict,
)
from cmdgate.safety.preprocessor import InputPreprocessor, PreprocessResult
from cmdgate.safety.rules import DEFAULT_RULES, ReadOnlyAllowlist, RuleEngine, RuleSet
from cmdgate.safety.tokenizer import CommandTokenizer

__all__ = [
    "CommandTokenizer",
    "DEFAULT_RULES",
    "InputPreprocessor",
    "LogicalUnit",
    "PreprocessResult",
    "ReadOnlyAllowlist",
    "Redirect",
    "RiskClassifier",
    "RiskTier",
    "Rule",
    "RuleEngine",
    "RuleKind",
    "RuleMatch",
    "RuleScope",
    "RuleSet",
    "TokenizeResult",
    "UnitOrigin",
    "Verdict",
    "classify",
    "get_classifier",
    "set_classifier",
]
