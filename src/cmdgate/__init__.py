"""cmdgate - risk gate between suggested shell commands and their execution.

This package provides:

- A command risk classifier (AUTO_EXECUTE, CONFIRM, BLOCKED) over a
  structural parse of the command line, obfuscated and indirect forms
  included
- An admission filter deciding whether a failed shell input is worth a
  suggestion request
- An error classifier mapping exit codes and output to failure categories
- A hook orchestrator wiring admission, a timeout-bounded suggestion call,
  classification and confirmation before handing a command off

Only the classifier runs without configuration; the hook is disabled by
default and needs a suggestion engine.
"""

__version__ = "0.1.0"

from cmdgate.config import (
    CmdGateSettings,
    HookConfig,
    get_settings,
    reload_settings,
    set_settings,
    validate_settings,
)
from cmdgate.errors import CmdGateError, ErrorCode
from cmdgate.hook import ErrorCategory, ErrorClassifier, HookOrchestrator, HookRequest, HookState
from cmdgate.safety import RiskClassifier, RiskTier, Verdict, classify

__all__ = [
    "CmdGateError",
    "CmdGateSettings",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorCode",
    "HookConfig",
    "HookOrchestrator",
    "HookRequest",
    "HookState",
    "RiskClassifier",
    "RiskTier",
    "Verdict",
    "__version__",
    "classify",
    "get_settings",
    "reload_settings",
    "set_settings",
    "validate_settings",
]
