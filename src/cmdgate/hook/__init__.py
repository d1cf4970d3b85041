"""Shell-failure hook.

Takes a failed or unrecognized shell input through admission, a
timeout-bounded suggestion call, risk classification and confirmation
before handing a command off for execution.
"""

from cmdgate.hook.admission import (
    KNOWN_COMMANDS,
    AdmissionDecision,
    AdmissionFilter,
    SkipReason,
    edit_distance,
    similarity,
    typo_threshold,
)
from cmdgate.hook.audit import AuditConfig, AuditEntry, HookAuditLogger
from cmdgate.hook.context import ErrorContext, build_prompt, context_relevance, environment_context
from cmdgate.hook.error_classifier import CATEGORY_HINTS, ErrorCategory, ErrorClassifier
from cmdgate.hook.orchestrator import (
    TRANSITIONS,
    Handoff,
    HookOrchestrator,
    HookOutcome,
    HookRequest,
    HookRun,
    HookState,
    invokes_hook,
)

__all__ = [
    "AdmissionDecision",
    "AdmissionFilter",
    "AuditConfig",
    "AuditEntry",
    "CATEGORY_HINTS",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorContext",
    "Handoff",
    "HookAuditLogger",
    "HookOrchestrator",
    "HookOutcome",
    "HookRequest",
    "HookRun",
    "HookState",
    "KNOWN_COMMANDS",
    "SkipReason",
    "TRANSITIONS",
    "build_prompt",
    "context_relevance",
    "edit_distance",
    "environment_context",
    "invokes_hook",
    "similarity",
    "typo_threshold",
]
