"""Error types for cmdgate.

Provides a structured base exception carrying a machine-readable error code
and a recoverable flag, plus the specific failures raised by the suggestion
pipeline, the hook state machine and rule loading.

Parse opacity is never raised: an unparseable command is folded into a
Confirm verdict by the classifier.
"""

from typing import Any


class ErrorCode:
    """Machine-readable error codes."""

    # Classification
    PARSE_OPACITY = "PARSE_OPACITY"
    RULE_MATCH_BLOCKED = "RULE_MATCH_BLOCKED"

    # Suggestion pipeline
    SUGGESTION_TIMEOUT = "SUGGESTION_TIMEOUT"
    SUGGESTION_MALFORMED = "SUGGESTION_MALFORMED"
    SUGGESTION_UNAVAILABLE = "SUGGESTION_UNAVAILABLE"

    # Hook
    ADMISSION_REJECTED = "ADMISSION_REJECTED"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Input / setup
    INVALID_INPUT = "INVALID_INPUT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class CmdGateError(Exception):
    """Base error for cmdgate failures.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        recoverable: Whether a retry might succeed
        details: Additional error details
    """

    default_code = "CMDGATE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        recoverable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.recoverable = recoverable
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "message": self.message,
            "code": self.error_code,
            "recoverable": self.recoverable,
            "details": self.details,
        }


class SuggestionError(CmdGateError):
    """The suggestion engine could not produce a usable suggestion."""

    default_code = ErrorCode.SUGGESTION_UNAVAILABLE


class SuggestionTimeoutError(SuggestionError):
    """The suggestion engine did not answer within the configured timeout."""

    default_code = ErrorCode.SUGGESTION_TIMEOUT


class SuggestionMalformedError(SuggestionError):
    """The engine answered, but the response could not be parsed."""

    default_code = ErrorCode.SUGGESTION_MALFORMED


class SuggestionUnavailableError(SuggestionError):
    """Network, HTTP or credential failure talking to the engine."""

    default_code = ErrorCode.SUGGESTION_UNAVAILABLE


class InvalidTransitionError(CmdGateError):
    """Raised when the hook state machine is asked for an illegal transition."""

    default_code = ErrorCode.INVALID_TRANSITION


class RuleConfigError(CmdGateError):
    """Raised when a user rules file cannot be loaded."""

    default_code = ErrorCode.CONFIGURATION_ERROR


class SettingsValidationError(CmdGateError):
    """Raised when settings validation fails."""

    default_code = ErrorCode.CONFIGURATION_ERROR
