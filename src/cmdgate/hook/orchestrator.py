"""Hook orchestrator: the state machine behind the shell-failure hook.

Wires the admission filter, the suggestion engine, the risk classifier,
user confirmation and execution handoff together:

    IDLE -> ADMITTING -> SKIPPED
                      -> SUGGESTING -> TIMED_OUT | NO_SUGGESTION
                                    -> SUGGESTED
                      -> SUGGESTED (local typo correction)
    SUGGESTED -> CLASSIFYING -> BLOCKED_TERMINAL
                             -> AWAITING_CONFIRMATION -> DECLINED | HANDED_OFF
                             -> READY_TO_EXECUTE -> HANDED_OFF

HANDED_OFF is the only state that releases a command, and only to the
injected handoff callable. The orchestrator never executes anything.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from cmdgate.config import HookConfig
from cmdgate.errors import ErrorCode, InvalidTransitionError, SuggestionError
from cmdgate.hook.admission import AdmissionDecision, AdmissionFilter, SkipReason
from cmdgate.hook.context import ErrorContext, build_prompt, environment_context
from cmdgate.hook.error_classifier import ErrorCategory, ErrorClassifier
from cmdgate.logging import Loggers, bind_context, clear_context
from cmdgate.safety.classifier import RiskClassifier, get_classifier
from cmdgate.safety.models import RiskTier, RuleMatch, Verdict
from cmdgate.safety.tokenizer import CommandTokenizer
from cmdgate.suggest.base import Suggestion, SuggestionEngine, SuggestionRequest

if TYPE_CHECKING:
    from cmdgate.hook.audit import HookAuditLogger
    from cmdgate.runner import RunResult

logger = Loggers.hook()

# Program names that invoke the hook itself
HOOK_BINARY_NAMES = frozenset({"cmdgate"})

NO_SUGGESTION_MESSAGE = "no suggestion available"


class HookState(Enum):
    """States of one hook invocation."""

    IDLE = "idle"
    ADMITTING = "admitting"
    SKIPPED = "skipped"
    SUGGESTING = "suggesting"
    TIMED_OUT = "timed_out"
    NO_SUGGESTION = "no_suggestion"
    SUGGESTED = "suggested"
    CLASSIFYING = "classifying"
    BLOCKED_TERMINAL = "blocked_terminal"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    READY_TO_EXECUTE = "ready_to_execute"
    DECLINED = "declined"
    HANDED_OFF = "handed_off"

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


TRANSITIONS: dict[HookState, frozenset[HookState]] = {
    HookState.IDLE: frozenset({HookState.ADMITTING}),
    HookState.ADMITTING: frozenset({HookState.SKIPPED, HookState.SUGGESTING, HookState.SUGGESTED}),
    HookState.SUGGESTING: frozenset({HookState.TIMED_OUT, HookState.NO_SUGGESTION, HookState.SUGGESTED}),
    HookState.SUGGESTED: frozenset({HookState.CLASSIFYING}),
    HookState.CLASSIFYING: frozenset({
        HookState.BLOCKED_TERMINAL,
        HookState.AWAITING_CONFIRMATION,
        HookState.READY_TO_EXECUTE,
    }),
    HookState.AWAITING_CONFIRMATION: frozenset({HookState.DECLINED, HookState.HANDED_OFF}),
    HookState.READY_TO_EXECUTE: frozenset({HookState.HANDED_OFF}),
    HookState.SKIPPED: frozenset(),
    HookState.TIMED_OUT: frozenset(),
    HookState.NO_SUGGESTION: frozenset(),
    HookState.BLOCKED_TERMINAL: frozenset(),
    HookState.DECLINED: frozenset(),
    HookState.HANDED_OFF: frozenset(),
}


class HookRun:
    """State and trail of a single invocation."""

    def __init__(self) -> None:
        self.state = HookState.IDLE
        self.trail: list[HookState] = [HookState.IDLE]

    def transition(self, target: HookState) -> None:
        """Move to target.

        Raises:
            InvalidTransitionError: If the table does not allow the move.
        """
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal transition: {self.state.name} -> {target.name}",
                details={"from": self.state.value, "to": target.value},
            )
        logger.debug("hook_transition", from_state=self.state.value, to_state=target.value)
        self.state = target
        self.trail.append(target)


@dataclass(frozen=True)
class HookRequest:
    """One failed or unrecognized shell input.

    Attributes:
        context: What the shell reported.
        nested: Set by the shell integration when the hook fires inside a
            command the hook itself handed off.
    """

    context: ErrorContext
    nested: bool = False

    @property
    def raw_input(self) -> str:
        return self.context.raw_input


@dataclass(frozen=True)
class Handoff:
    """A command released for execution."""

    command: str
    requires_confirmation: bool
    verdict: Verdict


@dataclass(frozen=True)
class HookOutcome:
    """Final state of an invocation and everything decided on the way."""

    state: HookState
    trail: tuple[HookState, ...]
    admission: AdmissionDecision | None = None
    error_category: ErrorCategory | None = None
    suggestion: Suggestion | None = None
    verdict: Verdict | None = None
    error_code: str | None = None
    message: str = ""
    run_result: RunResult | None = None

    @property
    def handed_off(self) -> bool:
        return self.state == HookState.HANDED_OFF

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "trail": [s.value for s in self.trail],
            "skip_reason": (
                self.admission.skip_reason.value
                if self.admission and self.admission.skip_reason
                else None
            ),
            "error_category": self.error_category.value if self.error_category else None,
            "suggestion": self.suggestion.to_dict() if self.suggestion else None,
            "verdict": self.verdict.to_dict() if self.verdict else None,
            "error_code": self.error_code,
            "message": self.message,
            "run_result": self.run_result.to_dict() if self.run_result else None,
        }


Confirmer = Callable[[Suggestion, Verdict], Union[bool, Awaitable[bool]]]
HandoffCallable = Callable[[Handoff], Union["RunResult", None, Awaitable[Union["RunResult", None]]]]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _call_in_thread(func: Callable[..., Any], *args: Any) -> Any:
    """Run a possibly blocking callable off the event loop, then await its result if needed."""
    return await _resolve(await asyncio.to_thread(func, *args))


def invokes_hook(command: str) -> bool:
    """Whether any unit of a command line runs the hook binary."""
    result = CommandTokenizer().tokenize(command)
    return any(unit.program in HOOK_BINARY_NAMES for unit in result.units)


class HookOrchestrator:
    """Drives one shell failure from admission to handoff.

    One instance handles one request at a time; a re-entrant call while a
    request is in flight is skipped as recursion.
    """

    def __init__(
        self,
        config: HookConfig,
        engine: SuggestionEngine | None,
        confirmer: Confirmer | None = None,
        handoff: HandoffCallable | None = None,
        classifier: RiskClassifier | None = None,
        admission: AdmissionFilter | None = None,
        error_classifier: ErrorClassifier | None = None,
        audit: HookAuditLogger | None = None,
    ):
        """Initialize orchestrator.

        Args:
            config: Frozen hook configuration.
            engine: Suggestion engine. None means every admitted input ends
                in NO_SUGGESTION.
            confirmer: Asked before any confirmed handoff. None declines.
            handoff: Receives approved commands. None leaves running the
                command to the caller, which reads it from the outcome.
            classifier: Risk classifier, defaults to the process-wide one.
            admission: Admission filter, built from config if omitted.
            error_classifier: Error classifier, created if omitted.
            audit: Optional audit trail.
        """
        self.config = config
        self.engine = engine
        self.confirmer = confirmer
        self.handoff = handoff
        self.classifier = classifier or get_classifier()
        self.admission = admission or AdmissionFilter(config)
        self.error_classifier = error_classifier or ErrorClassifier()
        self.audit = audit
        self._active = False

    async def handle(self, request: HookRequest) -> HookOutcome:
        """Process one request to a terminal state.

        Never raises for engine, network or parsing failures; those end in
        TIMED_OUT or NO_SUGGESTION.
        """
        run = HookRun()
        if self._active:
            run.transition(HookState.ADMITTING)
            return self._skip(run, AdmissionDecision.skip(SkipReason.RECURSION, "hook is already running"))

        self._active = True
        bind_context(hook_run=uuid.uuid4().hex[:8])
        try:
            outcome = await self._handle(run, request)
            if self.audit is not None:
                self.audit.record(request, outcome)
        finally:
            self._active = False
            clear_context()
        return outcome

    async def _handle(self, run: HookRun, request: HookRequest) -> HookOutcome:
        run.transition(HookState.ADMITTING)
        decision = self._admit(request)

        if not decision.proceed:
            if (
                decision.skip_reason == SkipReason.LIKELY_TYPO
                and self.config.correct_typos
                and decision.correction
            ):
                suggestion = Suggestion(
                    command=decision.correction,
                    explanation=decision.detail,
                    source="local",
                )
                run.transition(HookState.SUGGESTED)
                return await self._classify(run, decision, None, suggestion)
            return self._skip(run, decision)

        context = request.context
        category = self.error_classifier.classify(
            context.exit_code, context.stderr, context.stdout, command=request.raw_input,
        )

        run.transition(HookState.SUGGESTING)
        suggestion, error_code, message = await self._suggest(context, category)
        if suggestion is None:
            if error_code == ErrorCode.SUGGESTION_TIMEOUT:
                run.transition(HookState.TIMED_OUT)
            else:
                run.transition(HookState.NO_SUGGESTION)
            return self._outcome(
                run, decision, error_category=category, error_code=error_code, message=message,
            )

        problem = self._unusable(suggestion, request)
        if problem is not None:
            logger.info("suggestion_discarded", reason=problem)
            run.transition(HookState.NO_SUGGESTION)
            return self._outcome(
                run,
                decision,
                error_category=category,
                suggestion=suggestion,
                error_code=ErrorCode.SUGGESTION_MALFORMED,
                message=NO_SUGGESTION_MESSAGE,
            )

        run.transition(HookState.SUGGESTED)
        return await self._classify(run, decision, category, suggestion)

    def _admit(self, request: HookRequest) -> AdmissionDecision:
        if not self.config.enabled:
            return AdmissionDecision.skip(SkipReason.DISABLED, "hook is disabled")
        if request.nested:
            return AdmissionDecision.skip(SkipReason.RECURSION, "input comes from a handed-off command")
        if invokes_hook(request.raw_input):
            return AdmissionDecision.skip(SkipReason.RECURSION, "input invokes the hook itself")
        return self.admission.evaluate(request.raw_input)

    def _skip(self, run: HookRun, decision: AdmissionDecision) -> HookOutcome:
        log = logger.info if self.config.verbose else logger.debug
        log(
            "input_skipped",
            reason=decision.skip_reason.value if decision.skip_reason else None,
            detail=decision.detail,
        )
        run.transition(HookState.SKIPPED)
        return self._outcome(
            run,
            decision,
            error_code=ErrorCode.ADMISSION_REJECTED,
            message=f"skipped: {decision.detail}" if self.config.verbose else "",
        )

    async def _suggest(
        self,
        context: ErrorContext,
        category: ErrorCategory,
    ) -> tuple[Suggestion | None, str | None, str]:
        """Ask the engine, bounded by the suggestion timeout."""
        if self.engine is None:
            return None, ErrorCode.SUGGESTION_UNAVAILABLE, NO_SUGGESTION_MESSAGE

        request = SuggestionRequest(
            prompt=build_prompt(context, category),
            context={**environment_context(context), "error_category": category.value},
        )
        try:
            suggestion = await asyncio.wait_for(
                self.engine.suggest(request),
                timeout=self.config.suggestion_timeout,
            )
        except asyncio.TimeoutError:
            logger.info("suggestion_timed_out", timeout=self.config.suggestion_timeout)
            return None, ErrorCode.SUGGESTION_TIMEOUT, NO_SUGGESTION_MESSAGE
        except SuggestionError as e:
            logger.info("suggestion_failed", error=e.message, error_code=e.error_code)
            return None, e.error_code, NO_SUGGESTION_MESSAGE
        except Exception as e:
            logger.warning("suggestion_engine_error", error=str(e), error_type=type(e).__name__)
            return None, ErrorCode.SUGGESTION_UNAVAILABLE, NO_SUGGESTION_MESSAGE

        return suggestion, None, ""

    @staticmethod
    def _unusable(suggestion: Suggestion, request: HookRequest) -> str | None:
        command = suggestion.command.strip()
        if not command:
            return "empty command"
        if command == request.raw_input:
            return "repeats the failed input"
        if invokes_hook(command):
            return "invokes the hook itself"
        return None

    async def _classify(
        self,
        run: HookRun,
        decision: AdmissionDecision,
        category: ErrorCategory | None,
        suggestion: Suggestion,
    ) -> HookOutcome:
        run.transition(HookState.CLASSIFYING)
        verdict = self._route_verdict(self.classifier.classify(suggestion.command), suggestion)

        if verdict.tier == RiskTier.BLOCKED:
            run.transition(HookState.BLOCKED_TERMINAL)
            logger.info("suggestion_blocked", reasons=list(verdict.matched_reasons))
            return self._outcome(
                run,
                decision,
                error_category=category,
                suggestion=suggestion,
                verdict=verdict,
                error_code=ErrorCode.RULE_MATCH_BLOCKED,
                message="; ".join(verdict.matched_reasons),
            )

        if verdict.tier == RiskTier.AUTO_EXECUTE and not self.config.always_confirm:
            run.transition(HookState.READY_TO_EXECUTE)
            return await self._hand_off(run, decision, category, suggestion, verdict, False)

        run.transition(HookState.AWAITING_CONFIRMATION)
        approved = False
        if self.confirmer is not None:
            approved = bool(await _resolve(self.confirmer(suggestion, verdict)))
        if not approved:
            run.transition(HookState.DECLINED)
            return self._outcome(
                run,
                decision,
                error_category=category,
                suggestion=suggestion,
                verdict=verdict,
                message="declined",
            )
        return await self._hand_off(run, decision, category, suggestion, verdict, True)

    @staticmethod
    def _route_verdict(verdict: Verdict, suggestion: Suggestion) -> Verdict:
        """Fold the engine's risk hint into the verdict; it can only raise the tier."""
        hint = suggestion.risk_hint
        if hint is None or hint <= verdict.tier:
            return verdict
        match = RuleMatch("engine_risk_hint", hint, f"suggestion engine rated it {hint.label}")
        return dataclasses.replace(verdict, tier=hint, matches=verdict.matches + (match,))

    async def _hand_off(
        self,
        run: HookRun,
        decision: AdmissionDecision,
        category: ErrorCategory | None,
        suggestion: Suggestion,
        verdict: Verdict,
        requires_confirmation: bool,
    ) -> HookOutcome:
        run.transition(HookState.HANDED_OFF)
        handoff = Handoff(suggestion.command, requires_confirmation, verdict)
        logger.info("command_handed_off", requires_confirmation=requires_confirmation)

        run_result = None
        message = ""
        if self.handoff is not None:
            try:
                run_result = await _call_in_thread(self.handoff, handoff)
            except Exception as e:
                # Run result is telemetry only
                logger.error("handoff_failed", error=str(e), error_type=type(e).__name__)
                message = f"runner failed: {e}"

        return self._outcome(
            run,
            decision,
            error_category=category,
            suggestion=suggestion,
            verdict=verdict,
            message=message,
            run_result=run_result,
        )

    @staticmethod
    def _outcome(run: HookRun, decision: AdmissionDecision | None, **fields: Any) -> HookOutcome:
        return HookOutcome(
            state=run.state,
            trail=tuple(run.trail),
            admission=decision,
            **fields,
        )
