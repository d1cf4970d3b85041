"""Suggestion engine interface.

Engines turn a prompt built from a failed shell input into one candidate
command. They may fail or time out; the hook treats every failure as "no
suggestion". A suggestion is never trusted: it always goes through the risk
classifier, and its risk hint can only raise the tier.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from cmdgate.errors import SuggestionMalformedError
from cmdgate.safety.models import RiskTier

SYSTEM_PROMPT = (
    "You are cmdgate, an assistant that helps users with shell commands. "
    "Analyze the provided context and suggest the single most appropriate command."
)

FENCED_JSON_PATTERN = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)
FENCED_PATTERN = re.compile(r"```[A-Za-z]*\s*(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class SuggestionRequest:
    """Input to a suggestion engine.

    Attributes:
        prompt: User message describing the failure.
        system: System message for chat-style engines.
        context: Structured context (working directory, exit code, error
            category) for engines that prefer fields over prose.
    """

    prompt: str
    system: str = SYSTEM_PROMPT
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Suggestion:
    """A candidate command with its explanation.

    Attributes:
        command: Candidate command line.
        explanation: Why the engine suggests it.
        risk_hint: Engine's own risk opinion, if any.
        source: Engine name, or "local" for typo corrections.
    """

    command: str
    explanation: str = ""
    risk_hint: RiskTier | None = None
    source: str = "engine"

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "explanation": self.explanation,
            "risk_hint": self.risk_hint.label if self.risk_hint else None,
            "source": self.source,
        }


class SuggestionEngine(ABC):
    """Abstract base class for suggestion engines."""

    name: str = "engine"

    @abstractmethod
    async def suggest(self, request: SuggestionRequest) -> Suggestion:
        """Produce one suggestion.

        Args:
            request: Prompt and context.

        Returns:
            The suggestion.

        Raises:
            SuggestionError: Any failure; the hook recovers from all of them.
        """


class SuggestionPayload(BaseModel):
    """JSON object the engine is asked to answer with."""

    command: str
    explanation: str = ""
    auto_execute: bool = Field(default=False)

    @field_validator("command")
    @classmethod
    def command_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("command is empty")
        return v


def extract_json(content: str) -> dict[str, Any] | None:
    """Find a JSON object in model output.

    Tries, in order: the whole text, a ```json fence, any fence, and the
    outermost braces.
    """
    candidates = [content.strip()]
    candidates += [m.strip() for m in FENCED_JSON_PATTERN.findall(content)]
    candidates += [m.strip() for m in FENCED_PATTERN.findall(content)]
    start, end = content.find("{"), content.rfind("}")
    if 0 <= start < end:
        candidates.append(content[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


def parse_suggestion(content: str, source: str = "engine") -> Suggestion:
    """Parse raw engine output into a Suggestion.

    ``auto_execute: false`` becomes a CONFIRM risk hint; ``true`` gives no
    hint, since an engine can never lower risk.

    Raises:
        SuggestionMalformedError: No JSON object, or one failing validation.
    """
    data = extract_json(content or "")
    if data is None:
        raise SuggestionMalformedError(
            "Engine response contains no JSON object",
            details={"preview": (content or "")[:200]},
        )

    try:
        payload = SuggestionPayload.model_validate(data)
    except ValidationError as e:
        raise SuggestionMalformedError(
            "Engine response does not describe a command",
            details={"errors": e.errors(include_url=False)},
        ) from e

    return Suggestion(
        command=payload.command,
        explanation=payload.explanation.strip(),
        risk_hint=None if payload.auto_execute else RiskTier.CONFIRM,
        source=source,
    )
