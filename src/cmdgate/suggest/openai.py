"""Suggestion engine for OpenAI-compatible chat completion APIs.

Usage:
    engine = OpenAISuggestionEngine.from_settings(get_settings())
    suggestion = await engine.suggest(SuggestionRequest(prompt="..."))
"""

from __future__ import annotations

from typing import Any

import httpx

from cmdgate.config import CmdGateSettings, validate_settings
from cmdgate.errors import SuggestionMalformedError, SuggestionUnavailableError
from cmdgate.logging import Loggers
from cmdgate.suggest.base import Suggestion, SuggestionEngine, SuggestionRequest, parse_suggestion
from cmdgate.suggest.resilience import retry

logger = Loggers.suggest()

# Status codes worth another attempt
RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


def _status_error(error: httpx.HTTPStatusError) -> SuggestionUnavailableError:
    status = error.response.status_code
    if status in (401, 403):
        message = f"Suggestion API rejected the credentials ({status})"
    else:
        message = f"Suggestion API error: {status}"
    return SuggestionUnavailableError(
        message,
        recoverable=status in RETRYABLE_STATUS,
        details={"status_code": status},
    )


class OpenAISuggestionEngine(SuggestionEngine):
    """Chat completion client returning one JSON command suggestion."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        max_tokens: int = 500,
        temperature: float = 0.1,
        max_retries: int = 3,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: CmdGateSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "OpenAISuggestionEngine":
        """Build an engine from settings.

        Raises:
            SettingsValidationError: If no API key is configured.
        """
        validate_settings(settings)
        return cls(
            api_key=settings.openai_api_key or "",
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            max_retries=settings.max_retries,
            timeout=settings.suggestion_timeout,
            transport=transport,
        )

    def build_payload(self, request: SuggestionRequest) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.prompt},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    async def suggest(self, request: SuggestionRequest) -> Suggestion:
        complete = retry(max_attempts=self.max_retries)(self._complete)
        content = await complete(self.build_payload(request))
        suggestion = parse_suggestion(content, source=self.name)
        logger.debug("suggestion_received", model=self.model, risk_hint=bool(suggestion.risk_hint))
        return suggestion

    async def _complete(self, payload: dict[str, Any]) -> str:
        """POST one chat completion and return the message content."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.post("/chat/completions", json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise _status_error(e) from e
            except httpx.RequestError as e:
                raise SuggestionUnavailableError(
                    f"Suggestion request failed: {e}",
                    recoverable=True,
                ) from e

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SuggestionMalformedError("Unexpected chat completion response shape") from e

        if not isinstance(content, str):
            raise SuggestionMalformedError("Chat completion has no text content")
        return content
