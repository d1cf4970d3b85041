"""Tests for suggestion parsing and the OpenAI-compatible engine."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from cmdgate.config import CmdGateSettings
from cmdgate.errors import (
    CmdGateError,
    ErrorCode,
    SettingsValidationError,
    SuggestionMalformedError,
    SuggestionUnavailableError,
)
from cmdgate.safety.models import RiskTier
from cmdgate.suggest.base import SuggestionRequest, extract_json, parse_suggestion
from cmdgate.suggest.openai import OpenAISuggestionEngine
from cmdgate.suggest.resilience import backoff_delays, retry


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


ANSWER = json.dumps({"command": "git status", "explanation": "fix typo", "auto_execute": False})


class TestExtractJson:
    """Locating the JSON object in model output."""

    def test_plain(self):
        assert extract_json('{"command": "ls"}') == {"command": "ls"}

    def test_json_fence(self):
        content = 'Here you go:\n```json\n{"command": "ls"}\n```'
        assert extract_json(content) == {"command": "ls"}

    def test_bare_fence(self):
        assert extract_json('```\n{"command": "ls"}\n```') == {"command": "ls"}

    def test_surrounding_prose(self):
        assert extract_json('Try this {"command": "ls"} and good luck') == {"command": "ls"}

    def test_no_object(self):
        assert extract_json("just run ls") is None

    def test_array_is_not_an_object(self):
        assert extract_json('["ls"]') is None


class TestParseSuggestion:
    """Validation of the parsed payload."""

    def test_confirm_hint(self):
        suggestion = parse_suggestion(ANSWER, source="openai")
        assert suggestion.command == "git status"
        assert suggestion.explanation == "fix typo"
        assert suggestion.risk_hint == RiskTier.CONFIRM
        assert suggestion.source == "openai"

    def test_auto_execute_gives_no_hint(self):
        suggestion = parse_suggestion('{"command": "ls", "auto_execute": true}')
        assert suggestion.risk_hint is None

    def test_missing_auto_execute_defaults_to_confirm(self):
        assert parse_suggestion('{"command": "ls"}').risk_hint == RiskTier.CONFIRM

    def test_command_is_stripped(self):
        assert parse_suggestion('{"command": "  ls -la \\n"}').command == "ls -la"

    @pytest.mark.parametrize("content", ["", "no json here", '{"explanation": "x"}', '{"command": "   "}', '{"command": 5}'])
    def test_malformed(self, content):
        with pytest.raises(SuggestionMalformedError):
            parse_suggestion(content)

    def test_to_dict(self):
        data = parse_suggestion(ANSWER).to_dict()
        assert data == {
            "command": "git status",
            "explanation": "fix typo",
            "risk_hint": "confirm",
            "source": "engine",
        }


class TestSuggestionErrors:
    """Error codes and serialization of engine failures."""

    def test_default_codes(self):
        assert SuggestionMalformedError("bad").error_code == ErrorCode.SUGGESTION_MALFORMED
        assert SuggestionUnavailableError("down").error_code == ErrorCode.SUGGESTION_UNAVAILABLE
        assert isinstance(SuggestionMalformedError("bad"), CmdGateError)

    def test_to_dict(self):
        error = SuggestionUnavailableError("rate limited", recoverable=True, details={"status_code": 429})
        assert error.to_dict() == {
            "message": "rate limited",
            "code": ErrorCode.SUGGESTION_UNAVAILABLE,
            "recoverable": True,
            "details": {"status_code": 429},
        }


class TestRetry:
    """Backoff decorator."""

    def test_backoff_schedule(self):
        assert list(backoff_delays(5, 0.5, 1.5)) == [0.5, 1.0, 1.5, 1.5]
        assert list(backoff_delays(1, 0.5, 4.0)) == []

    @pytest.mark.asyncio
    async def test_recoverable_error_is_retried(self):
        calls = []

        @retry(max_attempts=3, base_delay=0)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise CmdGateError("busy", recoverable=True)
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_unrecoverable_error_is_raised(self):
        calls = []

        @retry(max_attempts=3, base_delay=0)
        async def broken():
            calls.append(1)
            raise CmdGateError("nope")

        with pytest.raises(CmdGateError):
            await broken()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_last_error_after_exhaustion(self):
        @retry(max_attempts=2, base_delay=0)
        async def down():
            raise httpx.ConnectError("refused")

        with pytest.raises(httpx.ConnectError):
            await down()


class TestOpenAIEngine:
    """Chat completion client against a mock transport."""

    def make_engine(self, handler, **kwargs) -> OpenAISuggestionEngine:
        return OpenAISuggestionEngine(
            api_key="sk-test",
            base_url="https://llm.example/v1",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=completion(ANSWER))

        engine = self.make_engine(handler, model="test-model")
        suggestion = await engine.suggest(SuggestionRequest(prompt="User attempted to run command: gti"))

        assert suggestion.command == "git status"
        assert suggestion.source == "openai"
        request = seen[0]
        assert request.url == "https://llm.example/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["messages"][1] == {"role": "user", "content": "User attempted to run command: gti"}

    @pytest.mark.asyncio
    async def test_credentials_rejected_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": "bad key"})

        with pytest.raises(SuggestionUnavailableError) as exc_info:
            await self.make_engine(handler).suggest(SuggestionRequest(prompt="x"))
        assert "rejected the credentials" in exc_info.value.message
        assert not exc_info.value.recoverable
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json=completion(ANSWER))])

        with patch("cmdgate.suggest.resilience.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            suggestion = await self.make_engine(lambda request: next(responses)).suggest(
                SuggestionRequest(prompt="x")
            )
        assert suggestion.command == "git status"
        mock_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        with patch("cmdgate.suggest.resilience.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(SuggestionUnavailableError) as exc_info:
                await self.make_engine(handler, max_retries=2).suggest(SuggestionRequest(prompt="x"))
        assert exc_info.value.details == {"status_code": 429}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        engine = self.make_engine(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(SuggestionMalformedError):
            await engine.suggest(SuggestionRequest(prompt="x"))

    @pytest.mark.asyncio
    async def test_prose_answer(self):
        engine = self.make_engine(lambda request: httpx.Response(200, json=completion("Try git status.")))
        with pytest.raises(SuggestionMalformedError):
            await engine.suggest(SuggestionRequest(prompt="x"))

    def test_from_settings_requires_key(self, mock_context):
        with pytest.raises(SettingsValidationError):
            OpenAISuggestionEngine.from_settings(mock_context.settings)

    def test_from_settings(self, mock_context):
        settings = CmdGateSettings(openai_api_key="sk-test", openai_model="m", suggestion_timeout=2.0)
        engine = OpenAISuggestionEngine.from_settings(settings)
        assert engine.model == "m"
        assert engine.timeout == 2.0
        assert engine.base_url == "https://api.openai.com/v1"
