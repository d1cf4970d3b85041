"""Shared test fixtures and utilities for cmdgate tests.

Provides:
- MockContext for isolating tests from global state
- Hook configurations and fake suggestion engines
- A classifier with only the built-in rules
"""

import asyncio
import os
from pathlib import Path
from typing import Callable, Generator

import pytest
import structlog

from cmdgate.config import CmdGateSettings, HookConfig, reload_settings, set_settings
from cmdgate.errors import SuggestionError
from cmdgate.hook.context import ErrorContext
from cmdgate.hook.orchestrator import HookRequest
from cmdgate.safety.classifier import RiskClassifier, set_classifier
from cmdgate.suggest.base import Suggestion, SuggestionEngine, SuggestionRequest


class MockContext:
    """Context manager for isolating tests from global state.

    Handles:
    - Pointing HOME and the working directory at a temporary directory so
      no real ~/.cmdgate or ./.cmdgate config is read or written
    - Clearing OPENAI_API_KEY and CMDGATE_* variables
    - Resetting the settings and classifier singletons

    Usage:
        with MockContext(tmp_path, hook_enabled=True) as ctx:
            settings = ctx.settings
    """

    def __init__(self, root: Path, monkeypatch: pytest.MonkeyPatch, **settings_kwargs):
        self.root = root
        self._monkeypatch = monkeypatch
        self._settings_kwargs = settings_kwargs
        self._settings: CmdGateSettings | None = None

    def __enter__(self) -> "MockContext":
        home = self.root / "home"
        work = self.root / "work"
        home.mkdir(parents=True, exist_ok=True)
        work.mkdir(parents=True, exist_ok=True)

        self._monkeypatch.setenv("HOME", str(home))
        self._monkeypatch.chdir(work)
        for var in list(os.environ):
            if var.startswith("CMDGATE_") or var == "OPENAI_API_KEY":
                self._monkeypatch.delenv(var, raising=False)

        self._settings = CmdGateSettings(audit_dir=self.root / "audit", **self._settings_kwargs)
        set_settings(self._settings)
        set_classifier(None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        set_classifier(None)
        # Restore the environment before reloading so settings a test put in
        # CMDGATE_* variables are not re-read during teardown.
        self._monkeypatch.undo()
        reload_settings()

    @property
    def settings(self) -> CmdGateSettings:
        if self._settings is None:
            raise RuntimeError("MockContext not entered")
        return self._settings

    @property
    def home_dir(self) -> Path:
        return self.root / "home"

    @property
    def work_dir(self) -> Path:
        return self.root / "work"


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Undo logging configured by CLI invocations, which binds the runner's stderr."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def mock_context(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[MockContext, None, None]:
    """Fixture providing an isolated test context."""
    with MockContext(tmp_path, monkeypatch) as ctx:
        yield ctx


@pytest.fixture
def classifier() -> RiskClassifier:
    """Classifier with only the built-in rules."""
    return RiskClassifier()


@pytest.fixture
def hook_config() -> HookConfig:
    """Enabled hook that confirms everything."""
    return HookConfig(enabled=True, suggestion_timeout=1.0)


class FakeEngine(SuggestionEngine):
    """Suggestion engine returning canned results.

    Args:
        result: A Suggestion to return, an exception to raise, or a
            callable producing either from the request.
        delay: Seconds to sleep before answering.
    """

    name = "fake"

    def __init__(self, result: Suggestion | Exception | Callable | None = None, delay: float = 0.0):
        self.result = result
        self.delay = delay
        self.requests: list[SuggestionRequest] = []

    async def suggest(self, request: SuggestionRequest) -> Suggestion:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.result
        if callable(result) and not isinstance(result, (Suggestion, Exception)):
            result = result(request)
        if isinstance(result, Exception):
            raise result
        if result is None:
            raise SuggestionError("no result configured")
        return result


@pytest.fixture
def fake_engine() -> Callable[..., FakeEngine]:
    """Factory for FakeEngine instances."""
    return FakeEngine


def make_request(line: str, exit_code: int | None = 127, stderr: str = "", **kwargs) -> HookRequest:
    """HookRequest for a typed input line."""
    nested = kwargs.pop("nested", False)
    words = line.split()
    context = ErrorContext(
        command=words[0] if words else "",
        args=tuple(words[1:]),
        exit_code=exit_code,
        stderr=stderr,
        **kwargs,
    )
    return HookRequest(context=context, nested=nested)
