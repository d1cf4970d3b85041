"""Suggestion engines for the shell-failure hook."""

from cmdgate.suggest.base import (
    SYSTEM_PROMPT,
    Suggestion,
    SuggestionEngine,
    SuggestionPayload,
    SuggestionRequest,
    extract_json,
    parse_suggestion,
)
from cmdgate.suggest.openai import OpenAISuggestionEngine
from cmdgate.suggest.resilience import retry

__all__ = [
    "OpenAISuggestionEngine",
    "SYSTEM_PROMPT",
    "Suggestion",
    "SuggestionEngine",
    "SuggestionPayload",
    "SuggestionRequest",
    "extract_json",
    "parse_suggestion",
    "retry",
]
