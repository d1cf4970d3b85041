"""Configuration for cmdgate.

Settings Loading Priority (highest to lowest):
    1. Constructor arguments
    2. Environment variables (CMDGATE_* prefix, OPENAI_API_KEY for the key)
    3. Project config (./.cmdgate/settings.json)
    4. User config (~/.cmdgate/settings.json)
    5. .env file
    6. Default values

The hook reads an immutable HookConfig snapshot built from the settings at
process start. Management commands write the JSON config; the change is
picked up by the next process.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Tuple, Type

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from cmdgate.errors import SettingsValidationError

APP_NAME = "cmdgate"

DEFAULT_EXCLUDED_PATTERNS = ["sudo", "su", "rm", "chmod", "chown"]


def _get_json_config_source(
    settings_cls: Type[BaseSettings],
    json_file: Path,
) -> PydanticBaseSettingsSource | None:
    """Create a JSON config source if the file exists."""
    if not json_file.exists():
        return None
    return JsonConfigSettingsSource(settings_cls, json_file=json_file)


def project_config_path() -> Path:
    """Path of the project-level config file."""
    return Path.cwd() / f".{APP_NAME}" / "settings.json"


def user_config_path() -> Path:
    """Path of the user-level config file."""
    return Path.home() / f".{APP_NAME}" / "settings.json"


class CmdGateSettings(BaseSettings):
    """Settings for the classifier, the hook and the suggestion engine."""

    model_config = SettingsConfigDict(
        env_prefix="CMDGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Hook admission
    hook_enabled: bool = Field(
        default=False,
        title="Hook Enabled",
        description="Ask for suggestions when a shell command fails",
    )
    min_length: int = Field(
        default=3,
        ge=1,
        title="Minimum Length",
        description="Inputs shorter than this are ignored by the hook",
    )
    max_length: int = Field(
        default=200,
        ge=1,
        title="Maximum Length",
        description="Inputs longer than this are ignored by the hook",
    )
    always_confirm: bool = Field(
        default=True,
        title="Always Confirm",
        description="Prompt before running any suggestion, even safe ones",
    )
    suggestion_timeout: float = Field(
        default=10.0,
        gt=0,
        title="Suggestion Timeout",
        description="Seconds to wait for the suggestion engine",
    )
    excluded_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_PATTERNS),
        title="Excluded Patterns",
        description="Inputs containing one of these tokens are never sent out",
    )
    correct_typos: bool = Field(
        default=True,
        title="Correct Typos",
        description="Offer a local correction for near-miss command names",
    )
    verbose: bool = Field(
        default=False,
        title="Verbose",
        description="Report why the hook skipped an input",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        title="Log Level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        title="Log Format",
    )

    # Audit trail
    audit_enabled: bool = Field(
        default=False,
        title="Audit Enabled",
        description="Record hook outcomes in a JSONL audit trail",
    )
    audit_dir: Path = Field(
        default_factory=lambda: Path.home() / ".local" / "share" / APP_NAME / "audit",
        title="Audit Directory",
    )

    # Classifier
    rules_file: Path | None = Field(
        default=None,
        title="Rules File",
        description="YAML file with additional block/confirm/allow rules",
    )

    # Runner
    run_timeout: float = Field(
        default=300.0,
        gt=0,
        title="Run Timeout",
        description="Seconds before a handed-off command is killed",
    )

    # Suggestion engine
    openai_api_key: str | None = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
        title="OpenAI API Key",
    )
    openai_model: str = Field(default="gpt-4o-mini", title="Model")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        title="API Base URL",
    )
    max_tokens: int = Field(default=500, gt=0, title="Max Tokens")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0, title="Temperature")
    max_retries: int = Field(default=3, ge=1, title="Max Attempts")

    @field_validator("audit_dir", "rules_file", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path | None) -> Path | None:
        """Expand ~ in paths."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @model_validator(mode="after")
    def check_length_bounds(self) -> "CmdGateSettings":
        if self.max_length < self.min_length:
            raise ValueError(
                f"max_length ({self.max_length}) must be >= min_length ({self.min_length})"
            )
        return self

    @property
    def has_api_key(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Layer JSON config files between the environment and .env.

        JSON sources are only included if the files exist.
        """
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]

        project_json = _get_json_config_source(settings_cls, project_config_path())
        if project_json:
            sources.append(project_json)

        user_json = _get_json_config_source(settings_cls, user_config_path())
        if user_json:
            sources.append(user_json)

        sources.append(dotenv_settings)
        return tuple(sources)


@dataclass(frozen=True)
class HookConfig:
    """Immutable view of the settings the hook acts on."""

    enabled: bool = False
    min_length: int = 3
    max_length: int = 200
    always_confirm: bool = True
    suggestion_timeout: float = 10.0
    excluded_patterns: frozenset[str] = frozenset(DEFAULT_EXCLUDED_PATTERNS)
    correct_typos: bool = True
    verbose: bool = False

    @classmethod
    def from_settings(cls, settings: CmdGateSettings) -> "HookConfig":
        return cls(
            enabled=settings.hook_enabled,
            min_length=settings.min_length,
            max_length=settings.max_length,
            always_confirm=settings.always_confirm,
            suggestion_timeout=settings.suggestion_timeout,
            excluded_patterns=frozenset(p for p in settings.excluded_patterns if p.strip()),
            correct_typos=settings.correct_typos,
            verbose=settings.verbose,
        )


_settings_instance: CmdGateSettings | None = None


def get_settings() -> CmdGateSettings:
    """Get the process-wide settings, loading them on first access."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = CmdGateSettings()
    return _settings_instance


def set_settings(settings: CmdGateSettings) -> None:
    """Replace the process-wide settings instance."""
    global _settings_instance
    _settings_instance = settings


def reload_settings() -> CmdGateSettings:
    """Drop the cached settings and load them again."""
    global _settings_instance
    _settings_instance = None
    return get_settings()


def validate_settings(settings: CmdGateSettings) -> None:
    """Validate settings needed to contact the suggestion engine.

    Raises:
        SettingsValidationError: If no API key is configured.
    """
    if not settings.has_api_key:
        raise SettingsValidationError(
            "No API key configured. Set OPENAI_API_KEY.",
            details={"field": "openai_api_key"},
        )
