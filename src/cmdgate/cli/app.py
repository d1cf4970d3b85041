"""CLI entrypoint for cmdgate.

Exit codes of ``cmdgate classify``: 0 auto-execute, 1 confirm, 2 blocked,
3 malformed input. ``cmdgate hook`` exits 124 when the suggestion timed
out, 2 when the suggestion was blocked, the command's exit code after a
handoff, and otherwise the exit code of the original failure.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console

from cmdgate import __version__
from cmdgate.cli.render import (
    RichConfirmer,
    admission_table,
    category_table,
    render_outcome,
    settings_table,
    verdict_panel,
)
from cmdgate.config import CmdGateSettings, HookConfig, get_settings, set_settings
from cmdgate.errors import CmdGateError
from cmdgate.hook.admission import AdmissionFilter
from cmdgate.hook.audit import AuditConfig, HookAuditLogger
from cmdgate.hook.context import ErrorContext
from cmdgate.hook.error_classifier import ErrorClassifier
from cmdgate.hook.orchestrator import HookOrchestrator, HookOutcome, HookRequest, HookState
from cmdgate.logging import Loggers, configure_logging
from cmdgate.runner import HOOK_ACTIVE_ENV, TIMEOUT_EXIT_CODE, SubprocessRunner
from cmdgate.safety.classifier import get_classifier
from cmdgate.settings_persistence import SettingsPersistence
from cmdgate.suggest.openai import OpenAISuggestionEngine

logger = Loggers.cli()

EXIT_MALFORMED_INPUT = 3
EXIT_CONFIGURATION_ERROR = 4

# Settings shown by `config show`
SHOWN_SETTINGS = (
    "hook_enabled",
    "min_length",
    "max_length",
    "always_confirm",
    "suggestion_timeout",
    "excluded_patterns",
    "correct_typos",
    "verbose",
    "log_level",
    "audit_enabled",
    "rules_file",
    "openai_model",
    "openai_base_url",
)


class ConfigurationError(click.ClickException):
    """Unusable settings or rules file. Exits outside the verdict codes 0-2."""

    exit_code = EXIT_CONFIGURATION_ERROR


def _settings(ctx: click.Context) -> CmdGateSettings:
    return ctx.obj["settings"]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Override the configured log level",
)
@click.option("--verbose", "-v", is_flag=True, help="Report why inputs are skipped")
@click.version_option(__version__, prog_name="cmdgate")
@click.pass_context
def main(ctx: click.Context, log_level: str | None, verbose: bool) -> None:
    """cmdgate: risk gate for suggested shell commands."""
    overrides: dict[str, Any] = {}
    if log_level:
        overrides["log_level"] = log_level
    if verbose:
        overrides["verbose"] = True

    try:
        settings = CmdGateSettings(**overrides) if overrides else get_settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}")
    set_settings(settings)
    configure_logging(settings)
    ctx.obj = {"settings": settings}


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.option("--override", is_flag=True, help="Relax a blocked verdict to confirm")
@click.option("--json", "as_json", is_flag=True, help="Print the verdict as JSON")
@click.pass_context
def classify(ctx: click.Context, command: tuple[str, ...], override: bool, as_json: bool) -> None:
    """Classify COMMAND (use - to read it from stdin).

    Options go before the command: everything after it is part of it.
    """
    text = sys.stdin.read() if command == ("-",) else " ".join(command)
    if not text.strip():
        click.echo("malformed input: empty command", err=True)
        ctx.exit(EXIT_MALFORMED_INPUT)

    try:
        classifier = get_classifier()
    except CmdGateError as e:
        raise ConfigurationError(e.message)

    verdict = classifier.classify(text, override=override)
    if as_json:
        click.echo(json.dumps(verdict.to_dict(), indent=2))
    else:
        Console().print(verdict_panel(verdict))
    ctx.exit(verdict.exit_code)


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("name")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--exit-code", type=int, default=127, show_default=True, help="Exit code of the failure")
@click.option("--stderr", "stderr_text", default="", help="Captured standard error")
@click.option("--stdout", "stdout_text", default="", help="Captured standard output")
@click.option("--pwd", "current_directory", default=None, help="Working directory of the shell")
@click.option("--user-context", default=None, help="Free-form context from the shell integration")
@click.option("--last-command", default=None, help="Previous command in the history")
@click.option("--recent-similar", default=None, help="Recent history entry resembling the input")
@click.option("--preexec", is_flag=True, help="Called before execution rather than after a failure")
@click.option("--json", "as_json", is_flag=True, help="Print the outcome as JSON")
@click.pass_context
def hook(
    ctx: click.Context,
    name: str,
    args: tuple[str, ...],
    exit_code: int,
    stderr_text: str,
    stdout_text: str,
    current_directory: str | None,
    user_context: str | None,
    last_command: str | None,
    recent_similar: str | None,
    preexec: bool,
    as_json: bool,
) -> None:
    """Handle a failed shell input NAME [ARGS]..."""
    settings = _settings(ctx)
    console = Console(stderr=True)

    request = HookRequest(
        context=ErrorContext(
            command=name,
            args=args,
            exit_code=exit_code,
            stderr=stderr_text,
            stdout=stdout_text,
            current_directory=current_directory or os.getcwd(),
            user_context=user_context,
            last_command=last_command,
            recent_similar=recent_similar,
            preexec_mode=preexec,
        ),
        nested=os.environ.get(HOOK_ACTIVE_ENV) == "1",
    )

    try:
        orchestrator = build_orchestrator(settings, console)
    except CmdGateError as e:
        raise ConfigurationError(e.message)

    outcome = asyncio.run(orchestrator.handle(request))
    if as_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2))
    else:
        render_outcome(console, outcome, verbose=settings.verbose)
    ctx.exit(hook_exit_code(outcome, exit_code))


def build_orchestrator(settings: CmdGateSettings, console: Console) -> HookOrchestrator:
    """Wire an orchestrator from settings."""
    engine = None
    if settings.has_api_key:
        engine = OpenAISuggestionEngine.from_settings(settings)
    else:
        logger.debug("suggestion_engine_unconfigured")

    audit = None
    if settings.audit_enabled:
        audit = HookAuditLogger(AuditConfig.from_settings(settings))

    return HookOrchestrator(
        config=HookConfig.from_settings(settings),
        engine=engine,
        confirmer=RichConfirmer(console),
        handoff=SubprocessRunner(timeout=settings.run_timeout, capture_output=False),
        classifier=get_classifier(),
        audit=audit,
    )


def hook_exit_code(outcome: HookOutcome, original: int) -> int:
    if outcome.state == HookState.TIMED_OUT:
        return TIMEOUT_EXIT_CODE
    if outcome.state == HookState.BLOCKED_TERMINAL:
        return 2
    if outcome.state == HookState.HANDED_OFF and outcome.run_result is not None:
        return outcome.run_result.exit_code
    return original


@main.command()
@click.argument("text", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Print the decision as JSON")
@click.pass_context
def admit(ctx: click.Context, text: tuple[str, ...], as_json: bool) -> None:
    """Show whether INPUT would be sent to the suggestion engine."""
    config = HookConfig.from_settings(_settings(ctx))
    decision = AdmissionFilter(config).evaluate(" ".join(text))
    if as_json:
        click.echo(json.dumps({
            "proceed": decision.proceed,
            "skip_reason": decision.skip_reason.value if decision.skip_reason else None,
            "correction": decision.correction,
            "detail": decision.detail,
        }, indent=2))
    else:
        Console().print(admission_table(decision))


@main.command()
@click.option("--exit-code", type=int, default=None, help="Exit code of the failure")
@click.option("--stderr", "stderr_text", default="", help="Captured standard error")
@click.option("--stdout", "stdout_text", default="", help="Captured standard output")
@click.option("--command", "command", default=None, help="The command that failed")
def diagnose(exit_code: int | None, stderr_text: str, stdout_text: str, command: str | None) -> None:
    """Classify why a command failed."""
    category = ErrorClassifier().classify(exit_code, stderr_text, stdout_text, command=command)
    Console().print(category_table(category))


@main.group()
@click.option("--user", "user_scope", is_flag=True, help="Write ~/.cmdgate instead of ./.cmdgate")
@click.pass_context
def config(ctx: click.Context, user_scope: bool) -> None:
    """Show or change the hook configuration."""
    ctx.obj["persistence"] = SettingsPersistence(scope="user" if user_scope else "project")


def _save(ctx: click.Context, changes: dict[str, Any]) -> None:
    persistence: SettingsPersistence = ctx.obj["persistence"]
    path = persistence.update(changes)
    click.echo(f"Saved to {path}")


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the effective configuration."""
    settings = _settings(ctx)
    values = {key: getattr(settings, key) for key in SHOWN_SETTINGS}
    values["openai_api_key"] = "set" if settings.has_api_key else "not set"
    Console().print(settings_table(values))


@config.command("enable")
@click.pass_context
def config_enable(ctx: click.Context) -> None:
    """Enable the hook."""
    _save(ctx, {"hook_enabled": True})


@config.command("disable")
@click.pass_context
def config_disable(ctx: click.Context) -> None:
    """Disable the hook."""
    _save(ctx, {"hook_enabled": False})


@config.group("exclude")
def exclude() -> None:
    """Manage excluded patterns."""


@exclude.command("list")
@click.pass_context
def exclude_list(ctx: click.Context) -> None:
    """List excluded patterns."""
    for pattern in sorted(_settings(ctx).excluded_patterns):
        click.echo(pattern)


@exclude.command("add")
@click.argument("patterns", nargs=-1, required=True)
@click.pass_context
def exclude_add(ctx: click.Context, patterns: tuple[str, ...]) -> None:
    """Add excluded PATTERNS."""
    current = list(_settings(ctx).excluded_patterns)
    current += [p for p in patterns if p.strip() and p not in current]
    _save(ctx, {"excluded_patterns": current})


@exclude.command("remove")
@click.argument("patterns", nargs=-1, required=True)
@click.pass_context
def exclude_remove(ctx: click.Context, patterns: tuple[str, ...]) -> None:
    """Remove excluded PATTERNS."""
    current = list(_settings(ctx).excluded_patterns)
    missing = [p for p in patterns if p not in current]
    if missing:
        raise click.ClickException(f"Not excluded: {', '.join(missing)}")
    _save(ctx, {"excluded_patterns": [p for p in current if p not in patterns]})


@exclude.command("set")
@click.argument("patterns", nargs=-1)
@click.pass_context
def exclude_set(ctx: click.Context, patterns: tuple[str, ...]) -> None:
    """Replace all excluded patterns with PATTERNS."""
    _save(ctx, {"excluded_patterns": [p for p in patterns if p.strip()]})


if __name__ == "__main__":
    main()
