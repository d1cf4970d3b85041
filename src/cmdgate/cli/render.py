"""Rich rendering for verdicts, hook outcomes and settings."""

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from cmdgate.hook.admission import AdmissionDecision
from cmdgate.hook.error_classifier import CATEGORY_HINTS, ErrorCategory
from cmdgate.hook.orchestrator import HookOutcome, HookState
from cmdgate.safety.models import RiskTier, Verdict
from cmdgate.suggest.base import Suggestion

TIER_STYLES = {
    RiskTier.AUTO_EXECUTE: "green",
    RiskTier.CONFIRM: "yellow",
    RiskTier.BLOCKED: "bold red",
}


def verdict_panel(verdict: Verdict) -> Panel:
    style = TIER_STYLES[verdict.tier]
    table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row("Command", Text(verdict.command))
    table.add_row("Tier", Text(verdict.tier.label, style=style))
    if verdict.overridden:
        table.add_row("Override", "[yellow]blocked verdict relaxed to confirm[/yellow]")
    if verdict.encodings:
        table.add_row("Encodings", ", ".join(verdict.encodings))
    for i, match in enumerate(verdict.matches):
        table.add_row("Reasons" if i == 0 else "", Text(match.describe()))

    return Panel(table, title="[bold]Risk Verdict[/bold]", border_style=style.split()[-1])


def suggestion_panel(suggestion: Suggestion, verdict: Verdict) -> Panel:
    style = TIER_STYLES[verdict.tier]
    body = Text()
    body.append(suggestion.command, style="bold")
    if suggestion.explanation:
        body.append("\n" + suggestion.explanation, style="dim")
    if verdict.matches:
        body.append("\n")
        for reason in verdict.matched_reasons:
            body.append(f"\n- {reason}", style=style)
    title = f"[bold]Suggested command[/bold] ({verdict.tier.label})"
    return Panel(body, title=title, border_style=style.split()[-1])


def admission_table(decision: AdmissionDecision) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Proceed", "[green]yes[/green]" if decision.proceed else "[yellow]no[/yellow]")
    if decision.skip_reason is not None:
        table.add_row("Reason", decision.skip_reason.value)
    if decision.correction:
        table.add_row("Correction", Text(decision.correction))
    table.add_row("Detail", Text(decision.detail))
    return table


def category_table(category: ErrorCategory) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Category", category.value)
    table.add_row("Hint", CATEGORY_HINTS[category])
    return table


def settings_table(values: dict[str, Any]) -> Table:
    table = Table(title="cmdgate settings", show_header=True)
    table.add_column("Setting", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    for key, value in values.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            value = ", ".join(sorted(str(v) for v in value)) or "(none)"
        table.add_row(key, Text(str(value)))
    return table


def render_outcome(console: Console, outcome: HookOutcome, verbose: bool = False) -> None:
    """Print what the hook decided, staying quiet for silent skips."""
    state = outcome.state
    if state == HookState.SKIPPED:
        if verbose and outcome.message:
            console.print(Text(f"cmdgate: {outcome.message}", style="dim"))
    elif state in (HookState.TIMED_OUT, HookState.NO_SUGGESTION):
        console.print("[dim]cmdgate: no suggestion available[/dim]")
    elif state == HookState.BLOCKED_TERMINAL and outcome.suggestion and outcome.verdict:
        console.print(suggestion_panel(outcome.suggestion, outcome.verdict))
        console.print("[bold red]cmdgate: suggestion blocked, not running it[/bold red]")
    elif state == HookState.DECLINED:
        console.print("[dim]cmdgate: not running the suggestion[/dim]")
    elif state == HookState.HANDED_OFF and outcome.suggestion:
        if outcome.verdict and not outcome.verdict.requires_confirmation:
            console.print(Text.assemble(("cmdgate: running ", "dim"), outcome.suggestion.command))
        run = outcome.run_result
        if run is not None and run.timed_out:
            console.print("[yellow]cmdgate: command timed out[/yellow]")
        if outcome.message:
            console.print(Text(f"cmdgate: {outcome.message}", style="red"))


class RichConfirmer:
    """Asks the user before a suggestion is handed off."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def __call__(self, suggestion: Suggestion, verdict: Verdict) -> bool:
        self.console.print(suggestion_panel(suggestion, verdict))
        try:
            return Confirm.ask("Run this command?", default=False, console=self.console)
        except (EOFError, KeyboardInterrupt):
            self.console.print()
            return False
