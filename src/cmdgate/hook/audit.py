"""Audit trail for hook invocations.

- One JSONL record per invocation that got past admission
- Daily files under the configured audit directory
- Query and retention helpers for review
"""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from itertools import islice
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

from cmdgate.hook.orchestrator import HookOutcome, HookRequest, HookState
from cmdgate.logging import Loggers

if TYPE_CHECKING:
    from cmdgate.config import CmdGateSettings

logger = Loggers.hook()

FILE_PREFIX = "hook_audit_"
DATE_FORMAT = "%Y-%m-%d"

# Fields every stored line is expected to carry
REQUIRED_FIELDS = ("timestamp", "session_id", "input", "state")


@dataclass
class AuditEntry:
    """A single audit record.

    Attributes:
        timestamp: When the invocation finished (ISO format).
        session_id: Identifier grouping records of one process.
        input: The failed input as typed.
        state: Terminal hook state.
        trail: States visited.
        exit_code: Exit code the shell reported.
        error_category: Category of the original failure.
        suggestion: Suggested command, if any.
        suggestion_source: Engine name or "local".
        tier: Routing tier of the suggestion.
        reasons: Verdict reasons.
        error_code: Failure code of the invocation, if any.
        run_exit_code: Exit code of the handed-off command.
        duration_ms: Duration of the handed-off command.
        working_dir: Directory the failure happened in.
    """

    timestamp: str
    session_id: str
    input: str
    state: str
    trail: list[str] = field(default_factory=list)
    exit_code: int | None = None
    error_category: str | None = None
    suggestion: str | None = None
    suggestion_source: str | None = None
    tier: str | None = None
    reasons: list[str] = field(default_factory=list)
    error_code: str | None = None
    run_exit_code: int | None = None
    duration_ms: int | None = None
    working_dir: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Fields with a value; None and empty collections are left out."""
        return {key: value for key, value in asdict(self).items() if value not in (None, [], "")}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEntry":
        values = dict.fromkeys(REQUIRED_FIELDS, "")
        values.update((key, value) for key, value in data.items() if key in cls.__dataclass_fields__)
        return cls(**values)

    def matches(self, input_pattern: str | None, state: str | None, session_id: str | None) -> bool:
        return (
            (not input_pattern or input_pattern in self.input)
            and (not state or self.state == state)
            and (not session_id or self.session_id == session_id)
        )


@dataclass
class AuditConfig:
    enabled: bool = True
    log_dir: Path = field(default_factory=lambda: Path("~/.local/share/cmdgate/audit"))
    retention_days: int = 30

    @property
    def directory(self) -> Path:
        return Path(self.log_dir).expanduser()

    @classmethod
    def from_settings(cls, settings: "CmdGateSettings") -> "AuditConfig":
        return cls(enabled=settings.audit_enabled, log_dir=settings.audit_dir)


def _file_day(path: Path) -> date | None:
    try:
        return datetime.strptime(path.stem.removeprefix(FILE_PREFIX), DATE_FORMAT).date()
    except ValueError:
        return None


def _read_entries(path: Path) -> Iterator[AuditEntry]:
    with path.open() as f:
        for line in f:
            try:
                yield AuditEntry.from_dict(json.loads(line))
            except (ValueError, TypeError, AttributeError):
                continue  # malformed line


class HookAuditLogger:
    """Writes hook outcomes in JSONL format, one file per day."""

    def __init__(self, config: AuditConfig | None = None, session_id: str | None = None):
        self.config = config or AuditConfig()
        self.session_id = session_id or uuid.uuid4().hex[:8]

    def path_for(self, day: date) -> Path:
        return self.config.directory / f"{FILE_PREFIX}{day.strftime(DATE_FORMAT)}.jsonl"

    def log(self, entry: AuditEntry) -> None:
        """Append an entry. Write failures are logged, never raised."""
        if not self.config.enabled:
            return
        path = self.path_for(date.today())
        line = json.dumps(entry.to_dict()) + "\n"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a") as f:
                f.write(line)
        except OSError as e:
            logger.warning("audit_write_failed", path=str(path), error=str(e))

    def record(self, request: HookRequest, outcome: HookOutcome) -> AuditEntry | None:
        """Record an outcome.

        Skipped inputs are not recorded: they never left the machine and
        nothing was suggested.

        Returns:
            The written entry, or None when nothing was recorded.
        """
        if not self.config.enabled or outcome.state == HookState.SKIPPED:
            return None

        suggestion = outcome.suggestion
        verdict = outcome.verdict
        run = outcome.run_result
        entry = AuditEntry(
            timestamp=datetime.now().isoformat(),
            session_id=self.session_id,
            input=request.raw_input,
            state=outcome.state.value,
            trail=[s.value for s in outcome.trail],
            exit_code=request.context.exit_code,
            error_category=outcome.error_category.value if outcome.error_category else None,
            suggestion=suggestion.command if suggestion else None,
            suggestion_source=suggestion.source if suggestion else None,
            tier=verdict.tier.label if verdict else None,
            reasons=list(verdict.matched_reasons) if verdict else [],
            error_code=outcome.error_code,
            run_exit_code=run.exit_code if run else None,
            duration_ms=run.duration_ms if run else None,
            working_dir=request.context.current_directory,
        )
        self.log(entry)
        return entry

    def files_between(self, first: date, last: date) -> Iterator[Path]:
        """Existing daily files from ``first`` to ``last`` inclusive."""
        for offset in range((last - first).days + 1):
            path = self.path_for(first + timedelta(days=offset))
            if path.exists():
                yield path

    def query(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        input_pattern: str | None = None,
        state: str | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> Iterator[AuditEntry]:
        """Matching entries, oldest first.

        The range defaults to the week before ``end_date`` (itself defaulting
        to now). Filters combine; ``input_pattern`` is a substring match.
        """
        end = (end_date or datetime.now()).date()
        start = start_date.date() if start_date else end - timedelta(days=7)
        entries = (
            entry
            for path in self.files_between(start, end)
            for entry in _read_entries(path)
            if entry.matches(input_pattern, state, session_id)
        )
        yield from islice(entries, max(limit, 0))

    def cleanup_old_logs(self) -> int:
        """Delete daily files past the retention period; returns how many."""
        directory = self.config.directory
        if not directory.exists():
            return 0

        cutoff = date.today() - timedelta(days=self.config.retention_days)
        stale = [path for path in directory.glob(f"{FILE_PREFIX}*.jsonl") if (_file_day(path) or cutoff) < cutoff]
        for path in stale:
            path.unlink(missing_ok=True)
        if stale:
            logger.info("audit_files_removed", count=len(stale), directory=str(directory))
        return len(stale)
