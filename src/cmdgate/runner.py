"""Process runner for handed-off commands.

The hook never executes anything itself; once a suggestion is approved it
is handed to a runner. This one runs the command through ``/bin/sh -c``
with a timeout, bounded output and a child environment marked so that a
failure inside it cannot re-enter the hook.
"""

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TYPE_CHECKING

from cmdgate.logging import Loggers

if TYPE_CHECKING:
    from cmdgate.hook.orchestrator import Handoff

logger = Loggers.hook()

# Set in the child environment of every handed-off command
HOOK_ACTIVE_ENV = "CMDGATE_HOOK_ACTIVE"

# Exit code reported for a killed command, as timeout(1) does
TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class RunResult:
    """Result of a handed-off command.

    Attributes:
        exit_code: Exit code; TIMEOUT_EXIT_CODE when killed on timeout.
        stdout: Standard output (may be truncated, empty when not captured).
        stderr: Standard error (may be truncated, empty when not captured).
        duration_ms: Wall-clock duration in milliseconds.
        timed_out: Whether the command was killed on timeout.
        truncated: Whether output was truncated.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False
    truncated: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "truncated": self.truncated,
        }


class SubprocessRunner:
    """Runs handed-off commands in a shell subprocess.

    Usable directly as the orchestrator's handoff callable.
    """

    def __init__(
        self,
        timeout: float = 300.0,
        max_output_bytes: int = 50000,
        capture_output: bool = True,
        shell: str = "/bin/sh",
        working_dir: Path | str | None = None,
    ):
        """Initialize runner.

        Args:
            timeout: Seconds before the command is killed.
            max_output_bytes: Maximum length of each captured stream.
            capture_output: Capture stdout/stderr instead of inheriting the
                terminal.
            shell: Shell used to interpret the command line.
            working_dir: Working directory, defaults to the current one.
        """
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.capture_output = capture_output
        self.shell = shell
        self.working_dir = Path(working_dir) if working_dir is not None else None

    def __call__(self, handoff: "Handoff") -> RunResult:
        return self.run(handoff.command)

    def child_env(self) -> dict[str, str]:
        return {**os.environ, HOOK_ACTIVE_ENV: "1"}

    def run(self, command: str) -> RunResult:
        """Run a command line and wait for it.

        Args:
            command: Shell command line.

        Returns:
            RunResult. Failures to start report exit code 127 or 126 the way
            a shell would.
        """
        pipe = subprocess.PIPE if self.capture_output else None
        start_time = time.monotonic()

        try:
            process = subprocess.Popen(
                [self.shell, "-c", command],
                stdout=pipe,
                stderr=pipe,
                cwd=self.working_dir,
                env=self.child_env(),
            )
        except FileNotFoundError as e:
            logger.warning("runner_start_failed", shell=self.shell, error=str(e))
            return RunResult(exit_code=127, stderr=str(e))
        except PermissionError as e:
            logger.warning("runner_start_failed", shell=self.shell, error=str(e))
            return RunResult(exit_code=126, stderr=str(e))

        timed_out = False
        try:
            stdout_bytes, stderr_bytes = process.communicate(timeout=self.timeout)
            exit_code = process.returncode
        except subprocess.TimeoutExpired:
            process.kill()
            stdout_bytes, stderr_bytes = process.communicate()
            exit_code = TIMEOUT_EXIT_CODE
            timed_out = True

        duration_ms = int((time.monotonic() - start_time) * 1000)
        stdout, stdout_truncated = self._decode_and_truncate(stdout_bytes)
        stderr, stderr_truncated = self._decode_and_truncate(stderr_bytes)

        logger.info(
            "command_finished",
            exit_code=exit_code,
            duration_ms=duration_ms,
            timed_out=timed_out,
        )
        return RunResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            timed_out=timed_out,
            truncated=stdout_truncated or stderr_truncated,
        )

    def _decode_and_truncate(self, data: bytes | None) -> tuple[str, bool]:
        """Decode bytes and truncate if necessary."""
        if not data:
            return "", False

        text = data.decode("utf-8", errors="replace")
        if len(text) > self.max_output_bytes:
            text = text[:self.max_output_bytes]
            text += f"\n... [OUTPUT TRUNCATED - exceeded {self.max_output_bytes} bytes]"
            return text, True
        return text, False
