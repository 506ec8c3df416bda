"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..deploy import DeployResult
    from ..model import Event, RunResult


class Console:
    """
    Centralized console output formatting.

    Jobs run in worker threads, so every print goes through one lock and
    job-scoped lines carry a `[job]` prefix.
    """

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where normal output goes (defaults to sys.stdout at print time)
        """
        self.debug = debug
        self.stream = stream
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        target = sys.stderr if err else (self.stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=target)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, pipeline: str, event: "Event", job_count: int) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Event: {event.type} ({event.branch})",
            f"Jobs: {job_count}",
            "",
        )

    def print_not_triggered(self, pipeline: str, event: "Event") -> None:
        self._out(f"Pipeline '{pipeline}' is not triggered by {event.type} on '{event.branch}'; nothing to do.")

    def print_stage(self, index: int, jobs: list[str]) -> None:
        self._out(f"=== Stage {index}: {jobs} ===")

    def print_job_start(self, name: str, platform: str) -> None:
        """Print job start message."""
        self._out(f"\nJOB STARTED: {name} [{platform}]")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_step_skipped(self, job: str, name: str, reason: str) -> None:
        self._out(f"[{job}] STEP SKIPPED: {name} ({reason})")

    def print_success(self, job: str) -> None:
        """Print success message."""
        self._out(f"[{job}] STATUS: success")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._out(*lines)

    def print_cancelled(self, job: str, reason: str) -> None:
        self._out(f"[{job}] STATUS: cancelled ({reason})")

    def print_output(self, job: str, text: str) -> None:
        """Command output, indented under its job."""
        text = text.rstrip()
        if text:
            self._out(*(f"[{job}] | {line}" for line in text.splitlines()))

    def print_cache_hit(self, job: str, key: str) -> None:
        """Print cache hit message."""
        self._out(f"[{job}] CACHE: hit ({key})")

    def print_cache_miss(self, job: str, key: str, reason: str = "cache miss") -> None:
        """Print cache miss message."""
        self._out(f"[{job}] CACHE: miss ({key}; {reason})")

    def print_cache_saved(self, job: str, key: str) -> None:
        """Print cache save message."""
        self._out(f"[{job}] CACHE: saved ({key})")

    def print_deploy(self, job: str, result: "DeployResult") -> None:
        lines = [
            f"[{job}] DEPLOY: {result.target}",
            f"[{job}]   added={len(result.added)} updated={len(result.updated)} "
            f"deleted={len(result.deleted)} preserved={len(result.preserved)}",
        ]
        if result.commit:
            lines.append(f"[{job}]   commit={result.commit[:12]}")
        self._out(*lines)

    def print_results(self, result: "RunResult") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for name, job in result.jobs.items():
            lines.append(f"  {name}: {job.status.upper()}")
        lines.append(f"Run status: {result.status.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
