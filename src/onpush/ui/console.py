"""Console output formatting utilities for onpush."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Iterable, Optional

from ..secrets import SecretMasker

if TYPE_CHECKING:
    from ..model import PipelineResult


class Console:
    """Centralized console output formatting. Safe to call from job threads."""

    def __init__(self, debug: bool = False, masker: Optional[SecretMasker] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            masker: Secret masker applied to every line written
        """
        self.debug = debug
        self.masker = masker or SecretMasker()
        self._lock = threading.Lock()

    def with_secrets(self, values: Iterable[str]) -> Console:
        """A console sharing this one's output and settings whose masker also hides `values`."""
        scoped = Console(debug=self.debug, masker=self.masker.extended(values))
        scoped._lock = self._lock
        return scoped

    def _emit(self, text: str, *, err: bool = False) -> None:
        text = self.masker.mask(text)
        with self._lock:
            print(text, file=sys.stderr if err else sys.stdout, flush=True)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}\n{'-' * len(title)}")

    def print_run_started(
        self,
        pipeline: str,
        event: str,
        ref: str,
        run_id: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED\n"
            f"Pipeline: {pipeline}\n"
            f"Event: {event} ({ref})\n"
            f"Run ID: {run_id}\n"
            f"Jobs: {job_count}\n"
        )

    def print_not_triggered(self, pipeline: str, event: str, ref: str) -> None:
        self._emit(f"\nPipeline {pipeline} is not triggered by {event} on {ref}; nothing to run.")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._emit(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._emit(f"[{job}] STEP: {name}")

    def print_step_skipped(self, job: str, name: str) -> None:
        self._emit(f"[{job}] SKIPPED: {name}")

    def print_job_finished(self, name: str, status: str, duration: Optional[float] = None) -> None:
        suffix = f" in {duration:.1f}s" if duration is not None else ""
        self._emit(f"JOB {status.upper()}: {name}{suffix}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print step failure message.

        Args:
            name: Step name, prefixed with its job
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            output: Optional tail of the command output
        """
        lines = [f"STEP FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        if output:
            lines.append(output.rstrip())
        self._emit("\n".join(lines))

    def print_artifact(self, job: str, name: str, path: str) -> None:
        self._emit(f"[{job}] ARTIFACT: {name} -> {path}")

    def print_plan(self, levels: list[list[str]]) -> None:
        """Print the scheduling stages of a pipeline."""
        for idx, level in enumerate(levels):
            self._emit(f"  stage {idx + 1}: {', '.join(level)}")

    def print_results(self, result: PipelineResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for name, job in result.jobs.items():
            code = f" (exit {job.exit_code})" if job.exit_code is not None else ""
            lines.append(f"  {name}: {job.status.value.upper()}{code}")
        lines.append(f"PIPELINE: {result.status.upper()}")
        self._emit("\n".join(lines))

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
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit("\n".join(lines), err=True)

    def print_warning(self, message: str) -> None:
        self._emit(f"WARNING: {message}", err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            self._emit("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Optional[Console]) -> None:
    """Set the global console instance."""
    global _console
    _console = console
