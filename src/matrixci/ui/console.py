"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

from matrixci.model import ExecutionResult, PipelineResult, Status

if TYPE_CHECKING:
    from matrixci.model import Event
    from matrixci.plan import Plan


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
                and captured step output for passing instances
        """
        self.debug = debug
        # instances report from worker threads
        self._lock = threading.Lock()

    def _emit(self, text: str, *, err: bool = False) -> None:
        with self._lock:
            print(text, file=sys.stderr if err else sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}\n" + "-" * len(title))

    def print_run_started(self, pipeline: str, source: str, event: "Event") -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED\n"
            f"Pipeline: {pipeline}\n"
            f"Definition: {source}\n"
            f"Event: {event.kind.value} on {event.branch}\n"
        )

    def print_not_triggered(self, pipeline: str, event: "Event") -> None:
        self._emit(f"Pipeline '{pipeline}' is not triggered by {event.kind.value} on {event.branch}; nothing to run.")

    def print_instance_start(self, label: str) -> None:
        self._emit(f"JOB STARTED: {label}")

    def print_step(self, label: str, step: str) -> None:
        self._emit(f"[{label}] STEP: {step}")

    def print_instance_done(self, result: ExecutionResult) -> None:
        label = result.instance.label
        if result.status is Status.PASSED:
            self._emit(f"[{label}] STATUS: passed ({result.duration:.1f}s)")
            return
        if result.status is Status.SKIPPED:
            self._emit(f"[{label}] STATUS: skipped ({result.reason})")
            return

        kind = "non-blocking failure" if result.non_blocking else "failed"
        self._emit(f"[{label}] STATUS: {kind} at step '{result.step}' ({result.reason})")
        if result.output:
            if self.debug:
                self._emit(result.output)
            else:
                # last line is usually the most useful one
                tail = result.output.strip().splitlines()[-1:] or [""]
                self._emit(f"[{label}] {tail[0]}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._emit(f"JOB SKIPPED: {name} ({reason})")

    def print_plan(self, plan: "Plan") -> None:
        """Print compiled job order and every job instance."""
        self.print_header(f"PLAN: {plan.pipeline.name}")
        for idx, planned in enumerate(plan.jobs, start=1):
            job = planned.job
            extra = []
            if job.needs:
                extra.append(f"needs {', '.join(job.needs)}")
            if job.runs_on:
                extra.append(f"runs-on {job.runs_on}")
            suffix = f" ({'; '.join(extra)})" if extra else ""
            self._emit(f"{idx}. {job.name}{suffix}")
            for p in planned.instances:
                flags = []
                if p.instance.continue_on_error:
                    flags.append("continue-on-error")
                if p.instance.timeout is not None:
                    flags.append(f"timeout {p.instance.timeout:g}s")
                shown = f"  [{', '.join(flags)}]" if flags else ""
                self._emit(f"   - {p.instance.label}{shown}")
                if self.debug:
                    for step in p.steps:
                        self._emit(f"       {step.name}")

    def print_results(self, result: PipelineResult) -> None:
        """Print final per-instance status table."""
        rows = []
        for r in result.results:
            if r.status is Status.PASSED:
                status = "PASSED"
            elif r.status is Status.SKIPPED:
                status = "SKIPPED"
            else:
                status = "FAILED (non-blocking)" if r.non_blocking else "FAILED"
            rows.append((r.instance.label, status, r.reason or ""))

        width = max([len("INSTANCE")] + [len(r[0]) for r in rows])
        status_width = max([len("STATUS")] + [len(r[1]) for r in rows])

        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        lines.append(f"  {'INSTANCE'.ljust(width)}  {'STATUS'.ljust(status_width)}  NOTE")
        for label, status, note in rows:
            lines.append(f"  {label.ljust(width)}  {status.ljust(status_width)}  {note}".rstrip())
        lines.append("")
        verdict = result.status.value.upper()
        if result.cancelled:
            verdict += " (cancelled)"
        lines.append(f"PIPELINE {result.pipeline}: {verdict}")
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

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
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


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
