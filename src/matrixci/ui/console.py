"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # jobs run in parallel; keep each print whole
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        project: str,
        matrix: str,
        job_count: int,
        tag: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Project: {project}",
            f"Matrix: {matrix}",
            f"Jobs: {job_count}",
            f"Tag: {tag or '(none)'}",
            "",
        )

    def print_plan_job(self, name: str, detail: str) -> None:
        """Print one expanded job."""
        self._out(f"  {name} ({detail})")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"[{name}] JOB STARTED")

    def print_stage(self, job: str, stage: str) -> None:
        """Print stage start message."""
        self._out(f"[{job}] STAGE: {stage}")

    def print_command(self, job: str, command: str) -> None:
        self._out(f"[{job}] $ {command}")

    def print_command_skipped(self, job: str, command: str, reason: str) -> None:
        self._out(f"[{job}] skip: {command} ({reason})")

    def print_stage_failed(self, job: str, stage: str, exit_code: int, output: str = "") -> None:
        """
        Print a failed stage.

        In debug mode the full captured output is shown, otherwise only the
        last few lines.
        """
        lines = [f"[{job}] STAGE FAILED: {stage}", f"[{job}] Exit code: {exit_code}"]
        if output:
            tail = output.splitlines() if self.debug else output.splitlines()[-10:]
            lines.extend(f"[{job}]   {line}" for line in tail)
        self._out(*lines)

    def print_deploy_decision(self, job: str, fire: bool, reason: str) -> None:
        state = "fire" if fire else "skip"
        self._out(f"[{job}] DEPLOY: {state} ({reason})")

    def print_job_finished(self, name: str, status: str) -> None:
        self._out(f"[{name}] STATUS: {status}")

    def print_results(self, results) -> None:
        """Print final results summary (one line per job)."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for r in results:
            status_display = "SUCCESS" if r.status == "ok" else r.status.upper()
            line = f"  {r.job.name}: {status_display}"
            if r.error is not None:
                line += f" (stage={r.error.stage}, exit={r.error.exit_code})"
            if r.deploy_failed:
                line += " [deploy failed]"
            elif r.deploy is not None and r.deploy.fire:
                line += " [deployed]"
            lines.append(line)
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
        lines = [f"\nERROR: {title}", f"{message}"]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

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
