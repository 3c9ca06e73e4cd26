"""Console output formatting utilities for actiongraph."""

from __future__ import annotations

import sys
import threading
from typing import Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-record progress lines
        """
        self.debug = debug
        self.quiet = quiet
        # workers report concurrently
        self._lock = threading.Lock()

    def _out(self, text: str, err: bool = False) -> None:
        with self._lock:
            print(text, file=sys.stderr if err else sys.stdout)

    def print_build_started(
        self,
        build_file: str,
        targets: list[str],
        records: int,
        collapsed: int,
    ) -> None:
        """Print build start information."""
        self._out(
            "\nBUILD STARTED\n"
            f"Build file: {build_file}\n"
            f"Targets: {' '.join(targets)}\n"
            f"Records: {records} ({collapsed} duplicate request(s) collapsed)\n"
        )

    def print_plan_level(self, index: int, keys: list[str]) -> None:
        """Print one topological level of the plan."""
        self._out(f"=== Level {index + 1}: {keys} ===")

    def print_record_start(self, key: str, attempt: int = 1) -> None:
        if self.quiet:
            return
        suffix = f" (attempt {attempt})" if attempt > 1 else ""
        self._out(f"RUN {key}{suffix}")

    def print_record_done(self, key: str, cached: bool) -> None:
        if self.quiet:
            return
        self._out(f"OK  {key}" + (" (cached)" if cached else ""))

    def print_failure(
        self,
        key: str,
        reason: str,
        exit_code: Optional[int] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            key: Record identity (action@tag)
            reason: Failure reason/error message
            exit_code: Optional exit code
        """
        lines = [f"FAILED {key}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            first = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {first}")
        self._out("\n".join(lines), err=True)

    def print_retry(self, key: str, attempt: int, delay: float) -> None:
        self._out(f"RETRY {key} in {delay:.1f}s (attempt {attempt} failed)")

    def print_cache_saved(self, key: str, fingerprint: str) -> None:
        """Print cache save message."""
        if self.quiet:
            return
        short = fingerprint[:12] + "..." if len(fingerprint) > 12 else fingerprint
        self.print_debug(f"{key}: cache saved ({short})")

    def print_results(self, results: dict[str, str]) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for key, status in results.items():
            status_display = status.upper() if status != "ok" else "SUCCESS"
            lines.append(f"  {key}: {status_display}")
        self._out("\n".join(lines))

    def print_test_results(self, results: dict[str, str]) -> None:
        """Print a per-test summary."""
        lines = ["\n" + "=" * 40, "TESTS", "=" * 40]
        for key, status in results.items():
            if status == "ok":
                shown = "PASSED"
            elif status == "cached":
                shown = "(cached) PASSED"
            elif status == "failed":
                shown = "FAILED"
            else:
                shown = status.upper()
            lines.append(f"  {key}: {shown}")
        self._out("\n".join(lines))

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
        self._out("\n".join(lines), err=True)

    def print_warning(self, message: str) -> None:
        """Print warning message."""
        self._out(f"WARNING: {message}", err=True)

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
