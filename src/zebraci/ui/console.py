"""Console output formatting utilities for zebra-ci."""

from __future__ import annotations

import sys
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

    def print_pipeline_started(
        self,
        repository: str,
        pipeline: str,
        step_count: int,
    ) -> None:
        """Print pipeline start information."""
        print("\nPIPELINE STARTED")
        print(f"Repository: {repository}")
        print(f"Pipeline: {pipeline}")
        print(f"Steps: {step_count}")
        print()

    def print_stage_start(self, name: str) -> None:
        print(f"\nSTAGE STARTED: {name}")

    def print_step(self, stage: str, name: str) -> None:
        print(f"[{stage}] STEP: {name}")

    def print_step_skipped(self, stage: str, name: str, reason: str) -> None:
        print(f"[{stage}] STEP: {name} (skipped: {reason})")

    def print_output(self, text: str) -> None:
        """Echo captured step output into the build log."""
        if text:
            print(text.rstrip("\n"))

    def print_toolchain(self, versions: list[str]) -> None:
        """Print toolchain version lines for reproducibility auditing."""
        print("TOOLCHAIN:")
        for line in versions:
            print(f"  {line}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            output: Optional tail of the step's captured output
        """
        print(f"STEP FAILED: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if hint:
            print(f"Hint: {hint}")
        if output:
            print(output)
        if self.debug:
            print(f"Error details: {reason}")

    def print_cache(self, reason: str) -> None:
        print(f"CACHE: {reason}")

    def print_cache_saved(self, key: str) -> None:
        short_key = key[:12] + "..." if len(key) > 12 else key
        print(f"CACHE: saved ({short_key})")

    def print_results(self, results: dict[str, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for step, status in results.items():
            status_display = status.upper() if status != "ok" else "SUCCESS"
            print(f"  {step}: {status_display}")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_warning(self, message: str) -> None:
        print(f"WARNING: {message}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print the full traceback of `exc`."""
        import traceback
        traceback.print_exception(exc, file=sys.stderr)

    def print_dispatch(self, project: str, substitutions: dict[str, str]) -> None:
        print("\nDISPATCH")
        print(f"Project: {project}")
        for key, value in substitutions.items():
            print(f"Substitution: {key}={value}")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


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
