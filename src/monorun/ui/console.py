"""Console output formatting utilities for monorun."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from ..operations.operation import Operation
    from ..operations.scheduler import RunResult

LOG_TAIL_LINES = 30


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
                   and the full output of failed operations
        """
        self.debug = debug
        # worker threads print concurrently
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(
        self,
        repository: str,
        command: str,
        operation_count: int,
        parallelism: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Command: {command}",
            f"Operations: {operation_count}",
            f"Parallelism: {parallelism}",
            "",
        )

    def print_operation_started(self, name: str) -> None:
        self._emit(f"==[ {name} ]== started")

    def print_operation_finished(self, op: "Operation") -> None:
        """Print the terminal status of an operation (and its output on failure)."""
        from ..operations.status import OperationStatus

        duration = f" ({op.duration:.2f}s)" if op.duration is not None else ""
        lines = [f"==[ {op.name} ]== {op.status.value.upper()}{duration}"]

        if op.status is OperationStatus.FAILURE:
            if op.exit_code is not None:
                lines.append(f"Exit code: {op.exit_code}")
            if op.hint:
                lines.append(f"Hint: {op.hint}")
            output = (op.output or "").rstrip()
            if output:
                out_lines = output.splitlines()
                if not self.debug and len(out_lines) > LOG_TAIL_LINES:
                    lines.append(f"... ({len(out_lines) - LOG_TAIL_LINES} lines hidden, use --debug)")
                    out_lines = out_lines[-LOG_TAIL_LINES:]
                lines.extend(f"  | {line}" for line in out_lines)
        elif self.debug and op.output:
            lines.extend(f"  | {line}" for line in op.output.rstrip().splitlines())

        self._emit(*lines)

    def print_cache_hit(self, name: str, reason: str) -> None:
        """Print cache hit message."""
        self._emit(f"[{name}] CACHE: hit ({reason})")

    def print_cache_miss(self, name: str) -> None:
        """Print cache miss message."""
        self._emit(f"[{name}] CACHE: miss")

    def print_cache_saved(self, name: str, key: str) -> None:
        """Print cache save message."""
        short_key = key[:12] + "..." if len(key) > 12 else key
        self._emit(f"[{name}] CACHE: saved ({short_key})")

    def print_graph(self, levels: Sequence[Sequence["Operation"]]) -> None:
        """Print operations grouped by topological level."""
        for idx, level in enumerate(levels):
            self._emit(f"=== Level {idx + 1} ===")
            for op in level:
                deps = ", ".join(d.name for d in op.sorted_dependencies())
                kind = getattr(op.runner, "command", None) or "(no-op)"
                suffix = f"  <- {deps}" if deps else ""
                self._emit(f"  {op.name}: {kind}{suffix}")

    def print_results(self, result: "RunResult") -> None:
        """Print final results summary."""
        from ..operations.status import OperationStatus

        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for op in result.operations:
            lines.append(f"  {op.name}: {op.status.value.upper()}")

        blocked = result.with_status(OperationStatus.BLOCKED)
        if blocked:
            lines.append("")
            lines.append("BLOCKED (dependency failed):")
            for op in blocked:
                cause = op.blocked_by.name if op.blocked_by is not None else "?"
                lines.append(f"  {op.name} <- {cause}")

        counts = {}
        for op in result.operations:
            counts[op.status] = counts.get(op.status, 0) + 1
        parts = [f"{status.value}: {n}" for status, n in sorted(counts.items(), key=lambda kv: kv[0].value)]
        lines.append("")
        lines.append(f"{result.status.value.upper()} in {result.duration:.1f}s ({', '.join(parts)})")
        self._emit(*lines)

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
        self._emit(*lines, err=True)

    def print_warning(self, message: str) -> None:
        self._emit(f"WARNING: {message}", err=True)

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
