# operations/runner.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from ..cache import BuildCacheStore, CacheEntry
from ..errors import InfrastructureError, hint_for_command
from ..model import Phase, Project
from ..ui.console import get_console
from .status import OperationStatus

if TYPE_CHECKING:
    from ..change_analyzer import ProjectChangeAnalyzer

DEFAULT_GRACE_PERIOD = 5.0
COMMAND_NOT_FOUND = 127


# ----------------------------------------------------------------------
# Execution context (one per operation per run)
# ----------------------------------------------------------------------

@dataclass
class OperationRunnerContext:
    """
    Handed to runner.execute(). The runner fills in output / exit_code;
    the scheduler owns stop_event.
    """
    stop_event: threading.Event = field(default_factory=threading.Event)
    grace_period: float = DEFAULT_GRACE_PERIOD
    poll_interval: float = 0.1
    output: str = ""
    exit_code: Optional[int] = None
    hint: Optional[str] = None


# ----------------------------------------------------------------------
# Process helpers
# ----------------------------------------------------------------------

def convert_slashes_for_windows(command: str) -> str:
    """Script authors write `node_modules/.bin/tsc`; cmd.exe needs backslashes."""
    return command.replace("/", "\\")


def _signal_process(proc: subprocess.Popen, sig: int) -> None:
    if os.name == "posix":
        # the shell runs in its own session; signal the whole group
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
    elif sig == signal.SIGTERM:
        proc.terminate()
    else:
        proc.kill()


def terminate_process(proc: subprocess.Popen, grace_period: float = DEFAULT_GRACE_PERIOD) -> None:
    """Terminate, wait `grace_period`, then kill. Always reaps the child."""
    if proc.poll() is not None:
        return
    _signal_process(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        _signal_process(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
        proc.wait()


# ----------------------------------------------------------------------
# Runners
# ----------------------------------------------------------------------

class OperationRunner:
    """Executable behavior behind an operation."""

    name: str
    silent: bool = False

    def execute(self, context: OperationRunnerContext) -> OperationStatus:
        raise NotImplementedError


class NullOperationRunner(OperationRunner):
    """Reports a preset status without doing any work."""

    def __init__(self, name: str, result: OperationStatus, silent: bool = False):
        self.name = name
        self.result = result
        self.silent = silent

    def execute(self, context: OperationRunnerContext) -> OperationStatus:
        return self.result

    def __repr__(self) -> str:
        return f"NullOperationRunner(name={self.name!r}, result={self.result})"


class ShellOperationRunner(OperationRunner):
    """Runs a project's script for one phase as a shell process."""

    def __init__(
        self,
        *,
        name: str,
        command: str,
        project: Project,
        phase: Phase,
        build_cache: Optional[BuildCacheStore],
        change_analyzer: Optional["ProjectChangeAnalyzer"],
        is_incremental_build_allowed: bool,
    ):
        self.name = name
        self.command = command
        self.project = project
        self.phase = phase
        self.build_cache = build_cache
        self.change_analyzer = change_analyzer
        self.is_incremental_build_allowed = is_incremental_build_allowed
        self.silent = False

    def __repr__(self) -> str:
        return f"ShellOperationRunner(name={self.name!r}, command={self.command!r})"

    @property
    def build_cache_configuration(self):
        return self.build_cache.configuration if self.build_cache is not None else None

    def execute(self, context: OperationRunnerContext) -> OperationStatus:
        cache, analyzer = self.build_cache, self.change_analyzer
        fingerprint: Optional[str] = None
        if cache is not None and analyzer is not None:
            fingerprint = self._fingerprint(analyzer)
            if fingerprint is not None and self.is_incremental_build_allowed:
                reused = self._try_reuse(cache, analyzer, fingerprint, context)
                if reused is not None:
                    return reused

        status = self._run_process(context)

        if status is OperationStatus.SUCCESS and fingerprint is not None:
            self._save(cache, analyzer, fingerprint, context)
        return status

    # ---- cache ----

    def _fingerprint(self, analyzer: "ProjectChangeAnalyzer") -> Optional[str]:
        # hashing errors degrade to an uncached run
        try:
            return analyzer.get_fingerprint(self.project, self.phase, self.command)
        except (OSError, subprocess.CalledProcessError) as e:
            get_console().print_warning(f"[{self.name}] could not compute inputs, running without cache: {e}")
            return None

    def _try_reuse(
        self,
        cache: BuildCacheStore,
        analyzer: "ProjectChangeAnalyzer",
        fingerprint: str,
        context: OperationRunnerContext,
    ) -> Optional[OperationStatus]:
        console = get_console()

        if analyzer.is_project_unchanged(self.project, self.phase, fingerprint):
            console.print_cache_hit(self.name, "project unchanged since last successful run")
            return OperationStatus.FROM_CACHE

        try:
            cached = cache.try_restore(fingerprint)
            if cached is None:
                console.print_cache_miss(self.name)
                return None
            cache.extract(cached, self.project.folder)
        except InfrastructureError as e:
            console.print_warning(f"[{self.name}] cache restore failed, running command instead: {e.message}")
            return None

        context.output = cached.log
        try:
            analyzer.record_success(self.project, self.phase, fingerprint)
        except OSError as e:
            console.print_warning(f"[{self.name}] could not record project state: {e}")
        console.print_cache_hit(self.name, "restored from build cache")
        return OperationStatus.FROM_CACHE

    def _save(
        self,
        cache: BuildCacheStore,
        analyzer: "ProjectChangeAnalyzer",
        fingerprint: str,
        context: OperationRunnerContext,
    ) -> None:
        console = get_console()

        entry = CacheEntry(
            project=self.project.name,
            phase=self.phase.name,
            source_folder=Path(self.project.folder),
            output_folders=tuple(self.project.output_folders),
            log=context.output,
        )
        try:
            cache.store(fingerprint, entry)
            console.print_cache_saved(self.name, fingerprint)
        except InfrastructureError as e:
            console.print_warning(f"[{self.name}] cache write failed: {e.message}")
        try:
            analyzer.record_success(self.project, self.phase, fingerprint)
        except OSError as e:
            console.print_warning(f"[{self.name}] could not record project state: {e}")

    # ---- process ----

    def _run_process(self, context: OperationRunnerContext) -> OperationStatus:
        folder = Path(self.project.folder)
        env = os.environ.copy()
        bin_dir = folder / "node_modules" / ".bin"
        env["PATH"] = os.pathsep.join([str(bin_dir), env.get("PATH", "")])

        try:
            proc = subprocess.Popen(
                self.command,
                shell=True,
                cwd=str(folder),
                env=env,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            raise InfrastructureError(
                kind="SpawnFailed",
                message=str(e),
                project=self.project.name,
                phase=self.phase.name,
                details={"command": self.command, "cwd": str(folder)},
            ) from e

        cancelled = False
        try:
            while True:
                try:
                    out, _ = proc.communicate(timeout=context.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    if context.stop_event.is_set():
                        cancelled = True
                        terminate_process(proc, context.grace_period)
                        out, _ = proc.communicate()
                        break
        finally:
            if proc.poll() is None:
                terminate_process(proc, context.grace_period)

        context.output = out or ""
        context.exit_code = proc.returncode

        if cancelled:
            return OperationStatus.CANCELLED
        if proc.returncode == 0:
            return OperationStatus.SUCCESS
        if proc.returncode == COMMAND_NOT_FOUND:
            context.hint = hint_for_command(self.command)
        return OperationStatus.FAILURE


Runner = Union[ShellOperationRunner, NullOperationRunner]
