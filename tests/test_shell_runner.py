"""
Tests for ShellOperationRunner against real shell processes, plus the
cache short-circuit with in-memory collaborators.
"""

import os
import threading
import time
from pathlib import Path

import pytest

from monorun.cache import BuildCacheStore
from monorun.change_analyzer import ProjectChangeAnalyzer
from monorun.errors import InfrastructureError
from monorun.model import BuildCacheConfiguration, DeclaredPhase, Project
from monorun.operations.runner import OperationRunnerContext, ShellOperationRunner
from monorun.operations.status import OperationStatus

pytestmark = pytest.mark.skipif(os.name != "posix", reason="uses /bin/sh commands")

BUILD = DeclaredPhase(name="_phase:build")


class FakeAnalyzer:
    def __init__(self, unchanged=False):
        self.unchanged = unchanged
        self.recorded = []

    def get_fingerprint(self, project, phase, command):
        return "ab" + "0" * 62

    def is_project_unchanged(self, project, phase, fingerprint):
        return self.unchanged

    def record_success(self, project, phase, fingerprint):
        self.recorded.append((project.name, phase.name, fingerprint))


class FakeCache:
    def __init__(self, hit=None, fail_store=False, fail_restore=False):
        self.configuration = BuildCacheConfiguration(cache_root=Path("unused"))
        self.hit = hit
        self.fail_store = fail_store
        self.fail_restore = fail_restore
        self.stored = []
        self.extracted = []

    def try_restore(self, fingerprint):
        if self.fail_restore:
            raise InfrastructureError(kind="CacheReadFailed", message="corrupt")
        return self.hit

    def extract(self, cached, destination):
        self.extracted.append((cached, destination))

    def store(self, fingerprint, entry):
        if self.fail_store:
            raise InfrastructureError(kind="CacheWriteFailed", message="disk full")
        self.stored.append((fingerprint, entry))


class FakeCached:
    log = "restored log\n"


def _runner(tmp_path, command, *, cache=None, analyzer=None, incremental=True):
    project = Project(name="alpha", folder=tmp_path, scripts={"_phase:build": command})
    return ShellOperationRunner(
        name="alpha (build)",
        command=command,
        project=project,
        phase=BUILD,
        build_cache=cache,
        change_analyzer=analyzer,
        is_incremental_build_allowed=incremental,
    )


def test_exit_zero_is_success(tmp_path):
    ctx = OperationRunnerContext()
    status = _runner(tmp_path, "echo hello").execute(ctx)

    assert status is OperationStatus.SUCCESS
    assert ctx.exit_code == 0
    assert "hello" in ctx.output


def test_nonzero_exit_is_failure(tmp_path):
    ctx = OperationRunnerContext()
    status = _runner(tmp_path, "echo broken >&2; exit 3").execute(ctx)

    assert status is OperationStatus.FAILURE
    assert ctx.exit_code == 3
    # stderr is merged into the captured output
    assert "broken" in ctx.output


def test_runs_in_project_folder(tmp_path):
    ctx = OperationRunnerContext()
    _runner(tmp_path, "pwd").execute(ctx)
    assert Path(ctx.output.strip()).resolve() == tmp_path.resolve()


def test_project_bin_folder_is_on_path(tmp_path):
    bin_dir = tmp_path / "node_modules" / ".bin"
    bin_dir.mkdir(parents=True)
    tool = bin_dir / "fake-tsc"
    tool.write_text("#!/bin/sh\necho compiled\n")
    tool.chmod(0o755)

    ctx = OperationRunnerContext()
    status = _runner(tmp_path, "fake-tsc").execute(ctx)

    assert status is OperationStatus.SUCCESS
    assert "compiled" in ctx.output


def test_command_not_found_gets_hint(tmp_path):
    ctx = OperationRunnerContext()
    status = _runner(tmp_path, "definitely-not-a-tool-xyz --version").execute(ctx)

    assert status is OperationStatus.FAILURE
    assert ctx.exit_code == 127
    assert "definitely-not-a-tool-xyz" in ctx.hint


def test_stop_event_terminates_process(tmp_path):
    ctx = OperationRunnerContext(grace_period=1.0, poll_interval=0.05)
    timer = threading.Timer(0.2, ctx.stop_event.set)
    timer.start()

    started = time.monotonic()
    status = _runner(tmp_path, "sleep 30").execute(ctx)
    elapsed = time.monotonic() - started
    timer.cancel()

    assert status is OperationStatus.CANCELLED
    assert elapsed < 10


def test_process_ignoring_terminate_is_killed(tmp_path):
    ctx = OperationRunnerContext(grace_period=0.5, poll_interval=0.05)
    timer = threading.Timer(0.2, ctx.stop_event.set)
    timer.start()

    started = time.monotonic()
    status = _runner(tmp_path, "trap '' TERM; sleep 30").execute(ctx)
    elapsed = time.monotonic() - started
    timer.cancel()

    assert status is OperationStatus.CANCELLED
    assert elapsed < 10


# ----------------------------------------------------------------------
# cache short-circuit
# ----------------------------------------------------------------------

def test_unchanged_project_skips_process(tmp_path):
    marker = tmp_path / "ran"
    cache = FakeCache()
    status = _runner(tmp_path, f"touch {marker}", cache=cache, analyzer=FakeAnalyzer(unchanged=True)).execute(
        OperationRunnerContext()
    )

    assert status is OperationStatus.FROM_CACHE
    assert not marker.exists()


def test_cache_hit_restores_outputs(tmp_path):
    marker = tmp_path / "ran"
    cache = FakeCache(hit=FakeCached())
    analyzer = FakeAnalyzer()
    ctx = OperationRunnerContext()

    status = _runner(tmp_path, f"touch {marker}", cache=cache, analyzer=analyzer).execute(ctx)

    assert status is OperationStatus.FROM_CACHE
    assert not marker.exists()
    assert len(cache.extracted) == 1
    assert ctx.output == "restored log\n"
    assert analyzer.recorded


def test_cache_miss_runs_and_stores(tmp_path):
    cache = FakeCache()
    analyzer = FakeAnalyzer()

    status = _runner(tmp_path, "echo built", cache=cache, analyzer=analyzer).execute(OperationRunnerContext())

    assert status is OperationStatus.SUCCESS
    (fingerprint, entry), = cache.stored
    assert entry.project == "alpha"
    assert "built" in entry.log
    assert analyzer.recorded == [("alpha", "_phase:build", fingerprint)]


def test_failure_is_not_stored(tmp_path):
    cache = FakeCache()
    analyzer = FakeAnalyzer()

    status = _runner(tmp_path, "exit 1", cache=cache, analyzer=analyzer).execute(OperationRunnerContext())

    assert status is OperationStatus.FAILURE
    assert cache.stored == []
    assert analyzer.recorded == []


def test_cache_write_failure_keeps_success(tmp_path):
    cache = FakeCache(fail_store=True)
    status = _runner(tmp_path, "true", cache=cache, analyzer=FakeAnalyzer()).execute(OperationRunnerContext())
    assert status is OperationStatus.SUCCESS


def test_cache_read_failure_falls_back_to_running(tmp_path):
    marker = tmp_path / "ran"
    cache = FakeCache(fail_restore=True)
    status = _runner(tmp_path, f"touch {marker}", cache=cache, analyzer=FakeAnalyzer()).execute(
        OperationRunnerContext()
    )
    assert status is OperationStatus.SUCCESS
    assert marker.exists()


def test_non_incremental_always_runs(tmp_path):
    marker = tmp_path / "ran"
    cache = FakeCache(hit=FakeCached())
    status = _runner(
        tmp_path, f"touch {marker}", cache=cache, analyzer=FakeAnalyzer(unchanged=True), incremental=False
    ).execute(OperationRunnerContext())

    assert status is OperationStatus.SUCCESS
    assert marker.exists()
    # results are still written back for the next run
    assert len(cache.stored) == 1


def test_no_cache_always_runs(tmp_path):
    marker = tmp_path / "ran"
    status = _runner(tmp_path, f"touch {marker}", analyzer=FakeAnalyzer(unchanged=True)).execute(
        OperationRunnerContext()
    )
    assert status is OperationStatus.SUCCESS
    assert marker.exists()


class BrokenAnalyzer(FakeAnalyzer):
    def get_fingerprint(self, project, phase, command):
        raise PermissionError("unreadable source file")


def test_unhashable_project_runs_without_cache(tmp_path):
    marker = tmp_path / "ran"
    cache = FakeCache(hit=FakeCached())
    analyzer = BrokenAnalyzer()

    status = _runner(tmp_path, f"touch {marker}", cache=cache, analyzer=analyzer).execute(OperationRunnerContext())

    assert status is OperationStatus.SUCCESS
    assert marker.exists()
    assert cache.stored == []
    assert analyzer.recorded == []


def test_stale_symlink_in_project_does_not_fail_build(tmp_path):
    project_dir = tmp_path / "alpha"
    project_dir.mkdir()
    (project_dir / "index.ts").write_text("export {}\n")
    os.symlink(project_dir / "does-not-exist", project_dir / "stale-link")

    project = Project(name="alpha", folder=project_dir, scripts={"_phase:build": "touch ran"})
    cache = BuildCacheStore(BuildCacheConfiguration(cache_root=tmp_path / "cache"))
    runner = ShellOperationRunner(
        name="alpha (build)",
        command="touch ran",
        project=project,
        phase=BUILD,
        build_cache=cache,
        change_analyzer=ProjectChangeAnalyzer([project], use_git=False),
        is_incremental_build_allowed=True,
    )

    status = runner.execute(OperationRunnerContext())

    assert status is OperationStatus.SUCCESS
    assert (project_dir / "ran").exists()
    assert list(cache.root.glob("*/*.manifest.json"))
