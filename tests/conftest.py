"""
Shared fixtures: phases, projects and a runner that records calls
instead of spawning processes.
"""

from pathlib import Path

import pytest

from monorun.model import DeclaredPhase, Project
from monorun.operations.operation import Operation
from monorun.operations.runner import OperationRunner
from monorun.operations.status import OperationStatus
from monorun.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def fresh_console():
    set_console(Console())
    yield
    set_console(Console())


class RecordingRunner(OperationRunner):
    """Returns a preset status (or raises) and remembers that it ran."""

    def __init__(self, name, result=OperationStatus.SUCCESS, *, error=None, on_execute=None):
        self.name = name
        self.result = result
        self.error = error
        self.on_execute = on_execute
        self.calls = 0

    def execute(self, context):
        self.calls += 1
        if self.on_execute is not None:
            self.on_execute(context)
        if self.error is not None:
            raise self.error
        return self.result


def make_op(name, result=OperationStatus.SUCCESS, *, phase=None, **kw):
    phase = phase or DeclaredPhase(name="_phase:build")
    project = Project(name=name, folder=Path("."), scripts={})
    return Operation(phase, project, RecordingRunner(name, result, **kw))


@pytest.fixture
def build_phase():
    return DeclaredPhase(name="_phase:build", upstream_dependencies=("_phase:build",))


@pytest.fixture
def verify_phase():
    return DeclaredPhase(
        name="_phase:test",
        self_dependencies=("_phase:build",),
        ignore_missing_script=True,
    )
