"""
Tests for graph construction: phase selection, project selection,
dependency wiring and cycle detection.
"""

from pathlib import Path

import pytest

from monorun.errors import ConfigurationError
from monorun.model import Command, DeclaredPhase, Monorepo, Project, SyntheticPhase
from monorun.operations.factory import ShellOperationRunnerFactory
from monorun.operations.graph import build_operations, phases_for_command, select_projects, topo_levels
from monorun.parameters import CustomParameter


def _project(name, needs=(), scripts=None):
    if scripts is None:
        scripts = {"_phase:build": "tsc", "_phase:test": "jest", "clean": "rimraf lib"}
    return Project(name=name, folder=Path("."), scripts=scripts, dependencies=tuple(needs))


@pytest.fixture
def chain():
    # app -> lib -> util
    return [_project("util"), _project("lib", ["util"]), _project("app", ["lib"])]


def _by_key(ops):
    return {op.key: op for op in ops}


def test_self_and_upstream_edges(chain, build_phase, verify_phase):
    ops = _by_key(build_operations([build_phase, verify_phase], chain, ShellOperationRunnerFactory()))

    lib_build = ops[("_phase:build", "lib")]
    lib_test = ops[("_phase:test", "lib")]
    app_build = ops[("_phase:build", "app")]
    util_build = ops[("_phase:build", "util")]

    assert lib_test.dependencies == {lib_build}
    assert lib_build.dependencies == {util_build}
    # upstream dependencies are transitive across projects
    assert app_build.dependencies == {lib_build, util_build}
    assert lib_build in util_build.consumers


def test_one_operation_per_pair(chain, build_phase, verify_phase):
    ops = build_operations([build_phase, verify_phase], chain, ShellOperationRunnerFactory())
    assert len(ops) == 6
    assert len({op.key for op in ops}) == 6


def test_edges_outside_selection_are_dropped(chain, build_phase):
    selected = select_projects(chain, only=["app"])
    ops = build_operations([build_phase], selected, ShellOperationRunnerFactory(), all_projects=chain)

    assert [op.key for op in ops] == [("_phase:build", "app")]
    assert ops[0].dependencies == set()


def test_cycle_is_configuration_error(build_phase):
    a = _project("a", ["b"])
    b = _project("b", ["a"])
    with pytest.raises(ConfigurationError) as exc:
        build_operations([build_phase], [a, b], ShellOperationRunnerFactory())

    assert exc.value.kind == "DependencyCycle"
    assert "a (build)" in exc.value.message


def test_unknown_dependency_is_configuration_error(build_phase):
    with pytest.raises(ConfigurationError) as exc:
        build_operations([build_phase], [_project("a", ["ghost"])], ShellOperationRunnerFactory())
    assert exc.value.kind == "UnknownProject"


def test_missing_script_fails_before_anything_runs(build_phase):
    p = _project("bare", scripts={})
    with pytest.raises(ConfigurationError) as exc:
        build_operations([build_phase], [p], ShellOperationRunnerFactory())
    assert exc.value.kind == "MissingScript"


def test_critical_path_lengths(chain, build_phase, verify_phase):
    ops = _by_key(build_operations([build_phase, verify_phase], chain, ShellOperationRunnerFactory()))

    # util build -> lib build -> app build -> app test
    assert ops[("_phase:build", "util")].critical_path_length == 4
    assert ops[("_phase:test", "app")].critical_path_length == 1


def test_topo_levels(chain, build_phase):
    ops = build_operations([build_phase], chain, ShellOperationRunnerFactory())
    levels = topo_levels(ops)
    assert [[op.name for op in level] for level in levels] == [
        ["util (build)"],
        ["lib (build)"],
        ["app (build)"],
    ]


# ----------------------------------------------------------------------
# selection
# ----------------------------------------------------------------------

def test_select_all_by_default(chain):
    assert select_projects(chain) == chain


def test_select_to_includes_dependencies(chain):
    assert [p.name for p in select_projects(chain, to=["lib"])] == ["util", "lib"]


def test_select_only_is_exact(chain):
    assert [p.name for p in select_projects(chain, only=["lib"])] == ["lib"]


def test_select_unknown_project(chain):
    with pytest.raises(ConfigurationError) as exc:
        select_projects(chain, only=["nope"])
    assert exc.value.kind == "UnknownProject"


# ----------------------------------------------------------------------
# commands
# ----------------------------------------------------------------------

@pytest.fixture
def repo(chain, build_phase, verify_phase):
    return Monorepo(
        root=Path("."),
        phases=[build_phase, verify_phase],
        projects=chain,
        parameters=[CustomParameter(long_name="--force", phases=frozenset({"clean"}))],
        commands=[
            Command(name="build", phases=("_phase:build",)),
            Command(name="test", phases=("_phase:build", "_phase:test")),
            Command(name="clean"),
        ],
    )


def test_phased_command(repo):
    assert [p.name for p in phases_for_command(repo, "test")] == ["_phase:build", "_phase:test"]


def test_bulk_command_uses_synthetic_phase(repo):
    (phase,) = phases_for_command(repo, "clean")
    assert isinstance(phase, SyntheticPhase)
    assert phase.name == "clean"
    assert phase.upstream_dependencies == ("clean",)
    assert phase.associated_parameters == {"--force"}

    ops = _by_key(build_operations([phase], repo.projects, ShellOperationRunnerFactory()))
    assert ops[("clean", "app")].name == "app"
    assert ops[("clean", "app")].runner.command == "rimraf lib"
    assert ops[("clean", "util")] in ops[("clean", "lib")].dependencies


def test_unknown_command(repo):
    with pytest.raises(ConfigurationError) as exc:
        phases_for_command(repo, "deploy")
    assert exc.value.kind == "UnknownCommand"


def test_command_with_unknown_phase(repo):
    repo.commands.append(Command(name="lint", phases=("_phase:lint",)))
    with pytest.raises(ConfigurationError) as exc:
        phases_for_command(repo, "lint")
    assert exc.value.kind == "UnknownPhase"
