# operations/graph.py
from __future__ import annotations

from collections import deque
from graphlib import CycleError, TopologicalSorter
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..errors import ConfigurationError
from ..model import Monorepo, Phase, Project, SyntheticPhase
from .factory import ShellOperationRunnerFactory
from .operation import Operation


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------

def phases_for_command(monorepo: Monorepo, command_name: str) -> List[Phase]:
    """
    Phases run by a command. A command without phases is a bulk command:
    it runs one synthetic phase named after itself, in dependency order.
    """
    command = monorepo.command_by_name().get(command_name)
    if command is None:
        raise ConfigurationError(
            kind="UnknownCommand",
            message=f"Unknown command: {command_name}",
            details={"known_commands": sorted(monorepo.command_by_name())},
        )

    if command.is_bulk:
        associated = frozenset(
            p.long_name for p in monorepo.parameters if command.name in p.phases
        )
        return [
            SyntheticPhase(
                name=command.name,
                ignore_missing_script=command.ignore_missing_script,
                associated_parameters=associated,
                upstream_dependencies=(command.name,),
            )
        ]

    by_name = monorepo.phase_by_name()
    phases: List[Phase] = []
    for name in command.phases:
        if name not in by_name:
            raise ConfigurationError(
                kind="UnknownPhase",
                message=f"Command '{command.name}' refers to unknown phase '{name}'",
                details={"known_phases": sorted(by_name)},
            )
        phases.append(by_name[name])
    return phases


def _closure(
    start: Iterable[str],
    by_name: Dict[str, Project],
    *,
    owner: Optional[str] = None,
) -> Set[str]:
    """Names of `start` plus everything they (transitively) depend on."""
    seen: Set[str] = set()
    q = deque(start)
    while q:
        name = q.popleft()
        if name in seen:
            continue
        if name not in by_name:
            raise ConfigurationError(
                kind="UnknownProject",
                message=(
                    f"Project '{owner}' depends on unknown project '{name}'"
                    if owner else f"Unknown project: {name}"
                ),
                project=owner,
                details={"known_projects": sorted(by_name)},
            )
        seen.add(name)
        q.extend(by_name[name].dependencies)
    return seen


def select_projects(
    projects: Sequence[Project],
    *,
    to: Optional[Sequence[str]] = None,
    only: Optional[Sequence[str]] = None,
) -> List[Project]:
    """
    Decide which projects get operations.

      - no selectors      => every project
      - --to P            => P and everything P depends on
      - --only P          => exactly P
    Original project order is preserved.
    """
    if not to and not only:
        return list(projects)

    by_name = {p.name: p for p in projects}
    selected: Set[str] = set()
    if to:
        selected |= _closure(to, by_name)
    for name in only or []:
        if name not in by_name:
            raise ConfigurationError(
                kind="UnknownProject",
                message=f"Unknown project: {name}",
                details={"known_projects": sorted(by_name)},
            )
        selected.add(name)

    return [p for p in projects if p.name in selected]


# ----------------------------------------------------------------------
# Graph build
# ----------------------------------------------------------------------

def build_operations(
    phases: Sequence[Phase],
    projects: Sequence[Project],
    factory: ShellOperationRunnerFactory,
    *,
    all_projects: Optional[Sequence[Project]] = None,
) -> List[Operation]:
    """
    Create one operation per (phase, project) pair and wire dependencies:

      - self:     (B, P) depends on (A, P)          for A in B.self_dependencies
      - upstream: (B, P) depends on (A, Q)          for A in B.upstream_dependencies
                                                    and every Q that P transitively
                                                    depends on

    Edges to operations outside the selection are dropped. Raises
    ConfigurationError for a missing required script or a dependency cycle,
    before anything executes.
    """
    universe = {p.name: p for p in (all_projects if all_projects is not None else projects)}
    for p in projects:
        universe.setdefault(p.name, p)

    operations: Dict[Tuple[str, str], Operation] = {}
    for phase in phases:
        for project in projects:
            runner = factory.create_operation_runner(phase, project)
            op = Operation(phase, project, runner)
            operations[op.key] = op

    for (phase_name, project_name), op in operations.items():
        phase = op.phase
        for dep_phase in phase.self_dependencies:
            dep = operations.get((dep_phase, project_name))
            if dep is not None:
                op.add_dependency(dep)

        if phase.upstream_dependencies:
            upstream = _closure(op.project.dependencies, universe, owner=project_name)
            upstream.discard(project_name)
            for dep_project in upstream:
                for dep_phase in phase.upstream_dependencies:
                    dep = operations.get((dep_phase, dep_project))
                    if dep is not None:
                        op.add_dependency(dep)

    ops = list(operations.values())
    check_acyclic(ops)
    compute_critical_path_lengths(ops)
    return ops


def check_acyclic(operations: Sequence[Operation]) -> None:
    sorter = TopologicalSorter({op: op.dependencies for op in operations})
    try:
        sorter.prepare()
    except CycleError as e:
        cycle = [op.name for op in e.args[1]]
        raise ConfigurationError(
            kind="DependencyCycle",
            message=f"Operation graph has a cycle: {' -> '.join(cycle)}",
            details={"operations": cycle},
        ) from None


def compute_critical_path_lengths(operations: Sequence[Operation]) -> None:
    """
    Length of the longest chain of consumers hanging off each operation.
    Used as scheduling priority: unblock the most work first.
    """
    order = list(TopologicalSorter({op: op.dependencies for op in operations}).static_order())
    for op in reversed(order):
        op.critical_path_length = 1 + max(
            (c.critical_path_length for c in op.consumers), default=0
        )


def topo_levels(operations: Sequence[Operation]) -> List[List[Operation]]:
    """
    Group operations into topological "levels".
    Everything in a level can run in parallel once the previous level is done.
    """
    indeg = {op: len(op.dependencies) for op in operations}
    q = deque(sorted([op for op, d in indeg.items() if d == 0], key=lambda o: o.name))

    levels: List[List[Operation]] = []
    while q:
        level_size = len(q)
        level: List[Operation] = []
        for _ in range(level_size):
            op = q.popleft()
            level.append(op)
            for child in sorted(op.consumers, key=lambda o: o.name):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    return levels
