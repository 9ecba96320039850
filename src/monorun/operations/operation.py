# operations/operation.py
from __future__ import annotations

from typing import List, Optional, Set, Tuple

from ..errors import InvalidStatusTransition
from ..model import Phase, Project
from .runner import Runner
from .status import OperationStatus, can_transition


class Operation:
    """
    Graph vertex: one (phase, project) pair.

    `dependencies` must reach a terminal state before this operation may run;
    `consumers` is the reverse edge set.
    """

    def __init__(self, phase: Phase, project: Project, runner: Runner):
        self.phase = phase
        self.project = project
        self.runner = runner
        self.dependencies: Set[Operation] = set()
        self.consumers: Set[Operation] = set()

        self._status = OperationStatus.WAITING

        # execution record
        self.output: str = ""
        self.exit_code: Optional[int] = None
        self.error: Optional[BaseException] = None
        self.hint: Optional[str] = None
        self.duration: Optional[float] = None
        self.blocked_by: Optional[Operation] = None
        self.critical_path_length: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.phase.name, self.project.name)

    @property
    def name(self) -> str:
        return self.runner.name

    @property
    def status(self) -> OperationStatus:
        return self._status

    @status.setter
    def status(self, new: OperationStatus) -> None:
        if not can_transition(self._status, new):
            raise InvalidStatusTransition(
                f"{self.name}: cannot move from {self._status.value} to {new.value}"
            )
        self._status = new

    def add_dependency(self, dependency: "Operation") -> None:
        if dependency is self:
            return
        self.dependencies.add(dependency)
        dependency.consumers.add(self)

    def sorted_dependencies(self) -> List["Operation"]:
        return sorted(self.dependencies, key=lambda o: o.name)

    def __repr__(self) -> str:
        return f"Operation({self.name!r}, status={self._status.value})"
