"""Operation lifecycle states."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class OperationStatus(Enum):
    """Status of a single (phase, project) operation."""
    WAITING = "waiting"          # dependencies not yet terminal
    READY = "ready"              # dependencies satisfied, awaiting a worker
    EXECUTING = "executing"
    SUCCESS = "success"
    FAILURE = "failure"
    FROM_CACHE = "from cache"    # result reused, command not run
    SKIPPED = "skipped"          # nothing to run, not an error
    BLOCKED = "blocked"          # a dependency failed
    CANCELLED = "cancelled"      # run stopped before this finished

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_satisfied(self) -> bool:
        return self in SATISFIED_STATUSES


TERMINAL_STATUSES: FrozenSet[OperationStatus] = frozenset({
    OperationStatus.SUCCESS,
    OperationStatus.FAILURE,
    OperationStatus.FROM_CACHE,
    OperationStatus.SKIPPED,
    OperationStatus.BLOCKED,
    OperationStatus.CANCELLED,
})

# terminal states that unblock dependents
SATISFIED_STATUSES: FrozenSet[OperationStatus] = frozenset({
    OperationStatus.SUCCESS,
    OperationStatus.FROM_CACHE,
    OperationStatus.SKIPPED,
})

# terminal states that block dependents
BLOCKING_STATUSES: FrozenSet[OperationStatus] = frozenset({
    OperationStatus.FAILURE,
    OperationStatus.BLOCKED,
})

ALLOWED_TRANSITIONS: Dict[OperationStatus, FrozenSet[OperationStatus]] = {
    OperationStatus.WAITING: frozenset({
        OperationStatus.READY,
        OperationStatus.BLOCKED,
        OperationStatus.CANCELLED,
    }),
    OperationStatus.READY: frozenset({
        OperationStatus.EXECUTING,
        OperationStatus.FROM_CACHE,
        OperationStatus.SKIPPED,
        OperationStatus.BLOCKED,
        OperationStatus.CANCELLED,
    }),
    OperationStatus.EXECUTING: frozenset({
        OperationStatus.SUCCESS,
        OperationStatus.FAILURE,
        OperationStatus.FROM_CACHE,
        OperationStatus.SKIPPED,
        OperationStatus.CANCELLED,
    }),
}


def can_transition(current: OperationStatus, new: OperationStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())
