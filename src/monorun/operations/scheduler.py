# operations/scheduler.py
from __future__ import annotations

import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import InfrastructureError
from ..ui.console import get_console
from .operation import Operation
from .runner import DEFAULT_GRACE_PERIOD, NullOperationRunner, OperationRunnerContext
from .status import BLOCKING_STATUSES, OperationStatus


def default_parallelism() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass
class RunResult:
    """Aggregate outcome of one run."""
    status: OperationStatus  # SUCCESS | FAILURE | CANCELLED
    operations: List[Operation]
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    def with_status(self, *statuses: OperationStatus) -> List[Operation]:
        return [op for op in self.operations if op.status in statuses]

    @property
    def failed(self) -> List[Operation]:
        return self.with_status(OperationStatus.FAILURE)

    @property
    def blocked(self) -> List[Operation]:
        return self.with_status(OperationStatus.BLOCKED)

    def summary(self) -> Dict[str, str]:
        """display name -> status value, in execution-graph order"""
        return {op.name: op.status.value for op in self.operations}


class OperationExecutionManager:
    """
    Scheduler + executor:

    - Starts every operation whose dependencies are all satisfied.
    - Runs shell operations on a bounded thread pool, highest
      critical-path length first.
    - Null operations resolve inline (READY -> FROM_CACHE/SKIPPED).
    - When an operation finishes, re-evaluates its consumers: READY if every
      dependency is satisfied, BLOCKED if any failed or was blocked.
    - cancel() stops new submissions and terminates in-flight processes;
      never-started operations end as CANCELLED.
    """

    def __init__(
        self,
        operations: Sequence[Operation],
        *,
        parallelism: Optional[int] = None,
        fail_fast: bool = False,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        poll_interval: float = 0.1,
    ):
        self.operations = list(operations)
        self.parallelism = max(1, parallelism or default_parallelism())
        self.fail_fast = fail_fast
        self.grace_period = grace_period
        self.poll_interval = poll_interval

        self._stop_event = threading.Event()
        self._cancelled = False
        self._halted = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Operator abort: safe to call from any thread."""
        self._cancelled = True
        self._stop_event.set()

    # ------------------------------------------------------------------

    def execute(self) -> RunResult:
        console = get_console()
        start = time.monotonic()

        ready: List[Operation] = []
        for op in self.operations:
            if not op.dependencies:
                op.status = OperationStatus.READY
                ready.append(op)

        in_flight: Dict[Future, Tuple[Operation, OperationRunnerContext]] = {}

        with ThreadPoolExecutor(max_workers=self.parallelism) as pool:
            try:
                while True:
                    # schedule all currently ready (up to the concurrency limit)
                    while ready and not self._stopped and len(in_flight) < self.parallelism:
                        ready.sort(key=lambda o: (-o.critical_path_length, o.name))
                        op = ready.pop(0)

                        if isinstance(op.runner, NullOperationRunner):
                            context = self._new_context()
                            op.status = op.runner.execute(context)
                            if not op.runner.silent:
                                console.print_operation_finished(op)
                            ready.extend(self._on_terminal(op))
                            continue

                        op.status = OperationStatus.EXECUTING
                        if not op.runner.silent:
                            console.print_operation_started(op.name)
                        context = self._new_context()
                        fut = pool.submit(self._run_operation, op, context)
                        in_flight[fut] = (op, context)

                    if not in_flight:
                        break

                    # wait for one completion, then loop to schedule newly-ready operations
                    try:
                        fut = next(as_completed(list(in_flight.keys())))
                    except KeyboardInterrupt:
                        console.print_info("\nInterrupted, stopping running operations...")
                        self.cancel()
                        continue

                    op, context = in_flight.pop(fut)
                    self._record(op, fut, context)
                    if not op.runner.silent:
                        console.print_operation_finished(op)

                    if op.status is OperationStatus.FAILURE and self.fail_fast:
                        self._halted = True
                    ready.extend(self._on_terminal(op))
            except BaseException:
                # wake in-flight runners so the pool shutdown can return
                self._stop_event.set()
                raise

        # anything not terminal was never started
        for op in self.operations:
            if not op.status.is_terminal:
                op.status = OperationStatus.CANCELLED

        if any(op.status is OperationStatus.FAILURE for op in self.operations):
            status = OperationStatus.FAILURE
        elif self._cancelled or any(op.status is OperationStatus.CANCELLED for op in self.operations):
            status = OperationStatus.CANCELLED
        else:
            status = OperationStatus.SUCCESS

        return RunResult(status=status, operations=self.operations, duration=time.monotonic() - start)

    # ------------------------------------------------------------------

    @property
    def _stopped(self) -> bool:
        return self._cancelled or self._halted

    def _new_context(self) -> OperationRunnerContext:
        return OperationRunnerContext(
            stop_event=self._stop_event,
            grace_period=self.grace_period,
            poll_interval=self.poll_interval,
        )

    @staticmethod
    def _run_operation(op: Operation, context: OperationRunnerContext) -> OperationStatus:
        started = time.monotonic()
        try:
            return op.runner.execute(context)
        finally:
            op.duration = time.monotonic() - started

    def _record(self, op: Operation, fut: Future, context: OperationRunnerContext) -> None:
        console = get_console()
        try:
            status = fut.result()
        except InfrastructureError as e:
            op.error = e
            status = OperationStatus.FAILURE
            console.print_error(f"{op.name}: {e.kind}", e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        except Exception as e:
            op.error = e
            status = OperationStatus.FAILURE
            console.print_exception(e)

        op.output = context.output
        op.exit_code = context.exit_code
        op.hint = context.hint
        op.status = status

    def _on_terminal(self, finished: Operation) -> List[Operation]:
        """
        Re-evaluate consumers of a terminal operation. Blocking propagates
        transitively; returns operations that became READY.
        """
        newly_ready: List[Operation] = []
        pending = [finished]
        while pending:
            op = pending.pop()
            for consumer in sorted(op.consumers, key=lambda o: o.name):
                if consumer.status is not OperationStatus.WAITING:
                    continue
                deps = consumer.dependencies
                if not all(d.status.is_terminal for d in deps):
                    continue

                failed_deps = [d for d in deps if d.status in BLOCKING_STATUSES]
                if failed_deps:
                    culprit = min(failed_deps, key=lambda d: d.name)
                    consumer.blocked_by = culprit.blocked_by or culprit
                    consumer.status = OperationStatus.BLOCKED
                    pending.append(consumer)
                elif all(d.status.is_satisfied for d in deps):
                    consumer.status = OperationStatus.READY
                    newly_ready.append(consumer)
                else:
                    # a dependency was cancelled
                    consumer.status = OperationStatus.CANCELLED
                    pending.append(consumer)
        return newly_ready
