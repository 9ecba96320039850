from .status import OperationStatus
from .runner import NullOperationRunner, OperationRunnerContext, ShellOperationRunner
from .factory import ShellOperationRunnerFactory
from .operation import Operation
from .graph import build_operations, phases_for_command, select_projects
from .scheduler import OperationExecutionManager, RunResult

__all__ = [
    "OperationStatus",
    "NullOperationRunner",
    "OperationRunnerContext",
    "ShellOperationRunner",
    "ShellOperationRunnerFactory",
    "Operation",
    "build_operations",
    "phases_for_command",
    "select_projects",
    "OperationExecutionManager",
    "RunResult",
]
