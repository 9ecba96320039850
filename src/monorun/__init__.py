from .dsl import build_cache, command, flag, monorepo, phase, project, string_param
from .model import Monorepo, Phase, Project
from .operations import OperationExecutionManager, OperationStatus, ShellOperationRunnerFactory

__all__ = [
    "build_cache", "command", "flag", "monorepo", "phase", "project", "string_param",
    "Monorepo", "Phase", "Project",
    "OperationExecutionManager", "OperationStatus", "ShellOperationRunnerFactory",
]
