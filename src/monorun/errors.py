# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class MonorunError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - naming the offending project / phase
      - debugging without full tracebacks
    """
    kind: str
    message: str
    project: Optional[str] = None
    phase: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.project:
            lines.append(f"project={self.project}")
        if self.phase:
            lines.append(f"phase={self.phase}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(MonorunError):
    """
    Fatal, detected before any operation is started:
      MissingScript, DependencyCycle, UnknownProject, UnknownPhase,
      UnknownCommand, UnknownParameter, InvalidParameter, InvalidConfig,
      ConfigNotFound
    """


class InfrastructureError(MonorunError):
    """
    Per-operation failure that is not a process exit code:
      SpawnFailed, CacheWriteFailed, CacheReadFailed
    """


class InvalidStatusTransition(RuntimeError):
    pass


# Hints shown when a command exits with 127 (command not found)
TOOL_HINTS = {
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "pnpm": "Install pnpm (e.g., npm install -g pnpm) or fix PATH.",
    "yarn": "Install yarn (e.g., npm install -g yarn) or fix PATH.",
    "tsc": "Install typescript in the project (npm install -D typescript).",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


def hint_for_command(command: str) -> str:
    tool = command.split()[0] if command.strip() else ""
    return TOOL_HINTS.get(tool, f"Install '{tool}' and ensure it is on PATH.")
