# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from .parameters import CustomParameter

PHASE_NAME_PREFIX = "_phase:"


@dataclass(frozen=True)
class Phase:
    """
    A named build step.

    Use one of the two variants below; `Phase` itself is never instantiated
    by the config loader.

      self_dependencies:     phases of the SAME project that must finish first
      upstream_dependencies: phases that must finish first in every project
                             this project (transitively) depends on
    """
    name: str
    ignore_missing_script: bool = False
    associated_parameters: FrozenSet[str] = frozenset()
    self_dependencies: Tuple[str, ...] = ()
    upstream_dependencies: Tuple[str, ...] = ()

    @property
    def is_synthetic(self) -> bool:
        return isinstance(self, SyntheticPhase)

    def display_name_for(self, project_name: str) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class DeclaredPhase(Phase):
    """A phase declared in config, e.g. `_phase:build`."""

    @property
    def short_name(self) -> str:
        if self.name.startswith(PHASE_NAME_PREFIX):
            return self.name[len(PHASE_NAME_PREFIX):]
        return self.name

    def display_name_for(self, project_name: str) -> str:
        return f"{project_name} ({self.short_name})"


@dataclass(frozen=True)
class SyntheticPhase(Phase):
    """A whole-project command (e.g. `build`) with no other phases."""

    def display_name_for(self, project_name: str) -> str:
        return project_name


@dataclass(frozen=True)
class Project:
    """
    A buildable unit of the monorepo.

    `scripts` keeps three distinct states per script name:
      - key missing or value None -> no command defined
      - ""                        -> intentionally empty (no-op)
      - "tsc -p ."                -> command to run

    scripts=None means "not loaded yet"; the config loader fills it from
    the project's package.json.
    """
    name: str
    folder: Path
    scripts: Optional[Mapping[str, Optional[str]]] = None
    dependencies: Tuple[str, ...] = ()
    output_folders: Tuple[str, ...] = ()

    def script_for(self, script_name: str) -> Optional[str]:
        return (self.scripts or {}).get(script_name)


@dataclass(frozen=True)
class Command:
    """A CLI-visible command mapped to the phases it runs."""
    name: str
    phases: Tuple[str, ...] = ()
    description: str = ""
    ignore_missing_script: bool = False  # bulk commands only

    @property
    def is_bulk(self) -> bool:
        # no declared phases -> run the synthetic phase of the same name
        return not self.phases


@dataclass(frozen=True)
class BuildCacheConfiguration:
    cache_root: Path
    enabled: bool = True
    keep: int = 20


@dataclass
class Monorepo:
    """Everything loaded from the config file, immutable once the run starts."""
    root: Path
    phases: List[Phase] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)
    parameters: List[CustomParameter] = field(default_factory=list)
    commands: List[Command] = field(default_factory=list)
    build_cache: Optional[BuildCacheConfiguration] = None

    def phase_by_name(self) -> Dict[str, Phase]:
        return {p.name: p for p in self.phases}

    def project_by_name(self) -> Dict[str, Project]:
        return {p.name: p for p in self.projects}

    def command_by_name(self) -> Dict[str, Command]:
        return {c.name: c for c in self.commands}
