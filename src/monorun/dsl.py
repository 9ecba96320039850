# src/monorun/dsl.py
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from .model import (
    BuildCacheConfiguration,
    Command,
    DeclaredPhase,
    Monorepo,
    PHASE_NAME_PREFIX,
    Phase,
    Project,
)
from .parameters import CHOICE, FLAG, INTEGER, STRING, STRING_LIST, CustomParameter


# ---------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------

def phase(
    name: str,
    *,
    after: Iterable[str] = (),
    upstream: Iterable[str] = (),
    ignore_missing_script: bool = False,
) -> Phase:
    """
    Declare a phase. The `_phase:` prefix is added if missing.

        phase("build", upstream=["build"])           # wait for deps' build
        phase("test", after=["build"], ignore_missing_script=True)
    """
    return DeclaredPhase(
        name=_prefixed(name),
        ignore_missing_script=ignore_missing_script,
        self_dependencies=tuple(_prefixed(n) for n in after),
        upstream_dependencies=tuple(_prefixed(n) for n in upstream),
    )


def _prefixed(name: str) -> str:
    return name if name.startswith(PHASE_NAME_PREFIX) else PHASE_NAME_PREFIX + name


# ---------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------

def project(
    name: str,
    folder: str | Path,
    *,
    scripts: Optional[Mapping[str, Optional[str]]] = None,  # None -> read package.json
    needs: Optional[Sequence[str]] = None,
    output_folders: Optional[Sequence[str]] = None,
) -> Project:
    return Project(
        name=name,
        folder=Path(folder),
        scripts=dict(scripts) if scripts is not None else None,
        dependencies=tuple(needs or ()),
        output_folders=tuple(output_folders or ()),
    )


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------

def command(
    name: str,
    *phases: str,
    description: str = "",
    ignore_missing_script: bool = False,
) -> Command:
    """
    command("build", "build")            # phased: runs _phase:build
    command("test", "build", "test")
    command("clean")                     # bulk: runs each project's "clean" script
    """
    return Command(
        name=name,
        phases=tuple(_prefixed(p) for p in phases),
        description=description,
        ignore_missing_script=ignore_missing_script,
    )


# ---------------------------------------------------------------------
# Custom parameters
# ---------------------------------------------------------------------

def _param(kind: str, long_name: str, phases: Iterable[str], **kw) -> CustomParameter:
    # accept "build" or "_phase:build"; bulk command names pass through untouched
    names = frozenset(phases)
    return CustomParameter(long_name=long_name, kind=kind, phases=names, **kw)


def flag(long_name: str, *, phases: Iterable[str] = (), short_name: Optional[str] = None, description: str = "") -> CustomParameter:
    return _param(FLAG, long_name, phases, short_name=short_name, description=description)


def string_param(long_name: str, *, phases: Iterable[str] = (), required: bool = False,
                 default: Optional[str] = None, description: str = "") -> CustomParameter:
    return _param(STRING, long_name, phases, required=required, default=default, description=description)


def choice_param(long_name: str, alternatives: Sequence[str], *, phases: Iterable[str] = (),
                 required: bool = False, default: Optional[str] = None, description: str = "") -> CustomParameter:
    return _param(CHOICE, long_name, phases, alternatives=tuple(alternatives), required=required,
                  default=default, description=description)


def integer_param(long_name: str, *, phases: Iterable[str] = (), required: bool = False,
                  default: Optional[str] = None, description: str = "") -> CustomParameter:
    return _param(INTEGER, long_name, phases, required=required, default=default, description=description)


def string_list_param(long_name: str, *, phases: Iterable[str] = (), required: bool = False,
                      description: str = "") -> CustomParameter:
    return _param(STRING_LIST, long_name, phases, required=required, description=description)


# ---------------------------------------------------------------------
# Build cache + workflow helper
# ---------------------------------------------------------------------

def build_cache(cache_root: str | Path = ".monorun/build-cache", *, keep: int = 20, enabled: bool = True) -> BuildCacheConfiguration:
    return BuildCacheConfiguration(cache_root=Path(cache_root), enabled=enabled, keep=keep)


def monorepo(
    *,
    phases: Sequence[Phase] = (),
    projects: Sequence[Project] = (),
    commands: Sequence[Command] = (),
    parameters: Sequence[CustomParameter] = (),
    cache: Optional[BuildCacheConfiguration] = None,
) -> Monorepo:
    """
    Monorepo definition helper. Config files write:

        from monorun.dsl import monorepo, phase, project, command

        def workflow():
            return monorepo(
                phases=[phase("build", upstream=["build"])],
                projects=[project("alpha", "packages/alpha")],
                commands=[command("build", "build")],
            )

    Paths are resolved relative to the config file by the loader.
    """
    return Monorepo(
        root=Path("."),
        phases=list(phases),
        projects=list(projects),
        parameters=list(parameters),
        commands=list(commands),
        build_cache=cache,
    )
