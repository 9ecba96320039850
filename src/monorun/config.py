# config.py
from __future__ import annotations

import json
import runpy
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Set

from .errors import ConfigurationError
from .model import PHASE_NAME_PREFIX, Monorepo, Phase, Project

DEFAULT_CONFIG_NAME = "monorun_config.py"


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------

def find_config(start: str | Path = ".") -> Path:
    """
    Walk up from `start` looking for monorun_config.py.
    Raises ConfigurationError(ConfigNotFound) if none exists.
    """
    here = Path(start).resolve()
    for folder in (here, *here.parents):
        candidate = folder / DEFAULT_CONFIG_NAME
        if candidate.is_file():
            return candidate
    raise ConfigurationError(
        kind="ConfigNotFound",
        message=f"Could not find {DEFAULT_CONFIG_NAME} in {here} or any parent folder",
    )


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------

def load_monorepo(path: str | Path) -> Monorepo:
    """
    Load a monorepo definition from a python file.

    The file must define either:
      - workflow() -> Monorepo
      - MONOREPO = Monorepo(...)

    Relative project folders and the cache root are resolved against the
    folder holding the config file; project scripts default to the
    "scripts" section of <folder>/package.json.
    """
    cfg_path = Path(path).expanduser().resolve()
    if not cfg_path.exists():
        raise ConfigurationError(kind="ConfigNotFound", message=f"Config file not found: {cfg_path}")
    if cfg_path.suffix != ".py":
        raise ConfigurationError(kind="InvalidConfig", message=f"Config must be a .py file, got: {cfg_path.name}")

    globals_dict = runpy.run_path(str(cfg_path), run_name=f"monorun_config_{cfg_path.stem}")

    repo = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        repo = globals_dict["workflow"]()
    elif "MONOREPO" in globals_dict:
        repo = globals_dict["MONOREPO"]

    if not isinstance(repo, Monorepo):
        raise ConfigurationError(
            kind="InvalidConfig",
            message="Config must return/define a Monorepo. Define workflow() -> Monorepo or MONOREPO = monorepo(...).",
            details={"config": str(cfg_path)},
        )

    return resolve_monorepo(repo, cfg_path.parent)


def resolve_monorepo(repo: Monorepo, root: Path) -> Monorepo:
    """Resolve paths, load package.json scripts, validate names and links."""
    root = root.resolve()

    _check_unique("phase", [p.name for p in repo.phases])
    _check_unique("project", [p.name for p in repo.projects])
    _check_unique("command", [c.name for c in repo.commands])
    _check_unique("parameter", [p.long_name for p in repo.parameters])

    phase_names = {p.name for p in repo.phases}
    for ph in repo.phases:
        for dep in (*ph.self_dependencies, *ph.upstream_dependencies):
            if dep not in phase_names:
                raise ConfigurationError(
                    kind="UnknownPhase",
                    message=f"Phase '{ph.name}' depends on unknown phase '{dep}'",
                    phase=ph.name,
                    details={"known_phases": sorted(phase_names)},
                )

    projects = [_resolve_project(p, root) for p in repo.projects]
    project_names = {p.name for p in projects}
    projects = [_link_workspace_dependencies(p, project_names) for p in projects]

    # parameter "phases" may name a declared phase with or without prefix,
    # or a bulk command
    bulk_names = {c.name for c in repo.commands if c.is_bulk}
    for param in repo.parameters:
        resolved: Set[str] = set()
        for name in param.phases:
            if name in phase_names or name in bulk_names:
                resolved.add(name)
            elif PHASE_NAME_PREFIX + name in phase_names:
                resolved.add(PHASE_NAME_PREFIX + name)
            else:
                raise ConfigurationError(
                    kind="UnknownPhase",
                    message=f"Parameter '{param.long_name}' is associated with unknown phase '{name}'",
                    details={"known_phases": sorted(phase_names | bulk_names)},
                )
        param.phases = frozenset(resolved)

    phases: List[Phase] = []
    for ph in repo.phases:
        associated = frozenset(
            ph.associated_parameters
            | {p.long_name for p in repo.parameters if ph.name in p.phases}
        )
        phases.append(replace(ph, associated_parameters=associated))

    cache = repo.build_cache
    if cache is not None and not Path(cache.cache_root).is_absolute():
        cache = replace(cache, cache_root=root / cache.cache_root)

    return Monorepo(
        root=root,
        phases=phases,
        projects=projects,
        parameters=list(repo.parameters),
        commands=list(repo.commands),
        build_cache=cache,
    )


def _check_unique(what: str, names: List[str]) -> None:
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError(kind="InvalidConfig", message=f"Duplicate {what} names found: {dupes}")


def read_package_json(folder: Path) -> Optional[Dict]:
    pkg = folder / "package.json"
    if not pkg.is_file():
        return None
    try:
        data = json.loads(pkg.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(
            kind="InvalidConfig",
            message=f"Could not read {pkg}: {e}",
        ) from e
    return data if isinstance(data, dict) else None


def _resolve_project(project: Project, root: Path) -> Project:
    folder = Path(project.folder)
    if not folder.is_absolute():
        folder = root / folder

    scripts = project.scripts
    if scripts is None:
        pkg = read_package_json(folder) or {}
        raw = pkg.get("scripts")
        scripts = dict(raw) if isinstance(raw, dict) else {}

    return replace(project, folder=folder, scripts=scripts)


def _link_workspace_dependencies(project: Project, project_names: Set[str]) -> Project:
    """Add package.json dependencies that name other projects of the monorepo."""
    pkg = read_package_json(Path(project.folder)) or {}
    deps = list(project.dependencies)
    for section in ("dependencies", "devDependencies", "peerDependencies"):
        declared = pkg.get(section)
        if not isinstance(declared, dict):
            continue
        for name in sorted(declared):
            if name in project_names and name != project.name and name not in deps:
                deps.append(name)
    return replace(project, dependencies=tuple(deps))
