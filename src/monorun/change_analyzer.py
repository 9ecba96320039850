# change_analyzer.py
from __future__ import annotations

import hashlib
import json
import os
import subprocess
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .git_facts.git import is_git_worktree, tracked_file_hashes
from .model import Phase, Project

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# fingerprint(project, phase) = hash(
#     phase name,
#     resolved command line,
#     hashes of the project's source files,
#     hashes of the source files of every project it depends on,
# )
#
# Source files come from git (index + uncommitted edits) when the project
# lives in a git work tree, otherwise from hashing file contents on disk.
# Output folders and monorun's own state folder never count as inputs.
#
# After a successful run the fingerprint is written to
#   <project>/.monorun/<phase>.json
# and compared on the next run to decide "unchanged".
# ---------------------------------------------------------------------

STATE_DIR = ".monorun"
DEFAULT_EXCLUDED_DIRS = ("node_modules", ".git", STATE_DIR, "__pycache__")


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _is_excluded(rel: str, excluded_prefixes: Iterable[str]) -> bool:
    parts = rel.split("/")
    if any(p in DEFAULT_EXCLUDED_DIRS for p in parts[:-1]):
        return True
    return any(rel == d or rel.startswith(d + "/") for d in excluded_prefixes)


def _walk_file_hashes(folder: Path) -> Dict[str, str]:
    """Content hashes of every file under `folder` (deterministic order)."""
    out: Dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(folder):
        dirnames[:] = sorted(d for d in dirnames if d not in DEFAULT_EXCLUDED_DIRS)
        for name in sorted(filenames):
            p = Path(dirpath) / name
            # stale symlinks, sockets, fifos
            if not p.is_file():
                continue
            rel = p.relative_to(folder).as_posix()
            out[rel] = _hash_file_contents(p)
    return out


def _safe_file_name(phase_name: str) -> str:
    return phase_name.replace(":", "_").replace("/", "_").replace("\\", "_")


class ProjectChangeAnalyzer:
    """
    Answers "did this project change since its last successful run of
    this phase?" Project file hashes are computed once per run and shared
    by every phase.
    """

    def __init__(self, projects: Sequence[Project], *, use_git: bool = True):
        self._by_name: Dict[str, Project] = {p.name: p for p in projects}
        self.use_git = use_git
        self._state_hashes: Dict[str, str] = {}
        self._lock = threading.Lock()

    # ---- hashing ----

    def get_project_file_hashes(self, project: Project) -> Dict[str, str]:
        folder = Path(project.folder)
        if not folder.is_dir():
            return {}

        hashes: Optional[Dict[str, str]] = None
        if self.use_git and is_git_worktree(folder):
            try:
                hashes = tracked_file_hashes(folder)
            except (subprocess.CalledProcessError, OSError):
                hashes = None
        if hashes is None:
            hashes = _walk_file_hashes(folder)

        excluded = [f.strip("/").replace("\\", "/") for f in project.output_folders]
        return {
            rel: h for rel, h in sorted(hashes.items())
            if not _is_excluded(rel, excluded)
        }

    def get_project_state_hash(self, project: Project) -> str:
        with self._lock:
            cached = self._state_hashes.get(project.name)
            if cached is None:
                cached = _sha256_str(_json_dumps_stable(self.get_project_file_hashes(project)))
                self._state_hashes[project.name] = cached
        return cached

    def _dependency_closure(self, project: Project) -> List[Project]:
        seen: Dict[str, Project] = {}
        stack = list(project.dependencies)
        while stack:
            name = stack.pop()
            if name in seen or name == project.name:
                continue
            dep = self._by_name.get(name)
            if dep is None:
                continue
            seen[name] = dep
            stack.extend(dep.dependencies)
        return [seen[n] for n in sorted(seen)]

    def get_fingerprint(self, project: Project, phase: Phase, command: str) -> str:
        payload = {
            "v": 1,  # bump this if you change hashing format
            "project": project.name,
            "phase": phase.name,
            "command": command,
            "files": self.get_project_state_hash(project),
            "dependencies": {
                dep.name: self.get_project_state_hash(dep)
                for dep in self._dependency_closure(project)
            },
        }
        return _sha256_str(_json_dumps_stable(payload))

    # ---- last-success state ----

    def state_file(self, project: Project, phase: Phase) -> Path:
        return Path(project.folder) / STATE_DIR / f"{_safe_file_name(phase.name)}.json"

    def is_project_unchanged(self, project: Project, phase: Phase, fingerprint: str) -> bool:
        path = self.state_file(project, phase)
        try:
            stored = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        return isinstance(stored, dict) and stored.get("fingerprint") == fingerprint

    def record_success(self, project: Project, phase: Phase, fingerprint: str) -> None:
        path = self.state_file(project, phase)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(_json_dumps_stable({"fingerprint": fingerprint, "phase": phase.name}), encoding="utf-8")
        tmp.replace(path)
