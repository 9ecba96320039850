# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None, *, strip: bool = True) -> str:
    """
    Execute a git command and return its stdout as a clean string.
    Pass strip=False for porcelain output, where leading spaces are data.

    Raises subprocess.CalledProcessError when git exits non-zero and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip() if strip else out


def is_git_worktree(folder: str | Path) -> bool:
    """True if `folder` is inside a Git work tree and git is available."""
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=folder) == "true"
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return False


def tracked_file_hashes(folder: str | Path) -> Dict[str, str]:
    """
    Map of path (relative to `folder`, forward slashes) -> blob hash for
    every file under `folder` Git knows about.

    Uses the index for clean files; modified and untracked files are
    hashed with `git hash-object` so uncommitted edits change the result.
    Deleted files are dropped.
    """
    hashes: Dict[str, str] = {}

    # "<mode> <sha> <stage>\t<path>", NUL separated
    for line in _git(["ls-files", "-s", "-z", "--", "."], cwd=folder, strip=False).split("\0"):
        meta, _, path = line.partition("\t")
        parts = meta.split()
        if len(parts) >= 2 and path:
            hashes[path] = parts[1]

    dirty: List[str] = []
    deleted: List[str] = []
    # -z keeps paths with spaces intact; "XY <path>"
    status = _git(["status", "--porcelain", "-z", "--untracked-files=all", "--", "."], cwd=folder, strip=False)
    prefix = _git(["rev-parse", "--show-prefix"], cwd=folder)
    entries = status.split("\0")
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        code, path = entry[:2], entry[3:]
        if "R" in code or "C" in code:
            # renames/copies are followed by the original path
            i += 1
        # porcelain paths are relative to the repo root
        if prefix and path.startswith(prefix):
            path = path[len(prefix):]
        if "D" in code:
            deleted.append(path)
        else:
            dirty.append(path)

    for path in deleted:
        hashes.pop(path, None)

    if dirty:
        out = _git(["hash-object", "--", *dirty], cwd=folder)
        for path, sha in zip(dirty, out.splitlines()):
            hashes[path] = sha

    return hashes
