# cache.py
from __future__ import annotations

import json
import os
import shutil
import tarfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from .errors import InfrastructureError
from .model import BuildCacheConfiguration

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Operation-level caching, keyed by the fingerprint the change analyzer
# computes for (project, phase, command, inputs).
#
# Cache entry:
#   a tar.gz of the project's declared output folders, plus a
#   manifest.json for explainability and the captured log of the run
#   that produced it.
#
#   root/
#     <fp[:2]>/
#       <fp>.tar.gz
#       <fp>.manifest.json
#       <fp>.log
#
# Every file is written to a temp name and renamed into place, so two
# operations storing different fingerprints never see each other's
# partial writes.
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry:
    """What a successful operation hands to the store."""
    project: str
    phase: str
    source_folder: Path
    output_folders: Tuple[str, ...]
    log: str


@dataclass(frozen=True)
class CachedResult:
    fingerprint: str
    artifact: Path
    log: str
    manifest: Dict


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def remove_output(path: str | Path) -> None:
    p = Path(path)
    if p.is_dir():
        shutil.rmtree(p)
    elif p.exists():
        p.unlink()


class BuildCacheStore:
    """File-based build cache."""

    def __init__(self, configuration: BuildCacheConfiguration):
        self.configuration = configuration
        self.root = Path(configuration.cache_root).resolve()
        self._prune_lock = threading.Lock()

    def _entry_dir(self, fingerprint: str) -> Path:
        return self.root / fingerprint[:2]

    def artifact_path(self, fingerprint: str) -> Path:
        return self._entry_dir(fingerprint) / f"{fingerprint}.tar.gz"

    def manifest_path(self, fingerprint: str) -> Path:
        return self._entry_dir(fingerprint) / f"{fingerprint}.manifest.json"

    def log_path(self, fingerprint: str) -> Path:
        return self._entry_dir(fingerprint) / f"{fingerprint}.log"

    # ---- read ----

    def try_restore(self, fingerprint: str) -> Optional[CachedResult]:
        """Look up an entry. None on a miss; raises CacheReadFailed if the entry is unreadable."""
        art = self.artifact_path(fingerprint)
        man = self.manifest_path(fingerprint)
        if not art.exists() or not man.exists():
            return None

        try:
            manifest = json.loads(man.read_text(encoding="utf-8"))
            log_file = self.log_path(fingerprint)
            log = log_file.read_text(encoding="utf-8") if log_file.exists() else ""
        except (OSError, ValueError) as e:
            raise InfrastructureError(
                kind="CacheReadFailed",
                message=f"cache entry exists but could not be read: {e}",
                details={"fingerprint": fingerprint},
            ) from e

        return CachedResult(fingerprint=fingerprint, artifact=art, log=log, manifest=manifest)

    def extract(self, cached: CachedResult, destination: str | Path) -> None:
        """
        Replace the output folders under `destination` with the cached ones.
        Restore is "clean, then extract".
        """
        dest = Path(destination).resolve()
        try:
            for folder in cached.manifest.get("output_folders", []):
                remove_output(dest / folder)
            with tarfile.open(str(cached.artifact), mode="r:gz") as tar:
                tar.extractall(path=str(dest), filter="data")
        except (OSError, tarfile.TarError) as e:
            raise InfrastructureError(
                kind="CacheReadFailed",
                message=f"cache exists but restore failed: {e}",
                details={"fingerprint": cached.fingerprint, "destination": str(dest)},
            ) from e

    # ---- write ----

    def store(self, fingerprint: str, entry: CacheEntry) -> CachedResult:
        """Save the entry's output folders under `fingerprint`."""
        art = self.artifact_path(fingerprint)
        man = self.manifest_path(fingerprint)
        log_file = self.log_path(fingerprint)
        suffix = f".{os.getpid()}.{threading.get_ident()}.tmp"

        source = Path(entry.source_folder).resolve()
        files = []
        manifest = {
            "fingerprint": fingerprint,
            "project": entry.project,
            "phase": entry.phase,
            "output_folders": list(entry.output_folders),
            "files": files,
            "generated_at_unix": int(time.time()),
        }

        tmp_art = art.with_name(art.name + suffix)
        tmp_man = man.with_name(man.name + suffix)
        tmp_log = log_file.with_name(log_file.name + suffix)
        try:
            art.parent.mkdir(parents=True, exist_ok=True)
            with tarfile.open(str(tmp_art), mode="w:gz") as tar:
                for folder in entry.output_folders:
                    src = source / folder
                    if src.is_file():
                        members = [src]
                    elif src.is_dir():
                        members = list(_iter_files_under(src))
                    else:
                        continue
                    for f in members:
                        rel = f.relative_to(source).as_posix()
                        tar.add(str(f), arcname=rel, recursive=False)
                        files.append(rel)

            tmp_log.write_text(entry.log, encoding="utf-8")
            tmp_man.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")

            tmp_art.replace(art)
            tmp_log.replace(log_file)
            # manifest last: its presence marks the entry complete
            tmp_man.replace(man)

            self.prune(self.configuration.keep, project=entry.project, phase=entry.phase)
        except (OSError, tarfile.TarError) as e:
            raise InfrastructureError(
                kind="CacheWriteFailed",
                message=str(e),
                project=entry.project,
                phase=entry.phase,
                details={"fingerprint": fingerprint, "cache_root": str(self.root)},
            ) from e
        finally:
            for tmp in (tmp_art, tmp_man, tmp_log):
                if tmp.exists():
                    tmp.unlink(missing_ok=True)

        return CachedResult(fingerprint=fingerprint, artifact=art, log=entry.log, manifest=manifest)

    @staticmethod
    def _owner(manifest_path: Path) -> Tuple[Optional[str], Optional[str]]:
        try:
            data = json.loads(manifest_path.read_text(encoding="utf-8"))
        except ValueError:
            return (None, None)
        if not isinstance(data, dict):
            return (None, None)
        return (data.get("project"), data.get("phase"))

    def prune(self, keep: int, *, project: Optional[str] = None, phase: Optional[str] = None) -> None:
        """
        Keep only the newest N entries, per (project, phase) when given,
        otherwise across the whole store.
        Uses manifest mtime as "newest".
        """
        if keep <= 0 or not self.root.exists():
            return
        with self._prune_lock:
            dated = []
            for man in self.root.glob("*/*.manifest.json"):
                try:
                    mtime = man.stat().st_mtime
                    if project is not None and self._owner(man) != (project, phase):
                        continue
                except FileNotFoundError:
                    continue
                dated.append((mtime, man))
            dated.sort(key=lambda t: t[0], reverse=True)
            for _mtime, man in dated[keep:]:
                fingerprint = man.name[: -len(".manifest.json")]
                man.unlink(missing_ok=True)
                self.artifact_path(fingerprint).unlink(missing_ok=True)
                self.log_path(fingerprint).unlink(missing_ok=True)
