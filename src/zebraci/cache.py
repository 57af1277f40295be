# cache.py
from __future__ import annotations

import hashlib
import json
import subprocess
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .model import PipelineConfig

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Dependency caching for local builds:
#   cache_key = hash(
#       toolchain version (rustc -V),
#       contents of the lock files (Cargo.lock, Cargo.toml),
#   )
#
# Cache artifact:
#   a tar.gz of CARGO_HOME with a manifest.json beside it for explainability.
#
# The cache is restored before `cargo fetch` and saved right after a
# successful fetch. It never enters the runtime image: image assembly
# builds from a context that only holds the artifact.
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".zebraci/cache"
CACHE_NAME = "dependencies"


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def toolchain_version(tool: str = "rustc") -> Optional[str]:
    """Best-effort version discovery; None when the tool is missing."""
    try:
        completed = subprocess.run(
            [tool, "-V"],
            text=True,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError:
        return None
    text = (completed.stdout or "").strip() or (completed.stderr or "").strip()
    if completed.returncode != 0 or not text:
        return None
    # Normalize whitespace to make hashing stable
    return " ".join(text.split())


def compute_cache_key(
    config: PipelineConfig,
    *,
    repo_root: str | Path = ".",
    toolchain: Optional[str] = None,
) -> Tuple[str, Dict]:
    """
    Returns (cache_key, manifest) where manifest can be stored for explainability.
    """
    root = Path(repo_root).resolve()

    lock_fps: List[Tuple[str, str]] = []
    missing: List[str] = []
    for name in config.build.lock_files:
        p = root / name
        if p.is_file():
            lock_fps.append((name, _hash_file_contents(p)))
        else:
            missing.append(name)

    payload = {
        "v": 1,  # bump this if you change hashing format
        "toolchain": toolchain,
        "lock_files": sorted(lock_fps),
        "missing": sorted(missing),
    }
    key = _sha256_str(_json_dumps_stable(payload))
    manifest = {
        "key": key,
        "payload": payload,
        "generated_at_unix": int(time.time()),
    }
    return key, manifest


class DependencyCache:
    """
    File-based dependency cache store:
      root/
        dependencies/
          <key>.tar.gz
          <key>.manifest.json
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _dir(self) -> Path:
        d = self.root / CACHE_NAME
        d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, key: str) -> Path:
        return self._dir() / f"{key}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self._dir() / f"{key}.manifest.json"

    def restore(self, key: str, cache_home: Path) -> CacheHit:
        """
        Extract a cached CARGO_HOME into `cache_home`.

        A broken archive counts as a miss; the fetch step then repopulates it.
        """
        art = self.artifact_path(key)
        man = self.manifest_path(key)
        if not art.exists() or not man.exists():
            return CacheHit(hit=False, key=key, reason="miss", manifest={})

        cache_home.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                tar.extractall(path=str(cache_home), filter="data")
        except (tarfile.TarError, OSError) as e:
            return CacheHit(hit=False, key=key, reason=f"restore failed: {e}", manifest={})

        try:
            stored = json.loads(man.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            stored = {}
        return CacheHit(hit=True, key=key, reason="hit: restored dependencies", manifest=stored)

    def save(self, key: str, manifest: Dict, cache_home: Path) -> Path:
        """Archive `cache_home` under `key`. Built in a temp file, then renamed."""
        art = self.artifact_path(key)
        man = self.manifest_path(key)
        tmp = art.with_suffix(".tmp")
        cache_home = cache_home.resolve()
        try:
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                if cache_home.exists():
                    for f in _iter_files_under(cache_home):
                        arcname = f.relative_to(cache_home).as_posix()
                        tar.add(str(f), arcname=arcname, recursive=False)

            tmp.replace(art)
            man.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)
        return art

    def keys(self) -> List[str]:
        """Cached keys, newest first (by mtime)."""
        tars = sorted(self._dir().glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.name[: -len(".tar.gz")] for p in tars]

    def prune(self, keep: int = 3) -> List[str]:
        """Keep only the newest N archives. Returns the removed keys."""
        if keep < 1:
            raise ValueError(f"keep must be at least 1, got {keep}")
        removed = self.keys()[keep:]
        for key in removed:
            self.artifact_path(key).unlink(missing_ok=True)
            self.manifest_path(key).unlink(missing_ok=True)
        return removed
