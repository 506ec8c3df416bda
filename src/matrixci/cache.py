# cache.py
from __future__ import annotations

import hashlib
import io
import json
import os
import tarfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Keyed caching around a job:
#   key = "<platform>-<prefix>-" + sha256(
#       platform discriminator,
#       bytes of each fingerprint input (e.g. Cargo.lock), in declared order
#   )
#
# Cache artifact:
#   a tar.gz of one storage path (a directory like ~/.cargo/registry or
#   target/), stored under the key, plus a manifest.json for explainability.
#
# Same key => same content. A miss is an empty starting state, not an error.
# Concurrent saves under the same key are last-write-wins.
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".matrixci/cache"
DEFAULT_CACHE_EXCLUDES = [
    ".git/**",
    ".matrixci/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]

_MISSING = b"\x00<missing>\x00"

FingerprintInput = Union[str, Path, bytes]


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def resolve_storage_path(path: str | Path, workspace: str | Path) -> Path:
    """`~` expands to the home dir; relative paths are relative to the workspace."""
    p = Path(os.path.expanduser(str(path)))
    if not p.is_absolute():
        p = Path(workspace) / p
    return p.resolve()


def hash_files(workspace: str | Path, patterns: Sequence[str]) -> str:
    """
    sha256 over the sha256 of every file matched by `patterns`.

    Files are taken in sorted path order per pattern. Returns "" when
    nothing matches.
    """
    root = Path(workspace).resolve()
    files: List[Path] = []
    seen = set()
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        direct = root / pat
        matches = [direct] if direct.is_file() else sorted(p for p in root.glob(pat) if p.is_file())
        for m in matches:
            rp = str(m.resolve())
            if rp not in seen:
                seen.add(rp)
                files.append(m)

    if not files:
        return ""

    h = hashlib.sha256()
    for f in files:
        h.update(bytes.fromhex(_hash_file_contents(f)))
    return h.hexdigest()


def _fingerprint_bytes(item: FingerprintInput, root: Path) -> bytes:
    if isinstance(item, bytes):
        return item
    p = Path(item)
    if not p.is_absolute():
        p = root / p
    if not p.is_file():
        return _MISSING + str(item).encode("utf-8")
    return p.read_bytes()


def compute_key(
    platform_id: str,
    fingerprint_inputs: Sequence[FingerprintInput],
    *,
    prefix: str = "",
    repo_root: str | Path = ".",
) -> str:
    """
    Deterministic cache key from a platform discriminator and fingerprint inputs.

    Inputs are file paths (read relative to `repo_root`) or raw bytes. Each
    chunk is length-prefixed so that moving a byte from one input to the
    next still changes the key.
    """
    root = Path(repo_root).resolve()
    h = hashlib.sha256()
    chunks = [platform_id.encode("utf-8")]
    chunks.extend(_fingerprint_bytes(item, root) for item in fingerprint_inputs)
    for chunk in chunks:
        h.update(f"{len(chunk)}:".encode("ascii"))
        h.update(chunk)

    return "-".join(part for part in (platform_id, prefix.strip("-"), h.hexdigest()) if part)


class CacheStore:
    """
    File-based, key-addressed blob store:
      root/
        <sha256(key)>.tar.gz
        <sha256(key)>.manifest.json
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{_sha256_str(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{_sha256_str(key)}.manifest.json"

    def exists(self, key: str) -> bool:
        return self.artifact_path(key).exists() and self.manifest_path(key).exists()

    def get(self, key: str) -> Optional[bytes]:
        if not self.exists(key):
            return None
        return self.artifact_path(key).read_bytes()

    def manifest(self, key: str) -> Dict:
        try:
            return json.loads(self.manifest_path(key).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}

    def put(self, key: str, blob: bytes, manifest: Optional[Dict] = None) -> None:
        """Write blob + manifest; temp file then rename, so readers never see half a blob."""
        art = self.artifact_path(key)
        man = self.manifest_path(key)
        manifest = dict(manifest or {})
        manifest.setdefault("key", key)
        manifest.setdefault("saved_at_unix", int(time.time()))

        # per-writer temp names; concurrent saves of one key are last-write-wins
        suffix = f".{os.getpid()}.{threading.get_ident()}.tmp"
        tmp_art = art.with_name(art.name + suffix)
        tmp_man = man.with_name(man.name + suffix)
        try:
            tmp_art.write_bytes(blob)
            tmp_man.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")
            tmp_art.replace(art)
            tmp_man.replace(man)
        finally:
            tmp_art.unlink(missing_ok=True)
            tmp_man.unlink(missing_ok=True)

    def prune(self, keep: int = 10) -> List[str]:
        """
        Keep only the newest N artifacts.
        Uses file mtime as "newest". Returns removed keys.
        """
        tars = sorted(self.root.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed: List[str] = []
        for p in tars[keep:]:
            stem = p.name[: -len(".tar.gz")]
            man = self.root / f"{stem}.manifest.json"
            try:
                removed.append(json.loads(man.read_text(encoding="utf-8")).get("key", stem))
            except (OSError, ValueError):
                removed.append(stem)
            p.unlink(missing_ok=True)
            man.unlink(missing_ok=True)
        return removed


def _pack(src: Path, *, exclude_globs: List[str]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        if src.is_file():
            tar.add(str(src), arcname=src.name, recursive=False)
        else:
            for f in _iter_files_under(src):
                rel = _relpath(f, src)
                if _matches_any_glob(rel, exclude_globs):
                    continue
                tar.add(str(f), arcname=rel, recursive=False)
    return buf.getvalue()


def _unpack(blob: bytes, dest: Path) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(path=str(dest), filter="data")
        else:
            tar.extractall(path=str(dest))


class CacheManager:
    """
    Restore/save one storage path around a job, bound to a workspace.

    restore() never raises for a missing or unreadable archive; the job just
    starts from an empty path.
    """

    def __init__(self, store: CacheStore, workspace: str | Path = "."):
        self.store = store
        self.workspace = Path(workspace).resolve()

    def compute_key(self, platform_id: str, fingerprint_inputs: Sequence[FingerprintInput], prefix: str = "") -> str:
        return compute_key(platform_id, fingerprint_inputs, prefix=prefix, repo_root=self.workspace)

    def restore(self, path: str | Path, key: str) -> CacheHit:
        target = resolve_storage_path(path, self.workspace)
        blob = self.store.get(key)
        if blob is None:
            return CacheHit(hit=False, key=key, reason="cache miss")

        stored = self.store.manifest(key)
        dest = target.parent if stored.get("kind") == "file" else target
        try:
            _unpack(blob, dest)
        except (tarfile.TarError, OSError, EOFError) as e:
            return CacheHit(hit=False, key=key, reason=f"cache exists but restore failed: {e}")

        return CacheHit(hit=True, key=key, reason="cache hit: restored artifact")

    def save(
        self,
        path: str | Path,
        key: str,
        hit: Optional[CacheHit] = None,
        *,
        excludes: Optional[List[str]] = None,
    ) -> bool:
        """
        Archive `path` under `key`. Returns False when nothing was saved:
        the restore already hit this exact key, or the path does not exist.
        """
        if hit is not None and hit.hit and hit.key == key:
            return False

        src = resolve_storage_path(path, self.workspace)
        if not src.exists():
            return False

        exclude_globs = list(DEFAULT_CACHE_EXCLUDES)
        if excludes:
            exclude_globs.extend(excludes)

        blob = _pack(src, exclude_globs=exclude_globs)
        self.store.put(
            key,
            blob,
            {
                "path": str(path),
                "kind": "file" if src.is_file() else "dir",
                "size": len(blob),
            },
        )
        return True
