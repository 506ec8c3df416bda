# deploy.py
from __future__ import annotations

import io
import os
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence, Set

from .errors import DeployFailure
from .git_facts import git
from .model import DeploySpec

_GLOB_CHARS = set("*?[")


@dataclass
class DeployResult:
    target: str
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    preserved: List[str] = field(default_factory=list)
    commit: Optional[str] = None


class DeployTarget(Protocol):
    """Where a deploy lands. Implementations must make publish() all-or-nothing."""

    description: str

    def list_files(self) -> List[str]: ...

    def materialize(self, dest: Path) -> None: ...

    def publish(self, tree: Path, *, single_commit: bool, message: str) -> Optional[str]: ...


def _walk_files(root: Path, skip: Sequence[str] = ()) -> List[str]:
    out: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in skip)
        for name in sorted(filenames):
            out.append((Path(dirpath) / name).relative_to(root).as_posix())
    return out


def is_excluded(rel_path: str, excludes: Iterable[str]) -> bool:
    """
    Whether a clean deploy must keep `rel_path`.

    Each entry is an exact relative path, a directory (protects everything
    below it), or, when it contains * ? or [, an fnmatch pattern.
    """
    rel_path = rel_path.strip("/")
    for entry in excludes:
        entry = entry.strip().strip("/")
        if not entry:
            continue
        if _GLOB_CHARS & set(entry):
            if fnmatch(rel_path, entry):
                return True
        elif rel_path == entry or rel_path.startswith(entry + "/"):
            return True
    return False


def _prune_empty_dirs(root: Path) -> None:
    for dirpath, _dirnames, _filenames in sorted(os.walk(root), key=lambda t: len(t[0]), reverse=True):
        p = Path(dirpath)
        if p != root and not any(p.iterdir()):
            p.rmdir()


# ----------------------------------------------------------------------
# Targets
# ----------------------------------------------------------------------

class DirectoryTarget:
    """
    A plain directory. publish() builds the new tree next to the target and
    swaps it in with renames; a `.git` directory inside the target is kept.
    """

    KEEP = (".git",)

    def __init__(self, path: str | Path):
        self.path = Path(path).resolve()
        self.description = str(self.path)

    def list_files(self) -> List[str]:
        if not self.path.is_dir():
            return []
        return _walk_files(self.path, skip=self.KEEP)

    def materialize(self, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        for rel in self.list_files():
            out = dest / rel
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.path / rel, out)

    def publish(self, tree: Path, *, single_commit: bool, message: str) -> Optional[str]:
        # single_commit has no meaning for a directory: it never has history
        parent = self.path.parent
        parent.mkdir(parents=True, exist_ok=True)
        incoming = Path(tempfile.mkdtemp(prefix=f".{self.path.name}.new-", dir=parent))
        outgoing = parent / f".{self.path.name}.old-{os.getpid()}"
        shutil.rmtree(outgoing, ignore_errors=True)
        try:
            shutil.copytree(tree, incoming, dirs_exist_ok=True)
            had_old = self.path.exists()
            if had_old:
                self.path.rename(outgoing)
        except OSError:
            shutil.rmtree(incoming, ignore_errors=True)
            raise

        try:
            incoming.rename(self.path)
        except OSError:
            if had_old:
                outgoing.rename(self.path)
            shutil.rmtree(incoming, ignore_errors=True)
            raise

        if had_old:
            for keep in self.KEEP:
                if (outgoing / keep).exists():
                    (outgoing / keep).rename(self.path / keep)
            shutil.rmtree(outgoing, ignore_errors=True)
        return None


class GitBranchTarget:
    """
    A branch of a local git repository (e.g. `docs`).

    The new tree is written with a private index and recorded by moving the
    branch ref in one update-ref call; the caller's checkout is untouched.
    With single_commit the new commit has no parent, so the branch holds
    exactly one commit. An optional remote receives the commit before the
    local ref moves (forced when history was rewritten), so a failed push
    leaves the branch where it was.
    """

    def __init__(self, repo: str | Path, branch: str, remote: Optional[str] = None):
        self.repo = Path(repo).resolve()
        self.branch = branch
        self.remote = remote
        self.description = f"{self.repo}@{branch}"

    def _head(self) -> Optional[str]:
        return git.resolve_ref(f"refs/heads/{self.branch}", cwd=self.repo)

    def list_files(self) -> List[str]:
        if self._head() is None:
            return []
        return git.list_tree(f"refs/heads/{self.branch}", cwd=self.repo)

    def materialize(self, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        if self._head() is None:
            return
        blob = git.archive(f"refs/heads/{self.branch}", cwd=self.repo)
        with tarfile.open(fileobj=io.BytesIO(blob), mode="r:") as tar:
            if hasattr(tarfile, "data_filter"):
                tar.extractall(path=str(dest), filter="data")
            else:
                tar.extractall(path=str(dest))

    def publish(self, tree: Path, *, single_commit: bool, message: str) -> Optional[str]:
        old = self._head()
        with tempfile.TemporaryDirectory(prefix="matrixci-index-") as tmp:
            tree_sha = git.write_tree_from(tree, Path(tmp) / "index", cwd=self.repo)
        parent = None if single_commit else old
        commit = git.commit_tree(tree_sha, message, parent=parent, cwd=self.repo)
        # the remote takes the commit before the local branch moves
        if self.remote:
            git.push(self.remote, self.branch, source=commit, force=single_commit, cwd=self.repo)
        git.update_ref(self.branch, commit, old, cwd=self.repo)
        return commit


# ----------------------------------------------------------------------
# Deploy
# ----------------------------------------------------------------------

def deploy(spec: DeploySpec, target: DeployTarget, *, workspace: str | Path = ".") -> DeployResult:
    """
    Sync `spec.source` into `target`.

    The complete new tree is assembled in a scratch directory first and
    handed to target.publish() in one piece, so a failure anywhere leaves
    the target exactly as it was.
    """
    source = Path(spec.source)
    if not source.is_absolute():
        source = Path(workspace) / source
    source = source.resolve()
    if not source.is_dir():
        raise DeployFailure(f"deploy source is not a directory: {source}")

    result = DeployResult(target=target.description)
    try:
        source_files = _walk_files(source)
        source_set: Set[str] = set(source_files)
        current = set(target.list_files())

        with tempfile.TemporaryDirectory(prefix="matrixci-deploy-") as tmp:
            staged = Path(tmp) / "tree"
            target.materialize(staged)

            if spec.clean:
                for rel in sorted(current - source_set):
                    if is_excluded(rel, spec.clean_exclude):
                        result.preserved.append(rel)
                        continue
                    (staged / rel).unlink(missing_ok=True)
                    result.deleted.append(rel)
                _prune_empty_dirs(staged)

            for rel in source_files:
                out = staged / rel
                out.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source / rel, out)
                (result.updated if rel in current else result.added).append(rel)

            result.commit = target.publish(staged, single_commit=spec.single_commit, message=spec.commit_message)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip() if isinstance(e.stderr, str) else ""
        raise DeployFailure(f"git failed for {target.description}: {stderr or e}") from e
    except OSError as e:
        raise DeployFailure(f"deploy to {target.description} failed: {e}") from e

    return result
