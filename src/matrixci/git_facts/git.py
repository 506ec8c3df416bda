# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional


def _git(args: list[str], cwd: str | Path | None = None, env: Optional[Dict[str, str]] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for text-producing Git
    operations in this file. A non-zero exit raises
    subprocess.CalledProcessError, which callers turn into their own errors.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.
        env: Extra environment variables layered over os.environ.
    """
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        env=full_env,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def _git_bytes(args: list[str], cwd: str | Path | None = None) -> bytes:
    """Same as _git() but returns raw stdout (for `git archive`)."""
    return subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        stderr=subprocess.PIPE,
    )


def repo_root(cwd: str | Path | None = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: str | Path | None = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: str | Path | None = None) -> str:
    """
    Name of the checked-out branch.

    Falls back to the short SHA on a detached HEAD, so callers always get
    something to match triggers against.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if name == "HEAD":
        return _git(["rev-parse", "--short", "HEAD"], cwd=cwd)
    return name


def resolve_ref(ref: str, cwd: str | Path | None = None) -> Optional[str]:
    """Commit SHA for `ref`, or None if it doesn't exist."""
    try:
        return _git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=cwd)
    except subprocess.CalledProcessError:
        return None


def list_tree(ref: str, cwd: str | Path | None = None) -> List[str]:
    """All file paths recorded in `ref`'s tree."""
    out = _git(["ls-tree", "-r", "--name-only", "-z", ref], cwd=cwd)
    return [p for p in out.split("\0") if p]


def archive(ref: str, cwd: str | Path | None = None) -> bytes:
    """Tar stream of `ref`'s tree."""
    return _git_bytes(["archive", "--format=tar", ref], cwd=cwd)


def count_commits(ref: str, cwd: str | Path | None = None) -> int:
    return int(_git(["rev-list", "--count", ref], cwd=cwd))


def git_dir(cwd: str | Path | None = None) -> Path:
    return Path(_git(["rev-parse", "--absolute-git-dir"], cwd=cwd))


def write_tree_from(directory: str | Path, index_file: str | Path, cwd: str | Path | None = None) -> str:
    """
    Record every file under `directory` into a fresh tree object of the
    repository at `cwd`.

    Uses a private index file so the caller's index and working tree are
    never touched.
    """
    env = {"GIT_INDEX_FILE": str(index_file)}
    repo_git_dir = str(git_dir(cwd))
    _git(
        ["--git-dir", repo_git_dir, "--work-tree", str(directory), "add", "--all", "--force", "."],
        cwd=directory,
        env=env,
    )
    return _git(["--git-dir", repo_git_dir, "write-tree"], cwd=directory, env=env)


def commit_tree(tree: str, message: str, parent: Optional[str] = None, cwd: str | Path | None = None) -> str:
    args = ["commit-tree", tree, "-m", message]
    if parent:
        args.extend(["-p", parent])
    return _git(args, cwd=cwd)


def update_ref(branch: str, new: str, old: Optional[str] = None, cwd: str | Path | None = None) -> None:
    """
    Move refs/heads/<branch> to `new`.

    With `old`, git refuses the update if the branch moved in the meantime.
    """
    args = ["update-ref", f"refs/heads/{branch}", new]
    if old:
        args.append(old)
    _git(args, cwd=cwd)


def push(
    remote: str,
    branch: str,
    *,
    source: Optional[str] = None,
    force: bool = False,
    cwd: str | Path | None = None,
) -> None:
    """Push `source` (default: the local branch) to `branch` on `remote`."""
    args = ["push"]
    if force:
        args.append("--force")
    src = source or f"refs/heads/{branch}"
    args.extend([remote, f"{src}:refs/heads/{branch}"])
    _git(args, cwd=cwd)
