# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .expressions import Condition
from .model import (
    EVENT_PULL_REQUEST,
    EVENT_PUSH,
    Job,
    MatrixSpec,
    PipelineDefinition,
    Step,
    Trigger,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    when: str | Condition | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, condition=when, env=env or {})


def uses(
    action: str,
    name: str | None = None,
    *,
    when: str | Condition | None = None,
    env: Optional[Dict[str, str]] = None,
    **options: Any,
) -> Step:
    """Create an action step; keyword options become its `with:` block."""
    return Step(name=name, uses=action, with_=dict(options), condition=when, env=env or {})


def checkout(*, ref: str | None = None, repository: str | None = None) -> Step:
    opts: Dict[str, Any] = {}
    if ref:
        opts["ref"] = ref
    if repository:
        opts["repository"] = repository
    return uses("checkout", "Checkout", **opts)


def cache_step(
    name: str,
    path: str | Sequence[str],
    *,
    key: str | None = None,
    hash_files: Sequence[str] = (),
    prefix: str = "",
    when: str | Condition | None = None,
) -> Step:
    """Restore `path` now, save it after a successful job."""
    opts: Dict[str, Any] = {"path": path if isinstance(path, str) else list(path)}
    if key:
        opts["key"] = key
    if hash_files:
        opts["hash-files"] = list(hash_files)
    if prefix:
        opts["prefix"] = prefix
    return uses("cache", name, when=when, **opts)


def toolchain_step(
    toolchain: str,
    target: str | None = None,
    *,
    profile: str | None = "minimal",
    override: bool = True,
    name: str | None = None,
) -> Step:
    opts: Dict[str, Any] = {"toolchain": toolchain, "override": override}
    if target:
        opts["target"] = target
    if profile:
        opts["profile"] = profile
    return uses("toolchain", name or f"Toolchain {toolchain}", **opts)


def deploy_step(
    folder: str,
    *,
    branch: str | None = None,
    target_dir: str | None = None,
    clean: bool = False,
    clean_exclude: Sequence[str] = (),
    single_commit: bool = False,
    remote: str | None = None,
    name: str = "Deploy",
) -> Step:
    opts: Dict[str, Any] = {
        "folder": folder,
        "clean": clean,
        "clean-exclude": list(clean_exclude),
        "single-commit": single_commit,
    }
    if branch:
        opts["branch"] = branch
    if target_dir:
        opts["target-dir"] = target_dir
    if remote:
        opts["remote"] = remote
    return uses("deploy", name, **opts)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Fluent matrix builder.

    Example:
        matrix(os=["ubuntu-latest", "windows-latest"]).include(
            os="ubuntu-latest", TARGET="i686-unknown-linux-gnu",
        )
    """

    def __init__(self, axes: Dict[str, Iterable[Any]]):
        self._axes = {k: list(v) for k, v in axes.items()}
        self._include: List[Dict[str, Any]] = []
        self._additive = False

    def include(self, **record: Any) -> "Matrix":
        self._include.append(dict(record))
        return self

    def additive(self, enabled: bool = True) -> "Matrix":
        self._additive = enabled
        return self

    def build(self) -> MatrixSpec:
        return MatrixSpec(axes=dict(self._axes), include=list(self._include), additive_includes=self._additive)


def include(**record: Any) -> Dict[str, Any]:
    """An include record, for `matrix(include(...), os=[...])`."""
    return dict(record)


def matrix(*includes: Dict[str, Any], **axes: Iterable[Any]) -> Matrix:
    m = Matrix(axes)
    for record in includes:
        m.include(**record)
    return m


# ---------------------------------------------------------------------
# Jobs and pipelines
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    runs_on: str = "local",
    strategy: Matrix | MatrixSpec | None = None,
    fail_fast: bool = True,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to command steps missing cwd
) -> Job:
    if not steps:
        raise ValueError(f"job({name!r}) must have at least one step")

    steps_final = list(steps)
    if cwd is not None:
        steps_final = [s if s.cwd is not None or s.is_action else replace(s, cwd=cwd) for s in steps_final]

    spec = strategy.build() if isinstance(strategy, Matrix) else strategy
    return Job(
        name=name,
        steps=steps_final,
        runs_on=runs_on,
        matrix=spec,
        fail_fast=fail_fast,
        needs=list(needs or []),
        env=dict(env or {}),
    )


def on_push(*branches: str) -> Trigger:
    """No branches => every branch."""
    return Trigger(event=EVENT_PUSH, branches=tuple(branches) if branches else None)


def on_pull_request(*branches: str) -> Trigger:
    return Trigger(event=EVENT_PULL_REQUEST, branches=tuple(branches) if branches else None)


def pipeline(
    name: str,
    *jobs: Job,
    on: Sequence[Trigger] = (),
    env: Optional[Dict[str, str]] = None,
) -> PipelineDefinition:
    """
    Pipeline definition helper.

        PIPELINE = pipeline(
            "Rust",
            job("build", sh("Build", "cargo build")),
            on=[on_push("master"), on_pull_request("master")],
        )
    """
    if not jobs:
        raise ValueError(f"pipeline({name!r}) must have at least one job")
    return PipelineDefinition(name=name, triggers=list(on), jobs=list(jobs), env=dict(env or {}))
