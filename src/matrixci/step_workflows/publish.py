# step_workflows/publish.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from ..deploy import DirectoryTarget, GitBranchTarget, deploy
from ..errors import ActionError
from ..model import DeploySpec
from . import as_bool, as_list, option

if TYPE_CHECKING:
    from ..model import JobContext, Step
    from ..runner import StepRunner


def spec_from_options(options: Dict[str, Any]) -> DeploySpec:
    """
    Accepts both our option names and the GitHub Pages deploy action's
    (FOLDER, BRANCH, CLEAN, CLEAN_EXCLUDE, SINGLE_COMMIT).
    """
    folder = option(options, "folder", "source")
    branch = option(options, "branch")
    target_dir = option(options, "target-dir", "target-folder")
    if not folder:
        raise ActionError("deploy needs `folder`")
    if not branch and not target_dir:
        raise ActionError("deploy needs `branch` or `target-dir`")

    return DeploySpec(
        source=str(folder),
        target=str(target_dir or branch),
        clean=as_bool(option(options, "clean")),
        clean_exclude=tuple(as_list(option(options, "clean-exclude"))),
        single_commit=as_bool(option(options, "single-commit")),
        commit_message=str(option(options, "commit-message", default="Deploy generated artifacts")),
    )


def run_deploy(runner: "StepRunner", ctx: "JobContext", step: "Step", options: Dict[str, Any]) -> None:
    spec = spec_from_options(options)
    if option(options, "target-dir", "target-folder"):
        target = DirectoryTarget(ctx.workspace / spec.target)
    else:
        repo = ctx.workspace / str(option(options, "repository-path", default="."))
        target = GitBranchTarget(repo, spec.target, remote=option(options, "remote"))

    result = deploy(spec, target, workspace=ctx.workspace)
    runner.console.print_deploy(ctx.job_name, result)
