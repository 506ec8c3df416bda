# step_workflows/checkout.py
from __future__ import annotations

import shlex
from typing import TYPE_CHECKING, Any, Dict

from . import option

if TYPE_CHECKING:
    from ..model import JobContext, Step
    from ..runner import StepRunner


def run_checkout(runner: "StepRunner", ctx: "JobContext", step: "Step", options: Dict[str, Any]) -> None:
    """
    Make the sources available in the workspace.

    Locally the workspace usually *is* the checkout, so without a
    `repository` this only switches to `ref` when one is given.
    """
    repository = option(options, "repository")
    ref = option(options, "ref")
    path = option(options, "path", default=".")
    name = step.display_name

    dest = (ctx.workspace / path).resolve()
    if repository:
        if dest.exists() and any(dest.iterdir()):
            runner.run_command(ctx, name, "git fetch --all --tags", cwd=path)
        else:
            dest.mkdir(parents=True, exist_ok=True)
            runner.run_command(ctx, name, f"git clone {shlex.quote(str(repository))} .", cwd=path)

    if ref:
        runner.run_command(ctx, name, f"git checkout {shlex.quote(str(ref))}", cwd=path)
    elif not repository:
        runner.console.print_debug(f"[{ctx.job_name}] checkout: using workspace {ctx.workspace} as-is")
