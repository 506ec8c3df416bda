# step_workflows/toolchain.py
from __future__ import annotations

import shlex
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import ActionError
from . import as_bool, as_list, option

if TYPE_CHECKING:
    from ..model import JobContext, Step
    from ..runner import StepRunner


class RustupProvisioner:
    """
    Turns a (channel, target) pair into rustup commands.

    Channel and target are passed through untouched; rustup decides what
    they mean.
    """

    def __init__(self, rustup: str = "rustup"):
        self.rustup = rustup

    def commands(
        self,
        toolchain: str,
        target: Optional[str] = None,
        *,
        profile: Optional[str] = None,
        components: Optional[List[str]] = None,
        override: bool = False,
    ) -> List[str]:
        q = shlex.quote
        install = f"{self.rustup} toolchain install {q(toolchain)}"
        if profile:
            install += f" --profile {q(profile)}"
        cmds = [install]
        if target:
            cmds.append(f"{self.rustup} target add {q(target)} --toolchain {q(toolchain)}")
        for component in components or []:
            cmds.append(f"{self.rustup} component add {q(component)} --toolchain {q(toolchain)}")
        if override:
            cmds.append(f"{self.rustup} override set {q(toolchain)}")
        return cmds


def run_toolchain(runner: "StepRunner", ctx: "JobContext", step: "Step", options: Dict[str, Any]) -> None:
    toolchain = option(options, "toolchain")
    if not toolchain:
        raise ActionError(f"[{ctx.job_name}] toolchain step '{step.display_name}' needs `toolchain`")

    provisioner = RustupProvisioner(str(option(options, "rustup", default="rustup")))
    cmds = provisioner.commands(
        str(toolchain),
        str(option(options, "target")) if option(options, "target") else None,
        profile=option(options, "profile"),
        components=as_list(option(options, "components")),
        override=as_bool(option(options, "override")),
    )
    for cmd in cmds:
        runner.run_command(ctx, step.display_name, cmd)
