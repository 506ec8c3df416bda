# runner.py
from __future__ import annotations

import os
import subprocess
import tarfile
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from .cache import DEFAULT_CACHE_DIR, CacheManager, CacheStore
from .dag import build_dag, topo_levels
from .errors import ActionError, CIError, DeployFailure, ExpressionError, StepFailure
from .expressions import build_context, evaluate_condition, interpolate, interpolate_value
from .matrix import expand_job, expand_matrix
from .model import (
    CANCELLED,
    FAILED,
    SKIPPED,
    SUCCESS,
    CancelToken,
    Event,
    Job,
    JobContext,
    JobInstance,
    JobResult,
    PipelineDefinition,
    RunResult,
    Step,
    StepResult,
)
from .step_workflows import ActionRegistry, default_registry
from .triggers import should_run
from .ui.console import Console, get_console

TOOL_HINTS = {
    "cargo": "Install a Rust toolchain (rustup) or fix PATH.",
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "git": "Install Git or fix PATH.",
    "apt": "apt is only available on Debian/Ubuntu runners; guard the step with an `if:`.",
    "sudo": "sudo is not available here; guard the step with an `if:` on the platform.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


# ----------------------------------------------------------------------
# Command execution
# ----------------------------------------------------------------------

@dataclass
class CommandResult:
    exit_code: int
    output: str = ""


class CommandExecutor(Protocol):
    def run(self, cmd: str, *, cwd: Path, env: Dict[str, str]) -> CommandResult: ...


class SubprocessExecutor:
    """Runs shell strings with the platform shell; stdout and stderr are merged."""

    def run(self, cmd: str, *, cwd: Path, env: Dict[str, str]) -> CommandResult:
        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        return CommandResult(exit_code=proc.returncode, output=proc.stdout or "")


def _hint_for(cmd: str, exit_code: int) -> Optional[str]:
    if exit_code != 127:
        return None
    first = cmd.strip().split()[0] if cmd.strip() else ""
    if first == "sudo" and len(cmd.split()) > 1:
        first = cmd.split()[1]
    return TOOL_HINTS.get(first, f"Command not found: {first}")


# ----------------------------------------------------------------------
# Step Runner
# ----------------------------------------------------------------------

class StepRunner:
    """
    Runs one job instance's steps, strictly in order.

    A false condition skips a step. The first failing step fails the job
    and nothing after it runs. The cancel token is only looked at between
    steps, so a running step (a deploy, say) always finishes.
    """

    def __init__(
        self,
        executor: Optional[CommandExecutor] = None,
        actions: Optional[ActionRegistry] = None,
        cache_store: Optional[CacheStore] = None,
        console: Optional[Console] = None,
    ):
        self.executor = executor or SubprocessExecutor()
        self.actions = actions or default_registry()
        self.cache_store = cache_store or CacheStore(DEFAULT_CACHE_DIR)
        self.console = console or get_console()

    def cache_for(self, ctx: JobContext) -> CacheManager:
        return CacheManager(self.cache_store, ctx.workspace)

    def expression_context(self, ctx: JobContext) -> dict:
        return build_context(ctx.matrix, ctx.platform, ctx.env, ctx.event)

    def job_env(self, ctx: JobContext) -> Dict[str, str]:
        """process env < pipeline/job env < MATRIX_* variables."""
        env = os.environ.copy()
        env.update(ctx.env)
        for axis, value in ctx.matrix.items():
            env[f"MATRIX_{axis.upper().replace('-', '_')}"] = str(value)
        return env

    def step_env(self, ctx: JobContext, step: Step, expr_ctx: dict) -> Dict[str, str]:
        env = self.job_env(ctx)
        env.update({k: str(interpolate(v, expr_ctx, ctx.workspace)) for k, v in step.env.items()})
        return env

    def run_command(self, ctx: JobContext, step_name: str, cmd: str, *, cwd: Optional[str] = None,
                    env: Optional[Dict[str, str]] = None) -> CommandResult:
        """Run one shell command for a job; raise StepFailure on non-zero exit."""
        workdir = (ctx.workspace / (cwd or ".")).resolve()
        if not workdir.is_dir():
            raise CIError(
                kind="cwd_missing",
                job=ctx.job_name,
                step=step_name,
                message=f"working directory not found: {workdir}",
            )

        result = self.executor.run(cmd, cwd=workdir, env=env if env is not None else self.job_env(ctx))
        if self.console.debug or result.exit_code != 0:
            self.console.print_output(ctx.job_name, result.output[-4000:])
        if result.exit_code != 0:
            hint = _hint_for(cmd, result.exit_code)
            if hint:
                self.console.print_info(f"[{ctx.job_name}] Hint: {hint}")
            raise StepFailure(job=ctx.job_name, step=step_name, cmd=cmd, exit_code=result.exit_code)
        return result

    def _run_step(self, ctx: JobContext, step: Step, expr_ctx: dict) -> None:
        if step.is_action:
            handler = self.actions.resolve(step.uses or "")
            options = interpolate_value(dict(step.with_), expr_ctx, ctx.workspace)
            handler(self, ctx, step, options)
            return

        cmd = str(interpolate(step.run, expr_ctx, ctx.workspace))
        env = self.step_env(ctx, step, expr_ctx)
        self.run_command(ctx, step.display_name, cmd, cwd=step.cwd, env=env)

    def run_job(self, ctx: JobContext) -> JobResult:
        name = ctx.job_name
        result = JobResult(name=name, status=SUCCESS)

        if ctx.cancel_token.cancelled:
            result.status = CANCELLED
            result.error = ctx.cancel_token.reason
            self.console.print_cancelled(name, ctx.cancel_token.reason or "cancelled before start")
            return result

        self.console.print_job_start(name, ctx.platform)

        for step in ctx.instance.job.steps:
            step_name = step.display_name
            if ctx.cancel_token.cancelled:
                result.status = CANCELLED
                result.error = ctx.cancel_token.reason
                self.console.print_cancelled(name, ctx.cancel_token.reason or "cancelled")
                return result

            expr_ctx = self.expression_context(ctx)
            try:
                if not evaluate_condition(step.condition, expr_ctx):
                    result.steps.append(StepResult(name=step_name, status=SKIPPED, message="condition is false"))
                    self.console.print_step_skipped(name, step_name, f"if: {step.condition}")
                    continue

                self.console.print_step(name, step_name)
                self._run_step(ctx, step, expr_ctx)
                result.steps.append(StepResult(name=step_name, status=SUCCESS))
            except StepFailure as e:
                result.steps.append(StepResult(name=step_name, status=FAILED, exit_code=e.exit_code, message=str(e)))
                result.status = FAILED
                result.error = str(e)
                self.console.print_failure(step_name, str(e), exit_code=e.exit_code)
                break
            except (CIError, ActionError, ExpressionError, DeployFailure, OSError) as e:
                result.steps.append(StepResult(name=step_name, status=FAILED, message=str(e)))
                result.status = FAILED
                result.error = str(e)
                self.console.print_failure(step_name, str(e))
                break

        if result.status == SUCCESS:
            self._run_post_steps(ctx)
            self.console.print_success(name)
        else:
            self.console.print_failure(name, result.error or "", is_job=True)
        return result

    def _run_post_steps(self, ctx: JobContext) -> None:
        # post steps (cache saves) run in reverse registration order, like action `post:` hooks
        for post_name, fn in reversed(ctx.post_steps):
            try:
                fn()
            except (OSError, tarfile.TarError) as e:
                self.console.print_warning(f"[{ctx.job_name}] post step '{post_name}' failed: {e}")


# ----------------------------------------------------------------------
# Pipeline orchestration
# ----------------------------------------------------------------------

def _unique_name(name: str, taken: Dict[str, JobResult]) -> str:
    if name not in taken:
        return name
    i = 2
    while f"{name} #{i}" in taken:
        i += 1
    return f"{name} #{i}"


def _job_env(pipeline: PipelineDefinition, job: Job, instance: JobInstance, event: Event, workspace: Path) -> Dict[str, str]:
    ctx = build_context(instance.matrix, instance.runs_on, pipeline.env, event)
    env = {k: str(interpolate(v, ctx, workspace)) for k, v in pipeline.env.items()}
    ctx["env"] = dict(env)
    env.update({k: str(interpolate(v, ctx, workspace)) for k, v in job.env.items()})
    return env


def run_pipeline(
    pipeline: PipelineDefinition,
    event: Event,
    *,
    workspace: str | Path = ".",
    cache_root: str | Path = DEFAULT_CACHE_DIR,
    max_workers: int | None = None,
    executor: Optional[CommandExecutor] = None,
    actions: Optional[ActionRegistry] = None,
    console: Optional[Console] = None,
) -> RunResult:
    """
    Trigger gate -> matrix expansion -> parallel job instances.

    Jobs start once everything they `need` succeeded; dependents of a job
    that did not succeed are skipped. Within a matrix job with fail_fast,
    the first failed instance cancels its siblings at their next step
    boundary.
    """
    console = console or get_console()
    if not should_run(pipeline, event):
        console.print_not_triggered(pipeline.name, event)
        return RunResult(pipeline=pipeline.name, triggered=False)

    workspace_p = Path(workspace).resolve()
    by_name, adj, indeg = build_dag(pipeline.jobs)
    # cycles and malformed matrices raise before anything runs
    topo_levels(adj, indeg)
    for job in pipeline.jobs:
        expand_matrix(job.matrix)

    runner = StepRunner(executor=executor, actions=actions, cache_store=CacheStore(cache_root), console=console)
    run = RunResult(pipeline=pipeline.name, triggered=True)

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    console.print_run_started(pipeline.name, event, job_count=len(pipeline.jobs))

    indeg = dict(indeg)
    ready: List[str] = [j.name for j in pipeline.jobs if indeg[j.name] == 0]
    started: set = set()
    remaining: Dict[str, int] = {}
    job_ok: Dict[str, bool] = {}
    tokens: Dict[str, CancelToken] = {}
    in_flight: Dict[Future, Tuple[str, JobInstance]] = {}

    def _safe_run(ctx: JobContext) -> JobResult:
        try:
            return runner.run_job(ctx)
        except Exception as e:  # reported as a job failure
            console.print_exception(e)
            return JobResult(name=ctx.job_name, status=FAILED, error=str(e))

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            while ready:
                name = ready.pop(0)
                started.add(name)
                job = by_name[name]
                tokens[name] = CancelToken()
                try:
                    contexts = [
                        JobContext(
                            instance=inst,
                            workspace=workspace_p,
                            env=_job_env(pipeline, job, inst, event, workspace_p),
                            cancel_token=tokens[name],
                            event=event,
                        )
                        for inst in expand_job(job)
                    ]
                except ExpressionError as e:
                    job_ok[name] = False
                    remaining[name] = 0
                    run.jobs[_unique_name(name, run.jobs)] = JobResult(name=name, status=FAILED, error=str(e))
                    console.print_failure(name, str(e), is_job=True)
                    continue

                remaining[name] = len(contexts)
                job_ok[name] = True
                for ctx in contexts:
                    in_flight[pool.submit(_safe_run, ctx)] = (name, ctx.instance)

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            name, inst = in_flight.pop(fut)
            res = fut.result()
            run.jobs[_unique_name(res.name, run.jobs)] = res

            if res.status != SUCCESS:
                job_ok[name] = False
                if res.status == FAILED and by_name[name].fail_fast:
                    tokens[name].cancel(f"fail-fast: {inst.display_name} failed")

            remaining[name] -= 1
            if remaining[name] == 0 and job_ok[name]:
                for nxt in sorted(adj[name]):
                    indeg[nxt] -= 1
                    if indeg[nxt] == 0:
                        ready.append(nxt)

    for job in pipeline.jobs:
        if job.name not in started:
            blocked_by = [d for d in job.needs if not job_ok.get(d, False)]
            run.jobs[job.name] = JobResult(
                name=job.name,
                status=SKIPPED,
                error=f"needs did not succeed: {', '.join(blocked_by)}" if blocked_by else None,
            )

    console.print_results(run)
    return run

