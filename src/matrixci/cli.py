# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from .cache import DEFAULT_CACHE_DIR, CacheStore, compute_key
from .dag import build_dag, topo_levels
from .deploy import DirectoryTarget, GitBranchTarget, deploy as run_deploy
from .errors import DeployFailure, ExpressionError, PipelineConfigError
from .git_facts.git import current_branch
from .loader import load_pipeline
from .matrix import expand_job
from .model import EVENT_TYPES, DeploySpec, Event
from .runner import run_pipeline
from .triggers import should_run
from .ui.console import Console, get_console, set_console

PIPELINE_CANDIDATES = ("matrixci.yml", "matrixci.yaml", "matrixci_pipeline.py")


def find_pipeline_files(root: Path = Path(".")) -> list[Path]:
    """
    Find pipeline files in the current directory.

    Looks for matrixci.yml / matrixci.yaml / matrixci_pipeline.py, then
    *_pipeline.py and .github/workflows/*.yml.
    """
    found: list[Path] = [root / name for name in PIPELINE_CANDIDATES if (root / name).exists()]
    found.extend(p for p in sorted(root.glob("*_pipeline.py")) if p not in found)
    workflows = root / ".github" / "workflows"
    if workflows.is_dir():
        found.extend(sorted(workflows.glob("*.yml")) + sorted(workflows.glob("*.yaml")))
    return found


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Pipeline file from argument, or the single one found on disk.

    Raises:
        SystemExit: If no pipeline (or more than one) can be found
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Create a pipeline file or pass a different path:\n  matrixci run .github/workflows/rust.yml",
            )
            sys.exit(1)
        return path

    files = find_pipeline_files()
    if not files:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:", *(f"  {n}" for n in PIPELINE_CANDIDATES), "  *_pipeline.py", "  .github/workflows/*.yml"],
            suggestion="Pass a pipeline explicitly:\n  matrixci run my_pipeline.yml",
        )
        sys.exit(1)

    if len(files) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[f"  {f}" for f in files],
            suggestion=f"Specify a pipeline explicitly:\n  matrixci run {files[0]}",
        )
        sys.exit(1)

    return files[0]


def _load_or_exit(path: Path):
    console = get_console()
    try:
        return load_pipeline(path)
    except (PipelineConfigError, TypeError, FileNotFoundError) as e:
        console.print_error("Failed to load pipeline", f"Could not load pipeline from {path}", details=[str(e)])
        sys.exit(1)


def _branch_or_exit(branch: str | None) -> str:
    if branch:
        return branch
    try:
        return current_branch()
    except (subprocess.CalledProcessError, FileNotFoundError):
        get_console().print_error(
            "Could not determine branch",
            "No --branch given and the current git branch could not be read.",
            suggestion="Pass it explicitly:\n  matrixci run --branch master",
        )
        sys.exit(1)


@click.group(context_settings={"auto_envvar_prefix": "MATRIXCI"})
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces, command output and detailed messages)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: trigger-gated, matrix-expanding, cache-aware pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("pipeline_file", required=False)
@click.option("--event", "event_type", type=click.Choice(EVENT_TYPES), default="push", show_default=True,
              help="Repository event to simulate")
@click.option("--branch", default=None, help="Branch of the event (defaults to the current git branch)")
@click.option("--workspace", default=".", show_default=True, help="Directory the jobs run in")
@click.option("--cache-dir", default=DEFAULT_CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--workers", default=None, type=int, help="Number of parallel job instances")
@click.option("--prune-cache", default=None, type=int, help="Keep only the N newest cache archives after the run")
@click.pass_context
def run(ctx, pipeline_file, event_type, branch, workspace, cache_dir, workers, prune_cache):
    """Run a pipeline for one repository event."""
    console = get_console()
    path = discover_pipeline(pipeline_file)
    pipeline = _load_or_exit(path)
    event = Event(type=event_type, branch=_branch_or_exit(branch))

    try:
        result = run_pipeline(
            pipeline,
            event,
            workspace=workspace,
            cache_root=cache_dir,
            max_workers=workers,
            console=console,
        )
        if prune_cache is not None:
            removed = CacheStore(cache_dir).prune(keep=prune_cache)
            console.print_debug(f"pruned {len(removed)} cache archive(s)")
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except PipelineConfigError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if not result.ok:
        sys.exit(1)


@cli.command()
@click.argument("pipeline_file", required=False)
@click.option("--event", "event_type", type=click.Choice(EVENT_TYPES), default=None,
              help="Also report whether this event would trigger a run")
@click.option("--branch", default=None, help="Branch for --event")
def plan(pipeline_file, event_type, branch):
    """Show triggers, stages and expanded matrix instances without running anything."""
    console = get_console()
    path = discover_pipeline(pipeline_file)
    pipeline = _load_or_exit(path)

    console.print_header(f"Pipeline: {pipeline.name}")
    for trig in pipeline.triggers:
        branches = ", ".join(trig.branches) if trig.branches is not None else "*"
        console.print_info(f"  on {trig.event}: {branches}")

    if event_type:
        event = Event(type=event_type, branch=_branch_or_exit(branch))
        verdict = "runs" if should_run(pipeline, event) else "does not run"
        console.print_info(f"  {event.type} on '{event.branch}' -> {verdict}")

    try:
        by_name, adj, indeg = build_dag(pipeline.jobs)
        levels = topo_levels(adj, indeg)
    except PipelineConfigError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(1)

    for i, level in enumerate(levels, start=1):
        console.print_stage(i, level)
        for name in level:
            job = by_name[name]
            try:
                instances = expand_job(job)
            except (PipelineConfigError, ExpressionError) as e:
                console.print_error("Invalid job", f"{name}: {e}")
                sys.exit(1)
            policy = "fail-fast" if job.fail_fast else "no fail-fast"
            console.print_info(f"  {name}: {len(instances)} instance(s), {policy}")
            for inst in instances:
                extras = ", ".join(f"{k}={v}" for k, v in inst.matrix.items())
                console.print_info(f"    - {inst.display_name} [{inst.runs_on}] {extras}".rstrip())


@cli.command("cache-key")
@click.argument("inputs", nargs=-1)
@click.option("--platform", "platform_id", required=True, help="Platform discriminator, e.g. Linux")
@click.option("--prefix", default="", help="Key prefix, e.g. cargo-registry")
@click.option("--workspace", default=".", show_default=True)
def cache_key(inputs, platform_id, prefix, workspace):
    """Print the cache key for a platform and fingerprint files."""
    click.echo(compute_key(platform_id, list(inputs), prefix=prefix, repo_root=workspace))


@cli.command("deploy")
@click.argument("source")
@click.argument("target")
@click.option("--branch", "as_branch", is_flag=True, default=False,
              help="Treat TARGET as a branch of the current git repository")
@click.option("--repo", default=".", show_default=True, help="Repository holding the branch (with --branch)")
@click.option("--remote", default=None, help="Push the branch to this remote afterwards (with --branch)")
@click.option("--clean/--no-clean", default=False, show_default=True, help="Delete target files absent from SOURCE")
@click.option("--exclude", "excludes", multiple=True, help="Path kept by --clean (repeatable)")
@click.option("--single-commit", is_flag=True, default=False, help="Collapse branch history to one commit")
@click.option("--message", default="Deploy generated artifacts", show_default=True)
def deploy_cmd(source, target, as_branch, repo, remote, clean, excludes, single_commit, message):
    """Publish SOURCE into TARGET (a directory, or a branch with --branch)."""
    console = get_console()
    spec = DeploySpec(
        source=source,
        target=target,
        clean=clean,
        clean_exclude=tuple(excludes),
        single_commit=single_commit,
        commit_message=message,
    )
    dest = GitBranchTarget(repo, target, remote=remote) if as_branch else DirectoryTarget(target)
    try:
        result = run_deploy(spec, dest)
    except DeployFailure as e:
        console.print_error("Deploy failed", str(e), suggestion="The target was left unchanged.")
        sys.exit(1)
    console.print_deploy("deploy", result)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
