# step_workflows/caching.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from ..errors import ActionError
from ..expressions import runner_os
from ..model import CacheSpec
from . import as_list, option

if TYPE_CHECKING:
    from ..model import JobContext, Step
    from ..runner import StepRunner


def specs_from_options(options: Dict[str, Any]) -> List[CacheSpec]:
    """
    Options:
      path:        one path, or several (list / one per line)
      key:         explicit key (usually `${{ runner.os }}-x-${{ hashFiles(...) }}`)
      hash-files:  fingerprint inputs, used to compute the key when `key` is absent
      prefix:      key prefix for computed keys
    """
    paths = as_list(option(options, "path"))
    if not paths:
        raise ActionError("cache needs a `path`")
    key = option(options, "key")
    inputs = tuple(as_list(option(options, "hash-files", "fingerprint")))
    if not key and not inputs:
        raise ActionError("cache needs `key` or `hash-files`")

    prefix = str(option(options, "prefix", default=""))
    return [
        CacheSpec(path=path, fingerprint_inputs=inputs, prefix=prefix, key=str(key) if key else None)
        for path in paths
    ]


def run_cache(runner: "StepRunner", ctx: "JobContext", step: "Step", options: Dict[str, Any]) -> None:
    """Restore cached paths now; save them after the job, if it succeeds."""
    try:
        specs = specs_from_options(options)
    except ActionError as e:
        raise ActionError(f"[{ctx.job_name}] cache step '{step.display_name}': {e}") from e

    manager = runner.cache_for(ctx)
    for spec in specs:
        key = spec.key or manager.compute_key(runner_os(ctx.platform), spec.fingerprint_inputs, prefix=spec.prefix)
        # one archive per path
        if len(specs) > 1:
            key = f"{key}:{spec.path}"

        hit = manager.restore(spec.path, key)
        if hit.hit:
            runner.console.print_cache_hit(ctx.job_name, key)
        else:
            runner.console.print_cache_miss(ctx.job_name, key, hit.reason)

        def _save(path=spec.path, key=key, hit=hit) -> None:
            if manager.save(path, key, hit):
                runner.console.print_cache_saved(ctx.job_name, key)
            else:
                runner.console.print_debug(f"[{ctx.job_name}] cache: nothing saved for {path} ({key})")

        ctx.add_post_step(f"Post {step.display_name}: {spec.path}", _save)
