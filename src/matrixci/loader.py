# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import PipelineConfigError
from .matrix import expand_matrix
from .model import EVENT_TYPES, Job, MatrixSpec, PipelineDefinition, Step, Trigger


# ----------------------------------------------------------------------
# YAML (GitHub Actions shaped) pipelines
# ----------------------------------------------------------------------

def _as_str_map(value: Any, where: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PipelineConfigError("expected a mapping", where)
    return {str(k): _scalar_str(v) for k, v in value.items()}


def _scalar_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_flag(value: Any, where: str) -> bool:
    """YAML booleans, or the strings true/false (any case)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise PipelineConfigError(f"expected true or false, got {value!r}", where)


def _branches(value: Any, where: str) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(b) for b in value)
    raise PipelineConfigError("branches must be a string or a list", where)


def parse_triggers(on: Any) -> List[Trigger]:
    """`on:` may be a string, a list of event names, or a mapping event -> {branches}."""
    if on is None:
        return []
    if isinstance(on, str):
        on = [on]
    if isinstance(on, list):
        events = {str(e): None for e in on}
    elif isinstance(on, dict):
        events = on
    else:
        raise PipelineConfigError("`on` must be a string, list or mapping", "on")

    triggers: List[Trigger] = []
    for event, body in events.items():
        event = str(event)
        if event not in EVENT_TYPES:
            # schedule, workflow_dispatch... are never produced by our events
            continue
        if body is not None and not isinstance(body, dict):
            raise PipelineConfigError("event filters must be a mapping", f"on.{event}")
        branches = _branches((body or {}).get("branches"), f"on.{event}.branches")
        triggers.append(Trigger(event=event, branches=branches))
    return triggers


def parse_step(raw: Any, where: str) -> Step:
    if not isinstance(raw, dict):
        raise PipelineConfigError("a step must be a mapping", where)
    if ("run" in raw) == ("uses" in raw):
        raise PipelineConfigError("a step needs exactly one of `run` or `uses`", where)

    with_ = raw.get("with") or {}
    if not isinstance(with_, dict):
        raise PipelineConfigError("`with` must be a mapping", f"{where}.with")

    condition = raw.get("if")
    return Step(
        name=raw.get("name"),
        run=str(raw["run"]) if "run" in raw else None,
        uses=str(raw["uses"]) if "uses" in raw else None,
        with_=dict(with_),
        condition=_scalar_str(condition) if condition is not None else None,
        cwd=raw.get("working-directory"),
        env=_as_str_map(raw.get("env"), f"{where}.env"),
    )


def parse_matrix(raw: Any, where: str) -> Optional[MatrixSpec]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise PipelineConfigError("matrix must be a mapping", where)

    include = raw.get("include") or []
    if not isinstance(include, list) or not all(isinstance(i, dict) for i in include):
        raise PipelineConfigError("include must be a list of mappings", f"{where}.include")

    axes: Dict[str, List[Any]] = {}
    for axis, values in raw.items():
        if axis in ("include", "exclude", "additive-includes"):
            continue
        if not isinstance(values, list):
            raise PipelineConfigError("matrix axis must be a list", f"{where}.{axis}")
        axes[str(axis)] = list(values)

    if "exclude" in raw:
        raise PipelineConfigError("matrix `exclude` is not supported", f"{where}.exclude")

    spec = MatrixSpec(
        axes=axes,
        include=[dict(i) for i in include],
        additive_includes=_as_flag(raw.get("additive-includes", False), f"{where}.additive-includes"),
    )
    try:
        expand_matrix(spec)
    except PipelineConfigError as e:
        raise PipelineConfigError(str(e), where) from e
    return spec


def parse_job(job_id: str, raw: Any) -> Job:
    where = f"jobs.{job_id}"
    if not isinstance(raw, dict):
        raise PipelineConfigError("a job must be a mapping", where)

    steps_raw = raw.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise PipelineConfigError("a job needs a non-empty `steps` list", f"{where}.steps")

    strategy = raw.get("strategy") or {}
    if not isinstance(strategy, dict):
        raise PipelineConfigError("strategy must be a mapping", f"{where}.strategy")

    needs = raw.get("needs") or []
    if isinstance(needs, str):
        needs = [needs]

    return Job(
        name=job_id,
        steps=[parse_step(s, f"{where}.steps[{i}]") for i, s in enumerate(steps_raw)],
        runs_on=str(raw.get("runs-on", "local")),
        matrix=parse_matrix(strategy.get("matrix"), f"{where}.strategy.matrix"),
        fail_fast=_as_flag(strategy.get("fail-fast", True), f"{where}.strategy.fail-fast"),
        needs=[str(n) for n in needs],
        env=_as_str_map(raw.get("env"), f"{where}.env"),
    )


def parse_pipeline(config: Any, default_name: str = "pipeline") -> PipelineDefinition:
    if not isinstance(config, dict):
        raise PipelineConfigError("top level must be a mapping")

    # YAML 1.1 reads a bare `on:` key as boolean True
    on = config.get("on", config.get(True))

    jobs_raw = config.get("jobs")
    if not isinstance(jobs_raw, dict) or not jobs_raw:
        raise PipelineConfigError("a pipeline needs a non-empty `jobs` mapping", "jobs")

    return PipelineDefinition(
        name=str(config.get("name") or default_name),
        triggers=parse_triggers(on),
        jobs=[parse_job(str(job_id), body) for job_id, body in jobs_raw.items()],
        env=_as_str_map(config.get("env"), "env"),
    )


def load_yaml_pipeline(path: str | Path) -> PipelineDefinition:
    p = Path(path)
    try:
        config = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"invalid YAML: {e}", str(p)) from e
    try:
        return parse_pipeline(config, default_name=p.stem)
    except PipelineConfigError as e:
        raise PipelineConfigError(str(e), str(p)) from e


# ----------------------------------------------------------------------
# Python pipelines
# ----------------------------------------------------------------------

def load_python_pipeline(path: str | Path) -> PipelineDefinition:
    """
    Load a pipeline from a python file.

    The file must define either:
      - pipeline() -> PipelineDefinition
      - PIPELINE = PipelineDefinition(...)
    """
    wf_path = Path(path).expanduser().resolve()
    module_name = f"matrixci_pipeline_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result = None
    if "PIPELINE" in globals_dict:
        result = globals_dict["PIPELINE"]
    elif "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        try:
            result = globals_dict["pipeline"]()
        except TypeError as e:
            raise TypeError(
                "pipeline() was called with no arguments. If you imported the `pipeline` "
                "builder from matrixci.dsl, define `PIPELINE = pipeline(...)` instead."
            ) from e

    if not isinstance(result, PipelineDefinition):
        raise PipelineConfigError(
            "Pipeline file must return/define a PipelineDefinition. "
            "Define pipeline() -> PipelineDefinition or PIPELINE = ...",
            str(wf_path),
        )
    return result


def load_pipeline(path: str | Path) -> PipelineDefinition:
    """Dispatch on suffix: .yml/.yaml or .py."""
    p = Path(path).expanduser()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")
    if p.suffix in (".yml", ".yaml"):
        return load_yaml_pipeline(p)
    if p.suffix == ".py":
        return load_python_pipeline(p)
    raise PipelineConfigError(f"unsupported pipeline file type {p.suffix!r} (use .yml, .yaml or .py)", str(p))
