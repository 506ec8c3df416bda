# matrix.py
from __future__ import annotations

from itertools import product
from typing import Any, Dict, List

from .errors import PipelineConfigError
from .expressions import interpolate
from .model import Job, JobInstance, MatrixSpec


def _matches(combo: Dict[str, Any], criteria: Dict[str, Any]) -> bool:
    return all(combo.get(k) == v for k, v in criteria.items())


def expand_matrix(spec: MatrixSpec | None) -> List[Dict[str, Any]]:
    """
    Expand a matrix into concrete assignments.

    Base combinations are the cross-product of the axes, in declared axis
    and value order. Each include record is split into criteria (keys that
    are declared axes) and metadata (everything else); the metadata is
    merged into every combination the criteria match. Axis values are never
    overwritten by an include.

    An include that matches nothing is dropped, unless the matrix has
    `additive_includes`, in which case it becomes its own combination.

    Raises PipelineConfigError for an axis that is not a list, has no
    values or repeats a value, and for duplicate combinations.
    """
    if spec is None:
        return [{}]

    axis_names = list(spec.axes.keys())
    for name, values in spec.axes.items():
        if not isinstance(values, (list, tuple)):
            raise PipelineConfigError(f"matrix axis {name!r} must be a list, got {type(values).__name__}")
        if not values:
            raise PipelineConfigError(f"matrix axis {name!r} has no values")
        frozen = [_freeze(v) for v in values]
        if len(set(frozen)) != len(frozen):
            raise PipelineConfigError(f"matrix axis {name!r} repeats a value: {list(values)!r}")

    combos: List[Dict[str, Any]] = [
        dict(zip(axis_names, values)) for values in product(*(spec.axes[a] for a in axis_names))
    ]

    extra: List[Dict[str, Any]] = []
    for record in spec.include:
        criteria = {k: v for k, v in record.items() if k in spec.axes}
        metadata = {k: v for k, v in record.items() if k not in spec.axes}

        matched = False
        for combo in combos:
            base = {a: combo[a] for a in axis_names}
            if _matches(base, criteria):
                matched = True
                combo.update(metadata)

        if not matched and spec.additive_includes:
            if any(assignment_key(record) == assignment_key(e) for e in extra):
                raise PipelineConfigError(f"matrix include {record!r} is listed twice")
            extra.append(dict(record))

    return combos + extra


def assignment_key(assignment: Dict[str, Any]) -> tuple:
    """Hashable, order-preserving form of an assignment."""
    return tuple((k, _freeze(v)) for k, v in assignment.items())


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, dict):
        return tuple((k, _freeze(v)) for k, v in value.items())
    return value


def expand_job(job: Job) -> List[JobInstance]:
    """One JobInstance per matrix assignment, with `runs_on` resolved."""
    instances: List[JobInstance] = []
    for assignment in expand_matrix(job.matrix):
        key = assignment_key(assignment)
        runs_on = str(interpolate(job.runs_on, {"matrix": assignment}))
        instances.append(JobInstance(job=job, assignment=key, runs_on=runs_on))
    return instances
