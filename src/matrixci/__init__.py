from .dsl import (
    cache_step,
    checkout,
    deploy_step,
    include,
    job,
    matrix,
    on_pull_request,
    on_push,
    pipeline,
    sh,
    toolchain_step,
    uses,
)
from .expressions import Condition, matrix_eq, platform_is
from .model import DeploySpec, Event, Job, MatrixSpec, PipelineDefinition, Step, Trigger
from .runner import run_pipeline

__all__ = [
    "cache_step",
    "checkout",
    "deploy_step",
    "include",
    "job",
    "matrix",
    "on_pull_request",
    "on_push",
    "pipeline",
    "sh",
    "toolchain_step",
    "uses",
    "Condition",
    "matrix_eq",
    "platform_is",
    "DeploySpec",
    "Event",
    "Job",
    "MatrixSpec",
    "PipelineDefinition",
    "Step",
    "Trigger",
    "run_pipeline",
]
