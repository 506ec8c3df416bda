# matrixci_pipeline.py
# CI for matrixci itself: run with `matrixci run`.
from __future__ import annotations

from matrixci.dsl import cache_step, job, matrix, on_pull_request, on_push, pipeline, sh

PIPELINE = pipeline(
    "matrixci",
    job(
        "test",
        cache_step("Cache pip", "~/.cache/pip", hash_files=["pyproject.toml"], prefix="pip"),
        sh("Install package", "python -m pip install -e '.[test]'"),
        sh("Run pytest", "python -m pytest -q"),
        strategy=matrix(suite=["unit"]),
    ),
    on=[on_push("main", "master"), on_pull_request("main", "master")],
)
