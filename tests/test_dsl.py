import pytest

from matrixci.dag import build_dag, topo_levels
from matrixci.dsl import cache_step, deploy_step, include, job, matrix, pipeline, sh, uses
from matrixci.errors import PipelineConfigError
from matrixci.model import Step


def test_step_needs_exactly_one_of_run_or_uses():
    with pytest.raises(ValueError):
        Step(name="both", run="x", uses="y")
    with pytest.raises(ValueError):
        Step(name="neither")


def test_display_name_falls_back_to_command():
    assert Step(run="cargo build\ncargo test").display_name == "Run cargo build"
    assert Step(uses="actions/checkout@v2").display_name == "Run actions/checkout@v2"


def test_job_cwd_applies_to_commands_only():
    j = job("build", sh("Build", "make"), sh("Root", "ls", cwd="."), uses("checkout"), cwd="app")
    assert [s.cwd for s in j.steps] == ["app", ".", None]


def test_empty_job_and_pipeline_rejected():
    with pytest.raises(ValueError):
        job("empty")
    with pytest.raises(ValueError):
        pipeline("empty")


def test_helpers_build_action_options():
    step = cache_step("Cache", ["~/.cargo/registry", "target"], hash_files=["Cargo.lock"], prefix="cargo")
    assert step.uses == "cache"
    assert step.with_ == {"path": ["~/.cargo/registry", "target"], "hash-files": ["Cargo.lock"], "prefix": "cargo"}

    d = deploy_step("target/doc", branch="docs", clean=True, clean_exclude=["index.html"], single_commit=True)
    assert d.with_["branch"] == "docs" and d.with_["clean-exclude"] == ["index.html"]


def test_matrix_builder():
    spec = matrix(os=["a", "b"]).include(os="a", X=1).additive().build()
    assert spec.axes == {"os": ["a", "b"]}
    assert spec.include == [{"os": "a", "X": 1}]
    assert spec.additive_includes


def test_matrix_takes_include_records():
    spec = matrix(
        include(os="a", TARGET="i686"),
        include(os="c", TARGET="arm"),
        os=["a", "b"],
    ).additive().build()
    assert spec.axes == {"os": ["a", "b"]}
    assert spec.include == [{"os": "a", "TARGET": "i686"}, {"os": "c", "TARGET": "arm"}]
    assert include(os="a", X=1) == {"os": "a", "X": 1}


def test_dag_levels():
    jobs = [
        job("docs", sh("d", "d"), needs=["build"]),
        job("build", sh("b", "b")),
        job("lint", sh("l", "l")),
        job("release", sh("r", "r"), needs=["docs", "lint"]),
    ]
    by_name, adj, indeg = build_dag(jobs)
    assert topo_levels(adj, indeg) == [["build", "lint"], ["docs"], ["release"]]
    assert set(by_name) == {"docs", "build", "lint", "release"}


def test_dag_rejects_bad_graphs():
    with pytest.raises(PipelineConfigError, match="missing job"):
        build_dag([job("a", sh("a", "a"), needs=["ghost"])])
    with pytest.raises(PipelineConfigError, match="Duplicate"):
        build_dag([job("a", sh("a", "a")), job("a", sh("a", "a"))])
