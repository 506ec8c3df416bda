import pytest

from matrixci.errors import PipelineConfigError
from matrixci.loader import load_pipeline, parse_pipeline
from matrixci.matrix import expand_job
from matrixci.model import Event
from matrixci.triggers import should_run

from conftest import PIPELINES_DIR


def test_loads_rust_pipeline():
    p = load_pipeline(PIPELINES_DIR / "rust.yml")
    assert p.name == "Rust"
    assert p.env == {"CARGO_TERM_COLOR": "always"}
    assert should_run(p, Event("push", "master"))
    assert should_run(p, Event("pull_request", "master"))
    assert not should_run(p, Event("push", "dev"))

    (build,) = p.jobs
    assert build.fail_fast is False
    assert build.steps[0].uses == "actions/checkout@v2"
    assert build.steps[4].condition == "matrix.os == 'ubuntu-latest'"
    assert build.steps[5].with_["toolchain"] == "${{matrix.TOOLCHAIN}}"

    instances = expand_job(build)
    assert [i.runs_on for i in instances] == ["ubuntu-latest", "windows-latest"]
    assert instances[0].matrix["TARGET"] == "i686-unknown-linux-gnu"
    assert instances[1].matrix["TOOLCHAIN"] == "stable-i686-pc-windows-msvc"


def test_loads_docs_pipeline():
    p = load_pipeline(PIPELINES_DIR / "docs.yml")
    assert p.name == "Generate Docs"
    assert not should_run(p, Event("pull_request", "master"))
    deploy = p.jobs[0].steps[-1]
    assert deploy.uses == "JamesIves/github-pages-deploy-action@3.7.1"
    assert deploy.with_["CLEAN"] is True
    assert deploy.with_["CLEAN_EXCLUDE"] == '["index.html"]'


def test_python_pipeline_matches_yaml():
    from_py = load_pipeline(PIPELINES_DIR / "rust_pipeline.py")
    from_yaml = load_pipeline(PIPELINES_DIR / "rust.yml")
    assert from_py.triggers == from_yaml.triggers
    assert [i.matrix for i in expand_job(from_py.jobs[0])] == [i.matrix for i in expand_job(from_yaml.jobs[0])]


def test_bare_on_list_means_any_branch():
    p = parse_pipeline({"on": ["push"], "jobs": {"a": {"steps": [{"run": "true"}]}}})
    assert p.triggers[0].branches is None
    assert p.name == "pipeline"


def test_unsupported_events_are_ignored():
    p = parse_pipeline({"on": {"schedule": [{"cron": "0 0 * * *"}], "push": None}, "jobs": {"a": {"steps": [{"run": "x"}]}}})
    assert [t.event for t in p.triggers] == ["push"]


@pytest.mark.parametrize(
    "config",
    [
        [],
        {"on": "push"},
        {"on": "push", "jobs": {"a": {"steps": []}}},
        {"on": "push", "jobs": {"a": {"steps": [{"run": "x", "uses": "y"}]}}},
        {"on": "push", "jobs": {"a": {"steps": [{"name": "nothing"}]}}},
        {"on": "push", "jobs": {"a": {"strategy": {"matrix": {"os": "linux"}}, "steps": [{"run": "x"}]}}},
        {"on": "push", "jobs": {"a": {"strategy": {"matrix": {"os": ["l"], "exclude": [{"os": "l"}]}}, "steps": [{"run": "x"}]}}},
        {"on": "push", "jobs": {"a": {"strategy": {"matrix": {"os": []}}, "steps": [{"run": "x"}]}}},
        {"on": "push", "jobs": {"a": {"strategy": {"matrix": {"os": ["l", "l"]}}, "steps": [{"run": "x"}]}}},
        {"on": "push", "jobs": {"a": {"strategy": {"fail-fast": "maybe"}, "steps": [{"run": "x"}]}}},
        {"on": "push", "jobs": {"a": {"strategy": {"matrix": {"os": ["l"], "additive-includes": "yes please"}}, "steps": [{"run": "x"}]}}},
    ],
)
def test_invalid_shapes_are_config_errors(config):
    with pytest.raises(PipelineConfigError):
        parse_pipeline(config)


def test_yaml_on_key_read_as_true(tmp_path):
    path = tmp_path / "ci.yml"
    path.write_text("on:\n  push:\n    branches: main\njobs:\n  a:\n    steps:\n      - run: echo hi\n")
    p = load_pipeline(path)
    assert p.name == "ci"
    assert p.triggers[0].branches == ("main",)


def test_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("jobs: [unclosed\n")
    with pytest.raises(PipelineConfigError, match="invalid YAML"):
        load_pipeline(path)


def test_python_file_without_pipeline(tmp_path):
    path = tmp_path / "empty_pipeline.py"
    path.write_text("X = 1\n")
    with pytest.raises(PipelineConfigError):
        load_pipeline(path)


def test_python_file_with_pipeline_function(tmp_path):
    path = tmp_path / "fn_pipeline.py"
    path.write_text(
        "from matrixci.dsl import job, on_push, pipeline as build, sh\n"
        "def pipeline():\n"
        "    return build('fn', job('a', sh('A', 'a')), on=[on_push()])\n"
    )
    assert load_pipeline(path).name == "fn"


def test_missing_file_and_unknown_suffix(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_pipeline(tmp_path / "nope.yml")
    other = tmp_path / "ci.toml"
    other.write_text("")
    with pytest.raises(PipelineConfigError):
        load_pipeline(other)


def test_quoted_booleans_are_read_as_booleans():
    p = parse_pipeline(
        {
            "on": "push",
            "jobs": {
                "a": {
                    "strategy": {
                        "fail-fast": "false",
                        "matrix": {"os": ["l"], "include": [{"os": "m"}], "additive-includes": "True"},
                    },
                    "steps": [{"run": "x"}],
                }
            },
        }
    )
    (a,) = p.jobs
    assert a.fail_fast is False
    assert a.matrix.additive_includes is True
    assert [i.matrix for i in expand_job(a)] == [{"os": "l"}, {"os": "m"}]


def test_matrix_errors_name_their_location():
    config = {"on": "push", "jobs": {"build": {"strategy": {"matrix": {"os": []}}, "steps": [{"run": "x"}]}}}
    with pytest.raises(PipelineConfigError) as err:
        parse_pipeline(config)
    assert err.value.where == "jobs.build.strategy.matrix"
    assert "has no values" in str(err.value)
