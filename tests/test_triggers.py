from matrixci.dsl import job, on_pull_request, on_push, pipeline, sh
from matrixci.model import Event
from matrixci.triggers import matching_trigger, should_run


def _pipeline(*triggers):
    return pipeline("p", job("build", sh("Build", "true")), on=list(triggers))


def test_push_to_listed_branch_runs():
    p = _pipeline(on_push("master"), on_pull_request("master"))
    assert should_run(p, Event("push", "master"))


def test_push_to_other_branch_does_not_run():
    p = _pipeline(on_push("master"), on_pull_request("master"))
    assert not should_run(p, Event("push", "dev"))


def test_pull_request_matches_its_own_trigger():
    p = _pipeline(on_push("release"), on_pull_request("master"))
    assert matching_trigger(p, Event("pull_request", "master")) == on_pull_request("master")
    assert not should_run(p, Event("pull_request", "release"))


def test_bare_trigger_matches_any_branch():
    p = _pipeline(on_push())
    assert should_run(p, Event("push", "feature/x"))
    assert not should_run(p, Event("pull_request", "feature/x"))


def test_branch_filters_are_exact_not_globs():
    p = _pipeline(on_push("release/*"))
    assert not should_run(p, Event("push", "release/1.0"))
    assert should_run(p, Event("push", "release/*"))


def test_no_triggers_never_runs():
    assert not should_run(_pipeline(), Event("push", "master"))
