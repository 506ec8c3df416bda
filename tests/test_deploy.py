import shutil
import subprocess

import pytest

from matrixci.deploy import DirectoryTarget, GitBranchTarget, deploy, is_excluded
from matrixci.errors import DeployFailure
from matrixci.git_facts import git
from matrixci.model import DeploySpec

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _write(root, files):
    for rel, text in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text)


def _tree(root):
    return {p.relative_to(root).as_posix(): p.read_text() for p in sorted(root.rglob("*")) if p.is_file()}


@pytest.fixture
def site(tmp_path):
    source = tmp_path / "target" / "doc"
    dest = tmp_path / "published"
    _write(source, {"new.html": "new", "crate/lib.html": "lib v2"})
    _write(dest, {"index.html": "landing", "old.html": "stale", "crate/lib.html": "lib v1"})
    return source, dest


def test_is_excluded_rules():
    assert is_excluded("index.html", ["index.html"])
    assert not is_excluded("sub/index.html", ["index.html"])
    assert is_excluded("static/css/site.css", ["static"])
    assert is_excluded("static/css/site.css", ["static/"])
    assert not is_excluded("statics.html", ["static"])
    assert is_excluded("CNAME", ["CNA?E"])
    assert is_excluded("a/b.txt", ["*.txt"])
    assert not is_excluded("a.html", ["", "  "])


def test_clean_deploy_deletes_stale_and_keeps_excluded(site):
    source, dest = site
    spec = DeploySpec(source=str(source), target=str(dest), clean=True, clean_exclude=("index.html",))
    result = deploy(spec, DirectoryTarget(dest))

    assert _tree(dest) == {"index.html": "landing", "new.html": "new", "crate/lib.html": "lib v2"}
    assert sorted(result.added) == ["new.html"]
    assert result.updated == ["crate/lib.html"]
    assert result.deleted == ["old.html"]
    assert result.preserved == ["index.html"]


def test_deploy_without_clean_keeps_everything(site):
    source, dest = site
    deploy(DeploySpec(source=str(source), target=str(dest)), DirectoryTarget(dest))
    assert _tree(dest) == {
        "index.html": "landing",
        "old.html": "stale",
        "new.html": "new",
        "crate/lib.html": "lib v2",
    }


def test_deploy_into_missing_directory(tmp_path):
    source = tmp_path / "src"
    _write(source, {"a.txt": "a"})
    dest = tmp_path / "out" / "site"
    result = deploy(DeploySpec(source=str(source), target=str(dest), clean=True), DirectoryTarget(dest))
    assert _tree(dest) == {"a.txt": "a"}
    assert result.added == ["a.txt"]


def test_git_directory_in_target_survives(site):
    source, dest = site
    _write(dest, {".git/HEAD": "ref: refs/heads/main"})
    deploy(DeploySpec(source=str(source), target=str(dest), clean=True), DirectoryTarget(dest))
    assert (dest / ".git" / "HEAD").read_text() == "ref: refs/heads/main"
    assert not (dest / "old.html").exists()


def test_missing_source_is_a_deploy_failure(tmp_path):
    with pytest.raises(DeployFailure):
        deploy(DeploySpec(source=str(tmp_path / "nope"), target="x"), DirectoryTarget(tmp_path / "x"))


class BrokenTarget(DirectoryTarget):
    def publish(self, tree, *, single_commit, message):
        raise OSError("disk full")


def test_failed_publish_leaves_target_unchanged(site):
    source, dest = site
    before = _tree(dest)
    with pytest.raises(DeployFailure, match="disk full"):
        deploy(DeploySpec(source=str(source), target=str(dest), clean=True), BrokenTarget(dest))
    assert _tree(dest) == before


@requires_git
def test_git_branch_single_commit(git_repo, site):
    source, _ = site
    target = GitBranchTarget(git_repo, "docs")
    spec = DeploySpec(
        source=str(source), target="docs", clean=True, clean_exclude=("index.html",), single_commit=True
    )

    first = deploy(spec, target)
    assert first.commit == git.resolve_ref("refs/heads/docs", cwd=git_repo)
    assert sorted(git.list_tree("docs", cwd=git_repo)) == ["crate/lib.html", "new.html"]

    (source / "new.html").write_text("newer")
    second = deploy(spec, target)
    assert sorted(second.updated) == ["crate/lib.html", "new.html"]
    assert git.count_commits("docs", cwd=git_repo) == 1


@requires_git
def test_git_branch_keeps_history_without_single_commit(git_repo, tmp_path):
    source = tmp_path / "site"
    _write(source, {"index.html": "v1", "old.html": "x"})
    target = GitBranchTarget(git_repo, "docs")
    deploy(DeploySpec(source=str(source), target="docs"), target)

    (source / "old.html").unlink()
    (source / "index.html").write_text("v2")
    result = deploy(DeploySpec(source=str(source), target="docs", clean=True), target)

    assert result.deleted == ["old.html"]
    assert git.count_commits("docs", cwd=git_repo) == 2
    assert git.list_tree("docs", cwd=git_repo) == ["index.html"]


@requires_git
def test_failed_push_leaves_branch_unmoved(git_repo, site):
    source, _ = site
    spec = DeploySpec(source=str(source), target="docs", single_commit=True)

    with pytest.raises(DeployFailure):
        deploy(spec, GitBranchTarget(git_repo, "docs", remote="does-not-exist"))
    assert git.resolve_ref("refs/heads/docs", cwd=git_repo) is None

    first = deploy(spec, GitBranchTarget(git_repo, "docs"))
    (source / "new.html").write_text("newer")
    with pytest.raises(DeployFailure):
        deploy(spec, GitBranchTarget(git_repo, "docs", remote="does-not-exist"))
    assert git.resolve_ref("refs/heads/docs", cwd=git_repo) == first.commit


@requires_git
def test_push_lands_on_remote_and_local_branch(git_repo, site, tmp_path):
    source, _ = site
    remote = tmp_path / "remote.git"
    subprocess.run(["git", "init", "-q", "--bare", str(remote)], check=True)

    result = deploy(
        DeploySpec(source=str(source), target="docs", single_commit=True),
        GitBranchTarget(git_repo, "docs", remote=str(remote)),
    )
    assert git.resolve_ref("refs/heads/docs", cwd=git_repo) == result.commit
    assert git.resolve_ref("refs/heads/docs", cwd=remote) == result.commit
