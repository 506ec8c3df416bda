from __future__ import annotations

import io
import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from matrixci.runner import CommandResult
from matrixci.ui.console import Console

REPO_ROOT = Path(__file__).resolve().parents[1]
PIPELINES_DIR = REPO_ROOT / "pipelines"


class RecordingExecutor:
    """Stands in for the shell: records every command, fails the ones `fails` picks."""

    def __init__(self, fails: Optional[Callable[[str], bool]] = None, on_run: Optional[Callable[[str], None]] = None):
        self.fails = fails or (lambda cmd: False)
        self.on_run = on_run
        self.calls: List[Dict] = []
        self._lock = threading.Lock()

    def run(self, cmd: str, *, cwd: Path, env: Dict[str, str]) -> CommandResult:
        with self._lock:
            self.calls.append({"cmd": cmd, "cwd": cwd, "env": dict(env)})
        if self.on_run is not None:
            self.on_run(cmd)
        if self.fails(cmd):
            return CommandResult(exit_code=1, output=f"{cmd}: boom")
        return CommandResult(exit_code=0, output="")

    @property
    def commands(self) -> List[str]:
        return [c["cmd"] for c in self.calls]


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def console():
    return Console(stream=io.StringIO())


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def cache_root(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def git_repo(tmp_path, monkeypatch):
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "matrixci tests")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "tests@example.invalid")
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(["git", "init", "-q", str(repo)], check=True)
    return repo


@pytest.fixture
def make_executor():
    return RecordingExecutor
