from __future__ import annotations

import os
import shutil
import stat
import subprocess
import sys
from pathlib import Path

import pytest

FAKE_GIT = Path(__file__).parent / "helpers" / "fake_git.py"


def _run(cmd: list[str], cwd: Path) -> str:
    out = subprocess.check_output(
        cmd,
        cwd=str(cwd),
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    return out.strip()


@pytest.fixture()
def tmp_git_repo(tmp_path: Path) -> Path:
    """
    Creates a small deterministic git repo:
      - 1 initial commit on branch "main"
      - known author identity
      - a couple of files + subdir
    """
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo = tmp_path / "repo"
    repo.mkdir()

    _run(["git", "init", "-q"], repo)
    _run(["git", "symbolic-ref", "HEAD", "refs/heads/main"], repo)
    _run(["git", "config", "user.email", "ci@example.com"], repo)
    _run(["git", "config", "user.name", "CI"], repo)
    _run(["git", "config", "commit.gpgsign", "false"], repo)
    _run(["git", "config", "core.autocrlf", "false"], repo)

    (repo / "README.md").write_text("# dummy\n", encoding="utf-8")
    (repo / "src").mkdir()
    (repo / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")

    _run(["git", "add", "-A"], repo)
    _run(["git", "commit", "-q", "-m", "initial"], repo)

    return repo


@pytest.fixture()
def git_head(tmp_git_repo: Path) -> str:
    return _run(["git", "rev-parse", "HEAD"], tmp_git_repo)


@pytest.fixture()
def make_change(tmp_git_repo: Path):
    """
    Helper: make working tree dirty in a predictable way.
    """
    def _maker(relpath: str = "README.md", text: str = "changed\n") -> Path:
        p = tmp_git_repo / relpath
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
        return p
    return _maker


@pytest.fixture()
def commit_all(tmp_git_repo: Path):
    def _commit(msg: str = "change") -> str:
        _run(["git", "add", "-A"], tmp_git_repo)
        _run(["git", "commit", "-q", "-m", msg], tmp_git_repo)
        return _run(["git", "rev-parse", "HEAD"], tmp_git_repo)
    return _commit


@pytest.fixture()
def fake_git_args() -> list[str]:
    """argv prefix that runs the fake git script with the current interpreter."""
    return [str(FAKE_GIT)]


@pytest.fixture()
def fake_git_binary(tmp_path: Path) -> str:
    """
    An executable named `git` that forwards to the fake script, for code
    paths that take a binary path rather than an argv prefix.
    """
    if os.name == "nt":
        pytest.skip("shell wrapper needs a POSIX system")
    wrapper = tmp_path / "bin" / "git"
    wrapper.parent.mkdir()
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_GIT}" "$@"\n', encoding="utf-8")
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture()
def restore_default_config():
    from porcelain_git.core.git_runner import default_config, set_default_config

    saved = default_config()
    yield
    set_default_config(saved)
