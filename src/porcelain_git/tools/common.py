from __future__ import annotations

from pathlib import Path

from ..core.git_runner import GitCommandLine, GitConfig, RunOptions
from ..core.security import resolve_root


def make_runner(root: str | Path = ".", config: GitConfig | None = None) -> GitCommandLine:
    return GitCommandLine(root=resolve_root(root), config=config)


def run_options(timeout: float | None) -> RunOptions:
    return RunOptions(timeout=timeout)
