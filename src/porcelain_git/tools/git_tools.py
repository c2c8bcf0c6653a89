from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .common import make_runner, run_options
from ..core.diff_parser import parse_numstat, parse_patch, parse_raw
from ..core.errors import GitArgumentError
from ..core.git_runner import DEFAULT_POLICY, DIFF_POLICY, FSCK_POLICY, ExitPolicy, GitCommandLine
from ..core.models import DiffResult, FsckResult, StatusReport
from ..core.parsers import build_index_status, parse_fsck, parse_status_porcelain_v2
from ..core.security import assert_args_are_not_options, pathspec_args

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffOptions:
    """
    cached: compare the index with `commit1` (default HEAD)
    merge_base: diff against the merge base of commit1 and commit2
    find_renames / find_copies: True for git's default threshold, or a score like "50%"
    dirstat: True for the default dirstat, or a parameter string like "files,cumulative"
    pathspecs: paths to limit the diff to, placed after "--"
    timeout: seconds; None uses the process-wide default
    """
    cached: bool = False
    merge_base: bool = False
    find_renames: bool | str = True
    find_copies: bool | str = False
    dirstat: bool | str = False
    pathspecs: tuple[str, ...] = ()
    timeout: float | None = None


@dataclass(frozen=True)
class StatusOptions:
    """
    untracked: "all", "normal" or "no"
    ignored: include "! <path>" entries
    pathspecs: paths to limit the report to
    """
    untracked: str = "all"
    ignored: bool = False
    pathspecs: tuple[str, ...] = ()
    timeout: float | None = None


@dataclass(frozen=True)
class FsckOptions:
    unreachable: bool = False
    root: bool = False
    tags: bool = False
    name_objects: bool = False
    strict: bool = False
    dangling: bool = True
    cache: bool = False
    no_reflogs: bool = False
    full: bool = True
    connectivity_only: bool = False
    timeout: float | None = None


def _flag_or_value(flag: str, value: bool | str) -> list[str]:
    if value is True:
        return [flag]
    if value:
        return [f"{flag}={value}"]
    return []


def _diff_args(fmt: list[str], commit1: str | None, commit2: str | None, opts: DiffOptions) -> list[str]:
    assert_args_are_not_options("commit or commit range", commit1, commit2)
    if opts.cached and commit2 is not None:
        raise GitArgumentError("cached diffs compare the index with a single commit")

    args = ["diff", *fmt, "--src-prefix=a/", "--dst-prefix=b/", "--no-ext-diff"]
    if opts.cached:
        args.append("--cached")
    if opts.merge_base:
        args.append("--merge-base")
    args += _flag_or_value("--find-renames", opts.find_renames)
    args += _flag_or_value("--find-copies", opts.find_copies)
    args += _flag_or_value("--dirstat", opts.dirstat)
    args += [c for c in (commit1, commit2) if c is not None]
    args += pathspec_args(opts.pathspecs)
    return args


def _run(runner: GitCommandLine, args: list[str], timeout: float | None, policy: ExitPolicy):
    return runner.run(*args, options=run_options(timeout), policy=policy)


def diff_raw(
    root: str | Path = ".",
    commit1: str | None = None,
    commit2: str | None = None,
    options: DiffOptions | None = None,
    *,
    runner: GitCommandLine | None = None,
) -> DiffResult:
    """
    File-level changes with modes, shas and per-file line counts
    (`git diff --raw --numstat --shortstat`).
    """
    opts = options or DiffOptions()
    r = runner or make_runner(root)
    args = _diff_args(["--raw", "--numstat", "--shortstat"], commit1, commit2, opts)
    res = _run(r, args, opts.timeout, DIFF_POLICY)
    return parse_raw(res.stdout, include_dirstat=bool(opts.dirstat))


def diff_numstat(
    root: str | Path = ".",
    commit1: str | None = None,
    commit2: str | None = None,
    options: DiffOptions | None = None,
    *,
    runner: GitCommandLine | None = None,
) -> DiffResult:
    """Per-file insertion/deletion counts only."""
    opts = options or DiffOptions()
    r = runner or make_runner(root)
    args = _diff_args(["--numstat", "--shortstat"], commit1, commit2, opts)
    res = _run(r, args, opts.timeout, DIFF_POLICY)
    return parse_numstat(res.stdout, include_dirstat=bool(opts.dirstat))


def diff_patch(
    root: str | Path = ".",
    commit1: str | None = None,
    commit2: str | None = None,
    options: DiffOptions | None = None,
    *,
    runner: GitCommandLine | None = None,
) -> DiffResult:
    """
    Unified diff, one entry per file patch. Type changes come back as a
    deletion plus an addition, the way git prints them.
    """
    opts = options or DiffOptions()
    r = runner or make_runner(root)
    args = _diff_args(["--patch", "--numstat", "--shortstat"], commit1, commit2, opts)
    res = _run(r, args, opts.timeout, DIFF_POLICY)
    return parse_patch(res.stdout, include_dirstat=bool(opts.dirstat))


def status(
    root: str | Path = ".",
    options: StatusOptions | None = None,
    *,
    runner: GitCommandLine | None = None,
) -> StatusReport:
    """Porcelain v2 status of the working tree."""
    opts = options or StatusOptions()
    if opts.untracked not in ("all", "normal", "no"):
        raise GitArgumentError(f"untracked must be 'all', 'normal' or 'no', got {opts.untracked!r}")
    r = runner or make_runner(root)

    args = ["status", "--porcelain=v2", "--branch", f"--untracked-files={opts.untracked}"]
    if opts.ignored:
        args.append("--ignored")
    args += pathspec_args(opts.pathspecs)
    res = _run(r, args, opts.timeout, DEFAULT_POLICY)
    report = parse_status_porcelain_v2(res.stdout)
    logger.debug("status: %d entries", len(report))
    return report


def index_status(
    root: str | Path = ".",
    *,
    runner: GitCommandLine | None = None,
    timeout: float | None = None,
) -> StatusReport:
    """
    Status built from the index listing plus the worktree and HEAD
    comparisons (ls-files, diff-files, diff-index).
    """
    r = runner or make_runner(root)
    # stat info in the index must be fresh or diff-files reports phantom changes
    _run(r, ["update-index", "-q", "--refresh"], timeout, ExitPolicy(allowed=(0, 1)))
    ls_files = _run(r, ["ls-files", "--stage"], timeout, DEFAULT_POLICY)
    diff_files = _run(r, ["diff-files"], timeout, DEFAULT_POLICY)
    head = _run(r, ["rev-parse", "--verify", "--quiet", "HEAD"], timeout, ExitPolicy(allowed=(0, 1)))
    diff_index_out = ""
    if head.exit_code == 0:
        diff_index_out = _run(r, ["diff-index", "HEAD"], timeout, DEFAULT_POLICY).stdout
    untracked = _run(r, ["ls-files", "--others", "--exclude-standard"], timeout, DEFAULT_POLICY)
    return build_index_status(ls_files.stdout, diff_files.stdout, diff_index_out, untracked.stdout)


def fsck(
    root: str | Path = ".",
    objects: tuple[str, ...] = (),
    options: FsckOptions | None = None,
    *,
    runner: GitCommandLine | None = None,
) -> FsckResult:
    """Repository integrity check (`git fsck --no-progress`)."""
    opts = options or FsckOptions()
    assert_args_are_not_options("object", *objects)
    r = runner or make_runner(root)

    args = ["fsck", "--no-progress"]
    flags = {
        "--unreachable": opts.unreachable,
        "--root": opts.root,
        "--tags": opts.tags,
        "--name-objects": opts.name_objects,
        "--strict": opts.strict,
        "--cache": opts.cache,
        "--no-reflogs": opts.no_reflogs,
        "--connectivity-only": opts.connectivity_only,
    }
    args += [flag for flag, on in flags.items() if on]
    if not opts.dangling:
        args.append("--no-dangling")
    if not opts.full:
        args.append("--no-full")
    args += list(objects)

    res = _run(r, args, opts.timeout, FSCK_POLICY)
    # "warning in ..." lines go to stderr
    return parse_fsck(res.stdout + "\n" + res.stderr)
