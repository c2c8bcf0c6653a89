from __future__ import annotations

import re
from typing import Any

from .errors import UnexpectedResultError
from .escaped_path import unescape_path
from .models import FsckObject, FsckResult, StatusEntry, StatusReport


# --- status: porcelain v2 --------------------------------------------------------


def _change_type(xy: str) -> str | None:
    """Index-side letter wins over the worktree-side one; '.' means unchanged."""
    x, y = xy[0], xy[1]
    if x != ".":
        return x
    if y != ".":
        return y
    return None


def _parse_branch_header(body: str, report: StatusReport) -> None:
    key, _, value = body.partition(" ")
    if key == "branch.oid":
        report.branch_oid = value
    elif key == "branch.head":
        report.branch_head = value
    elif key == "branch.upstream":
        report.branch_upstream = value
    elif key == "branch.ab":
        m = re.match(r"^\+(\d+) -(\d+)$", value)
        if m:
            report.ahead, report.behind = int(m.group(1)), int(m.group(2))
    # other headers (e.g. stash) carry nothing this report models


def parse_status_porcelain_v2(output: str) -> StatusReport:
    """
    Parses `git status --porcelain=v2 --branch` output:
      # branch.oid <sha>
      1 XY sub mH mI mW hH hI <path>
      2 XY sub mH mI mW hH hI Xscore <path><TAB><origPath>
      u XY sub m1 m2 m3 mW h1 h2 h3 <path>
      ? <path>
      ! <path>

    Fixed fields are space separated; the path is everything after them.
    Zero modes/shas (e.g. mH=000000 for a newly added file) are kept verbatim.
    "AD" (added, then deleted in the worktree) reports type "A" with index
    fields only: the format cannot say more about that path.
    """
    report = StatusReport()
    for i, line in enumerate(output.splitlines()):
        if not line:
            continue
        kind = line[0]

        if line.startswith("# "):
            _parse_branch_header(line[2:], report)
            continue

        if kind == "1":
            f = line.split(" ", 8)
            if len(f) != 9:
                raise UnexpectedResultError("Malformed ordinary status entry", line=line, index=i, output=output)
            _, xy, sub, m_h, m_i, m_w, h_h, h_i, path = f
            entry = StatusEntry(
                path=unescape_path(path) or "",
                type=_change_type(xy),
                stage="0",
                mode_repo=m_h,
                mode_index=m_i,
                mode_worktree=m_w,
                sha_repo=h_h,
                sha_index=h_i,
                xy=xy,
                submodule=sub,
            )
        elif kind == "2":
            f = line.split(" ", 9)
            if len(f) != 10 or "\t" not in f[9]:
                raise UnexpectedResultError("Malformed rename status entry", line=line, index=i, output=output)
            _, xy, sub, m_h, m_i, m_w, h_h, h_i, score, paths = f
            path, orig = paths.split("\t", 1)
            entry = StatusEntry(
                path=unescape_path(path) or "",
                type=_change_type(xy),
                stage="0",
                mode_repo=m_h,
                mode_index=m_i,
                mode_worktree=m_w,
                sha_repo=h_h,
                sha_index=h_i,
                xy=xy,
                orig_path=unescape_path(orig),
                score=score,
                submodule=sub,
            )
        elif kind == "u":
            f = line.split(" ", 10)
            if len(f) != 11:
                raise UnexpectedResultError("Malformed unmerged status entry", line=line, index=i, output=output)
            _, xy, sub, m1, m2, m3, m_w, h1, h2, h3, path = f
            entry = StatusEntry(
                path=unescape_path(path) or "",
                type="U",
                mode_worktree=m_w,
                xy=xy,
                submodule=sub,
                unmerged_stages=((m1, h1), (m2, h2), (m3, h3)),
            )
        elif kind == "?" and line.startswith("? "):
            entry = StatusEntry(path=unescape_path(line[2:]) or "", untracked=True)
        elif kind == "!" and line.startswith("! "):
            entry = StatusEntry(path=unescape_path(line[2:]) or "", ignored=True)
        else:
            raise UnexpectedResultError("Unexpected status line", line=line, index=i, output=output)

        report.entries[entry.path] = entry
    return report


# --- status: index-based (ls-files / diff-files / diff-index) ---------------------


def _split_tab(line: str, i: int, output: str, what: str) -> tuple[str, str]:
    if "\t" not in line:
        raise UnexpectedResultError(f"Malformed {what} line", line=line, index=i, output=output)
    info, path = line.split("\t", 1)
    return info, unescape_path(path) or ""


def parse_ls_files_stage(output: str) -> dict[str, dict[str, Any]]:
    """`git ls-files --stage`: "<mode> <sha> <stage>\\t<path>"."""
    files: dict[str, dict[str, Any]] = {}
    for i, line in enumerate(output.splitlines()):
        if not line:
            continue
        info, path = _split_tab(line, i, output, "ls-files")
        parts = info.split()
        if len(parts) != 3:
            raise UnexpectedResultError("Malformed ls-files line", line=line, index=i, output=output)
        mode, sha, stage = parts
        files[path] = {"path": path, "mode_index": mode, "sha_index": sha, "stage": stage}
    return files


def parse_diff_as_hash(output: str) -> dict[str, dict[str, Any]]:
    """
    `git diff-files` / `git diff-index <treeish>` raw records keyed by path.

    The source side is reported as "repo" and the destination side as "index"
    for both commands, which is how the two-phase status has always been read.
    """
    out: dict[str, dict[str, Any]] = {}
    for i, line in enumerate(output.splitlines()):
        if not line:
            continue
        info, path = _split_tab(line, i, output, "raw diff")
        parts = info.split()
        if len(parts) != 5 or not parts[0].startswith(":"):
            raise UnexpectedResultError("Malformed raw diff line", line=line, index=i, output=output)
        mode_src, mode_dst, sha_src, sha_dst, type_ = parts
        out[path] = {
            "path": path,
            "mode_index": mode_dst,
            "mode_repo": mode_src[1:7],
            "sha_repo": sha_src,
            "sha_index": sha_dst,
            "type": type_,
        }
    return out


def build_index_status(
    ls_files_output: str,
    diff_files_output: str,
    diff_index_output: str,
    untracked_output: str = "",
) -> StatusReport:
    """
    Status assembled in two phases: the index listing first, then the
    worktree (diff-files) and HEAD (diff-index) comparisons merged on top,
    HEAD last.

    Some combined operations leave the index/repo fields ambiguous between
    "absent" and "all zero"; the values are kept exactly as git printed them.
    """
    files = parse_ls_files_stage(ls_files_output)
    for line in untracked_output.splitlines():
        if not line:
            continue
        path = unescape_path(line) or ""
        files.setdefault(path, {"path": path, "untracked": True})

    for phase in (parse_diff_as_hash(diff_files_output), parse_diff_as_hash(diff_index_output)):
        for path, data in phase.items():
            files.setdefault(path, {"path": path}).update(data)

    return StatusReport(entries={path: StatusEntry(**data) for path, data in files.items()})


# --- fsck ------------------------------------------------------------------------

_SHA = r"[0-9a-f]{40}(?:[0-9a-f]{24})?"

OBJECT_RE = re.compile(rf"^(dangling|missing|unreachable) (\w+) ({_SHA})(?: \((.+)\))?$")
WARNING_RE = re.compile(rf"^warning in (\w+) ({_SHA}): (.+)$")
ROOT_RE = re.compile(rf"^root ({_SHA})(?: \((.+)\))?$")
TAGGED_RE = re.compile(rf"^tagged (\w+) ({_SHA}) \((.+)\) in ({_SHA})$")

_CATEGORY_PREFIXES = ("dangling ", "missing ", "unreachable ", "warning in ", "root ", "tagged ")


def parse_fsck(output: str) -> FsckResult:
    """
    Parses `git fsck --no-progress` output.

    Lines that do not start with a known category (progress chatter,
    "Checking connectivity...") are skipped; a known category in an
    unknown shape raises UnexpectedResultError.
    """
    found: dict[str, list[FsckObject]] = {
        "dangling": [], "missing": [], "unreachable": [], "warnings": [], "root": [], "tagged": [],
    }
    for i, raw in enumerate(output.splitlines()):
        line = raw.strip()
        if not line.startswith(_CATEGORY_PREFIXES):
            continue
        if m := OBJECT_RE.match(line):
            found[m.group(1)].append(FsckObject(type=m.group(2), sha=m.group(3), name=m.group(4)))
        elif m := WARNING_RE.match(line):
            found["warnings"].append(FsckObject(type=m.group(1), sha=m.group(2), message=m.group(3)))
        elif m := ROOT_RE.match(line):
            found["root"].append(FsckObject(type="commit", sha=m.group(1), name=m.group(2)))
        elif m := TAGGED_RE.match(line):
            found["tagged"].append(
                FsckObject(type=m.group(1), sha=m.group(2), name=m.group(3), in_sha=m.group(4))
            )
        else:
            raise UnexpectedResultError("Unexpected fsck line", line=line, index=i, output=output)
    return FsckResult(**{k: tuple(v) for k, v in found.items()})
