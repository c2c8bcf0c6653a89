"""
Parsers for `git diff` style output: --raw, --numstat, --shortstat,
--dirstat and --patch.

Combined/merge diffs (`--cc`, `show <merge>`) are not supported; their
format has one +/- column per parent.
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Iterable

from .errors import UnexpectedResultError
from .escaped_path import unescape_path
from .models import (
    DiffEntry,
    DiffResult,
    DiffStatus,
    DirstatEntry,
    DirstatInfo,
    FileRef,
    NumstatEntry,
)

STATUS_MAP: dict[str, DiffStatus] = {
    "M": DiffStatus.MODIFIED,
    "A": DiffStatus.ADDED,
    "D": DiffStatus.DELETED,
    "R": DiffStatus.RENAMED,
    "C": DiffStatus.COPIED,
    "T": DiffStatus.TYPE_CHANGED,
    "U": DiffStatus.UNMERGED,
    "X": DiffStatus.UNKNOWN,
}

NULL_MODE = "000000"

SHORTSTAT_RE = re.compile(r"^\s*\d+\s+files?\s+changed")
NUMSTAT_RE = re.compile(r"^(\d+|-)\t(\d+|-)\t(.+)$")
DIRSTAT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)%\s+(.+)$")

# numstat rename forms:
#   old_name.rb => new_name.rb
#   {old_dir => new_dir}/file.rb
#   dir/{old_name.rb => new_name.rb}
RENAME_RE = re.compile(r"^(.+) => (.+)$")
BRACE_RENAME_RE = re.compile(r"^(.*)\{(.*) => (.*)\}(.*)$")


def _unexpected(message: str, line: str, index: int, output: str) -> UnexpectedResultError:
    return UnexpectedResultError(message, line=line, index=index, output=output)


def parse_shortstat(line: str | None) -> dict[str, int]:
    """
    " 3 files changed, 10 insertions(+), 5 deletions(-)" ->
    {"files_changed": 3, "insertions": 10, "deletions": 5}
    """
    if line is None:
        return {"files_changed": 0, "insertions": 0, "deletions": 0}

    def grab(pattern: str) -> int:
        m = re.search(pattern, line)
        return int(m.group(1)) if m else 0

    return {
        "files_changed": grab(r"(\d+)\s+files?\s+changed"),
        "insertions": grab(r"(\d+)\s+insertions?\(\+\)"),
        "deletions": grab(r"(\d+)\s+deletions?\(-\)"),
    }


def parse_dirstat(lines: Iterable[str], *, output: str | None = None) -> DirstatInfo:
    """
    Parse `<percent>% <directory>/` lines, keeping git's order.
    """
    lines = list(lines)
    entries: list[DirstatEntry] = []
    for i, raw in enumerate(lines):
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        m = DIRSTAT_RE.match(line)
        if not m:
            raise _unexpected("Unexpected dirstat line", line, i, output if output is not None else "\n".join(lines))
        entries.append(DirstatEntry(directory=unescape_path(m.group(2)) or "", percent=float(m.group(1))))
    return DirstatInfo(entries=tuple(entries))


def parse_stat_value(value: str) -> int:
    return 0 if value == "-" else int(value)


def _join_brace(prefix: str, middle: str, suffix: str) -> str:
    if not middle:
        if prefix.endswith("/") and suffix.startswith("/"):
            suffix = suffix[1:]
        elif suffix.startswith("/") and prefix in ("", '"'):
            suffix = suffix[1:]
    return f"{prefix}{middle}{suffix}"


def parse_rename_path(filename: str) -> tuple[str, str | None]:
    """
    Split a numstat path into (dst_path, src_path). src_path is None unless renamed.
    Quoted parts are unescaped.
    """
    m = BRACE_RENAME_RE.match(filename)
    if m:
        prefix, old, new, suffix = m.groups()
        # "{ => sub}/f" and "dir/{sub => }/f" leave a doubled or leading slash
        dst = _join_brace(prefix, new, suffix)
        src = _join_brace(prefix, old, suffix)
        return unescape_path(dst) or "", unescape_path(src)
    m = RENAME_RE.match(filename)
    if m:
        return unescape_path(m.group(2)) or "", unescape_path(m.group(1))
    return unescape_path(filename) or "", None


def parse_numstat_line(line: str, index: int = 0, output: str = "") -> NumstatEntry:
    m = NUMSTAT_RE.match(line)
    if not m:
        raise _unexpected("Unexpected numstat line", line, index, output or line)
    ins, dels, filename = m.groups()
    path, src_path = parse_rename_path(filename)
    return NumstatEntry(
        path=path,
        src_path=src_path,
        insertions=parse_stat_value(ins),
        deletions=parse_stat_value(dels),
        binary=(ins == "-" and dels == "-"),
    )


@dataclass
class _Sections:
    raw: list[tuple[int, str]] = field(default_factory=list)
    numstat: list[tuple[int, str]] = field(default_factory=list)
    shortstat: str | None = None
    dirstat: list[str] = field(default_factory=list)


def _split_sections(lines: list[str], output: str, *, allow_raw: bool) -> _Sections:
    """
    Classify summary lines by shape, not position: numstat, shortstat and
    dirstat can each be requested on their own.
    """
    s = _Sections()
    for i, line in enumerate(lines):
        if not line.strip():
            continue
        if allow_raw and line.startswith(":"):
            s.raw.append((i, line))
        elif NUMSTAT_RE.match(line):
            s.numstat.append((i, line))
        elif SHORTSTAT_RE.match(line):
            s.shortstat = line
        elif DIRSTAT_RE.match(line):
            s.dirstat.append(line)
        else:
            raise _unexpected("Unexpected diff output line", line, i, output)
    return s


def numstat_map(lines: Iterable[tuple[int, str]] | Iterable[str], output: str = "") -> dict[str, NumstatEntry]:
    """
    Numstat entries keyed by destination path, for joining with raw/patch records.
    """
    out: dict[str, NumstatEntry] = {}
    for i, item in enumerate(lines):
        index, line = item if isinstance(item, tuple) else (i, item)
        entry = parse_numstat_line(line, index, output)
        out[entry.path] = entry
    return out


def parse_numstat(output: str, include_dirstat: bool = False) -> DiffResult:
    """
    Parse `git diff --numstat [--shortstat] [--dirstat]` into a DiffResult of NumstatEntry.
    """
    lines = output.splitlines()
    s = _split_sections(lines, output, allow_raw=False)
    entries = [parse_numstat_line(line, i, output) for i, line in s.numstat]
    dirstat = parse_dirstat(s.dirstat, output=output) if include_dirstat else None
    return DiffResult.from_entries(entries, dirstat=dirstat)


# --- raw ---------------------------------------------------------------------


def _parse_status_token(token: str, line: str, index: int, output: str) -> tuple[DiffStatus, int | None]:
    """'M' -> (modified, None); 'R075' -> (renamed, 75)."""
    if not token or token[0] not in STATUS_MAP:
        raise _unexpected("Unknown diff status", line, index, output)
    status = STATUS_MAP[token[0]]
    if status not in (DiffStatus.RENAMED, DiffStatus.COPIED):
        return status, None
    score = token[1:]
    if not score.isdigit() or not 1 <= int(score) <= 100:
        raise _unexpected("Rename/copy without a valid similarity score", line, index, output)
    return status, int(score)


def _file_ref(mode: str, sha: str, path: str | None) -> FileRef | None:
    if mode == NULL_MODE or path is None:
        return None
    return FileRef(path=path, mode=mode, sha=sha)


def parse_raw_line(
    line: str,
    stats: dict[str, NumstatEntry] | None = None,
    *,
    index: int = 0,
    output: str = "",
) -> DiffEntry:
    """
    Parse one `--raw` record:
      :100644 100644 abc1234 def5678 M<TAB>path
      :100644 100644 abc1234 def5678 R075<TAB>old<TAB>new
    """
    output = output or line
    fields = line.split("\t")
    head = fields[0]
    paths = fields[1:]
    parts = head[1:].split() if head.startswith(":") else []
    if len(parts) != 5 or not paths or len(paths) > 2:
        raise _unexpected("Unexpected raw diff line", line, index, output)

    mode_src, mode_dst, sha_src, sha_dst, status_token = parts
    status, similarity = _parse_status_token(status_token, line, index, output)

    if status in (DiffStatus.RENAMED, DiffStatus.COPIED):
        if len(paths) != 2:
            raise _unexpected("Rename/copy line needs two paths", line, index, output)
        src_path, dst_path = unescape_path(paths[0]), unescape_path(paths[1])
    else:
        if len(paths) != 1:
            raise _unexpected("Unexpected extra path", line, index, output)
        src_path = dst_path = unescape_path(paths[0])

    if status is DiffStatus.UNMERGED:
        # git prints zero modes and hashes for a conflicted path
        src = FileRef(path=src_path, mode=mode_src, sha=sha_src)
        dst = FileRef(path=dst_path, mode=mode_dst, sha=sha_dst)
    else:
        src = _file_ref(mode_src, sha_src, src_path)
        dst = _file_ref(mode_dst, sha_dst, dst_path)
    if status is DiffStatus.ADDED:
        src = None
    elif status is DiffStatus.DELETED:
        dst = None

    key = dst.path if dst is not None else (src.path if src is not None else "")
    stat = (stats or {}).get(key)
    binary = bool(stat and stat.binary)
    return DiffEntry(
        status=status,
        src=src,
        dst=dst,
        similarity=similarity,
        insertions=0 if (stat is None or binary) else stat.insertions,
        deletions=0 if (stat is None or binary) else stat.deletions,
        binary=binary,
    )


def parse_raw(output: str, include_dirstat: bool = False) -> DiffResult:
    """
    Parse combined `--raw --numstat [--shortstat] [--dirstat]` output.

    Per-file counts are joined from the numstat lines by path.
    """
    lines = output.splitlines()
    s = _split_sections(lines, output, allow_raw=True)
    stats = numstat_map(s.numstat, output)
    entries = [parse_raw_line(line, stats, index=i, output=output) for i, line in s.raw]
    dirstat = parse_dirstat(s.dirstat, output=output) if include_dirstat else None
    return DiffResult.from_entries(entries, dirstat=dirstat)


# --- patch -------------------------------------------------------------------

DIFF_HEADER_RE = re.compile(r'^diff --git ("?)a/(.+?)\1 ("?)b/(.+?)\3$')
INDEX_RE = re.compile(r"^index ([0-9a-f]{4,64})\.\.([0-9a-f]{4,64})(?: (\d{6}))?")
FILE_MODE_RE = re.compile(r"^(new|deleted) file mode (\d{6})")
OLD_MODE_RE = re.compile(r"^old mode (\d{6})")
NEW_MODE_RE = re.compile(r"^new mode (\d{6})")
BINARY_RE = re.compile(r"^(Binary files .* differ|GIT binary patch)$")
RENAME_FROM_RE = re.compile(r"^rename from (.+)$")
RENAME_TO_RE = re.compile(r"^rename to (.+)$")
COPY_FROM_RE = re.compile(r"^copy from (.+)$")
COPY_TO_RE = re.compile(r"^copy to (.+)$")
SIMILARITY_RE = re.compile(r"^similarity index (\d+)%$")


def _quoted(marker: str, path: str) -> str:
    return f'"{path}"' if marker else path


class _PatchFileParser:
    """Walks a unified diff, one DiffEntry per `diff --git` header."""

    def __init__(self, lines: list[str]) -> None:
        self.lines = lines
        self.entries: list[DiffEntry] = []
        self.cur: dict | None = None

    def parse(self) -> list[DiffEntry]:
        for line in self.lines:
            m = DIFF_HEADER_RE.match(line)
            if m:
                self._finish()
                self._start(m, line)
            elif self.cur is not None:
                self._consume(line)
        self._finish()
        return self.entries

    def _start(self, m: re.Match, line: str) -> None:
        self.cur = {
            "src_path": unescape_path(_quoted(m.group(1), m.group(2))),
            "dst_path": unescape_path(_quoted(m.group(3), m.group(4))),
            "src_mode": None,
            "dst_mode": None,
            "src_sha": "",
            "dst_sha": "",
            "status": DiffStatus.MODIFIED,
            "similarity": None,
            "binary": False,
            "in_hunk": False,
            "insertions": 0,
            "deletions": 0,
            "patch": [line],
        }

    def _consume(self, line: str) -> None:
        cur = self.cur
        cur["patch"].append(line)

        if cur["in_hunk"]:
            if line.startswith("+"):
                cur["insertions"] += 1
            elif line.startswith("-"):
                cur["deletions"] += 1
            return
        if line.startswith("@@"):
            cur["in_hunk"] = True
            return

        if m := INDEX_RE.match(line):
            cur["src_sha"], cur["dst_sha"] = m.group(1), m.group(2)
            if m.group(3) and cur["src_mode"] is None and cur["dst_mode"] is None:
                cur["src_mode"] = cur["dst_mode"] = m.group(3)
        elif m := FILE_MODE_RE.match(line):
            kind, mode = m.groups()
            if kind == "new":
                cur["status"] = DiffStatus.ADDED
                cur["dst_mode"] = mode
                cur["src_path"] = None
            else:
                cur["status"] = DiffStatus.DELETED
                cur["src_mode"] = mode
                cur["dst_path"] = None
        elif m := OLD_MODE_RE.match(line):
            cur["src_mode"] = m.group(1)
            self._detect_type_change()
        elif m := NEW_MODE_RE.match(line):
            cur["dst_mode"] = m.group(1)
            self._detect_type_change()
        elif m := RENAME_FROM_RE.match(line):
            cur["src_path"], cur["status"] = unescape_path(m.group(1)), DiffStatus.RENAMED
        elif m := RENAME_TO_RE.match(line):
            cur["dst_path"], cur["status"] = unescape_path(m.group(1)), DiffStatus.RENAMED
        elif m := COPY_FROM_RE.match(line):
            cur["src_path"], cur["status"] = unescape_path(m.group(1)), DiffStatus.COPIED
        elif m := COPY_TO_RE.match(line):
            cur["dst_path"], cur["status"] = unescape_path(m.group(1)), DiffStatus.COPIED
        elif m := SIMILARITY_RE.match(line):
            cur["similarity"] = int(m.group(1))
        elif BINARY_RE.match(line):
            cur["binary"] = True

    def _detect_type_change(self) -> None:
        src_mode, dst_mode = self.cur["src_mode"], self.cur["dst_mode"]
        # the first three octal digits carry the object type (100644 vs 120000)
        if src_mode and dst_mode and src_mode[:3] != dst_mode[:3]:
            self.cur["status"] = DiffStatus.TYPE_CHANGED

    def _ref(self, side: str) -> FileRef | None:
        path = self.cur[f"{side}_path"]
        if path is None:
            return None
        return FileRef(path=path, mode=self.cur[f"{side}_mode"] or "", sha=self.cur[f"{side}_sha"] or "")

    def _finish(self) -> None:
        cur = self.cur
        if cur is None:
            return
        binary = cur["binary"]
        similarity = cur["similarity"] if cur["status"] in (DiffStatus.RENAMED, DiffStatus.COPIED) else None
        self.entries.append(
            DiffEntry(
                status=cur["status"],
                src=self._ref("src"),
                dst=self._ref("dst"),
                similarity=similarity,
                insertions=0 if binary else cur["insertions"],
                deletions=0 if binary else cur["deletions"],
                binary=binary,
                patch="\n".join(cur["patch"]),
            )
        )
        self.cur = None


def _apply_numstat(entries: list[DiffEntry], stats: dict[str, NumstatEntry]) -> list[DiffEntry]:
    # a type change is two entries for one path; numstat has a single line for it
    seen = Counter(e.path for e in entries)
    out = []
    for e in entries:
        stat = None
        if seen[e.path] == 1:
            stat = stats.get(e.path) or (stats.get(e.src.path) if e.src else None)
        if stat is None:
            out.append(e)
            continue
        binary = e.binary or stat.binary
        out.append(replace(
            e,
            insertions=0 if binary else stat.insertions,
            deletions=0 if binary else stat.deletions,
            binary=binary,
        ))
    return out


def parse_patch(output: str, include_dirstat: bool = False) -> DiffResult:
    """
    Parse `git diff --patch` output, optionally preceded by numstat/shortstat/dirstat.

    A type change (file -> symlink) is printed by git as a deletion followed by
    an addition of the same path; it stays two entries here.
    Per-file counts come from the numstat section when it is present, matched
    by path; otherwise (and for the two halves of a type change) from the hunks.
    """
    lines = output.splitlines()
    first_diff = next((i for i, ln in enumerate(lines) if ln.startswith("diff --git ")), len(lines))
    pre = _split_sections(lines[:first_diff], output, allow_raw=False)
    entries = _PatchFileParser(lines[first_diff:]).parse()
    stats = numstat_map(pre.numstat, output)
    if stats:
        entries = _apply_numstat(entries, stats)
    dirstat = parse_dirstat(pre.dirstat, output=output) if include_dirstat else None
    return DiffResult.from_entries(entries, dirstat=dirstat)
