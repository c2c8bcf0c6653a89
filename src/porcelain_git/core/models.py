from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Iterator, Union


# --- process results -------------------------------------------------------


@dataclass(frozen=True)
class Exited:
    code: int

    def __str__(self) -> str:
        return f"exit {self.code}"


@dataclass(frozen=True)
class Signaled:
    signal: int

    def __str__(self) -> str:
        return f"killed by signal {self.signal}"


@dataclass(frozen=True)
class TimedOut:
    after: float
    signal_used: int

    def __str__(self) -> str:
        return f"timed out after {self.after}s (signal {self.signal_used})"


ExitStatus = Union[Exited, Signaled, TimedOut]


@dataclass(frozen=True)
class InvocationResult:
    command: tuple[str, ...]
    stdout: str
    stderr: str
    exit_status: ExitStatus
    duration_ms: int = 0

    @property
    def exit_code(self) -> int | None:
        if isinstance(self.exit_status, Exited):
            return self.exit_status.code
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": list(self.command),
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_status": str(self.exit_status),
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
        }


# --- diff ------------------------------------------------------------------


class DiffStatus(str, Enum):
    MODIFIED = "modified"
    ADDED = "added"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"
    TYPE_CHANGED = "type_changed"
    UNMERGED = "unmerged"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FileRef:
    path: str
    mode: str
    sha: str

    @property
    def regular_file(self) -> bool:
        return self.mode == "100644"

    @property
    def executable(self) -> bool:
        return self.mode == "100755"

    @property
    def symlink(self) -> bool:
        return self.mode == "120000"

    @property
    def submodule(self) -> bool:
        return self.mode == "160000"

    @property
    def mode_bits(self) -> int:
        return int(self.mode, 8) if self.mode else 0


@dataclass(frozen=True)
class DiffEntry:
    """
    One file-level change.

    `src` is None for added files, `dst` is None for deleted files.
    `similarity` is only set for renames and copies.
    """
    status: DiffStatus
    src: FileRef | None
    dst: FileRef | None
    similarity: int | None = None
    insertions: int = 0
    deletions: int = 0
    binary: bool = False
    patch: str | None = None

    @property
    def path(self) -> str:
        ref = self.dst or self.src
        return ref.path if ref else ""

    @property
    def src_path(self) -> str | None:
        if self.status not in (DiffStatus.RENAMED, DiffStatus.COPIED) or self.src is None:
            return None
        return self.src.path if self.src.path != self.path else None

    @property
    def renamed(self) -> bool:
        return self.status is DiffStatus.RENAMED

    @property
    def copied(self) -> bool:
        return self.status is DiffStatus.COPIED

    @property
    def added(self) -> bool:
        return self.status is DiffStatus.ADDED

    @property
    def deleted(self) -> bool:
        return self.status is DiffStatus.DELETED

    @property
    def type_changed(self) -> bool:
        return self.status is DiffStatus.TYPE_CHANGED

    @property
    def unmerged(self) -> bool:
        return self.status is DiffStatus.UNMERGED

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        d["path"] = self.path
        d["src_path"] = self.src_path
        return d


@dataclass(frozen=True)
class NumstatEntry:
    path: str
    src_path: str | None = None
    insertions: int = 0
    deletions: int = 0
    binary: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DirstatEntry:
    directory: str
    percent: float


@dataclass(frozen=True)
class DirstatInfo:
    entries: tuple[DirstatEntry, ...] = ()

    def __getitem__(self, directory: str) -> float | None:
        for e in self.entries:
            if e.directory == directory:
                return e.percent
        return None

    def __iter__(self) -> Iterator[DirstatEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, float]:
        return {e.directory: e.percent for e in self.entries}


@dataclass(frozen=True)
class DiffResult:
    entries: tuple[DiffEntry | NumstatEntry, ...]
    total_insertions: int
    total_deletions: int
    files_changed: int
    dirstat: DirstatInfo | None = None

    @classmethod
    def from_entries(
        cls,
        entries: list[DiffEntry] | list[NumstatEntry],
        dirstat: DirstatInfo | None = None,
    ) -> DiffResult:
        """Totals are always derived from the entries so they can never disagree."""
        return cls(
            entries=tuple(entries),
            total_insertions=sum(e.insertions for e in entries),
            total_deletions=sum(e.deletions for e in entries),
            files_changed=len(entries),
            dirstat=dirstat,
        )

    def __iter__(self) -> Iterator[DiffEntry | NumstatEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "total_insertions": self.total_insertions,
            "total_deletions": self.total_deletions,
            "files_changed": self.files_changed,
            "dirstat": self.dirstat.to_dict() if self.dirstat is not None else None,
        }


# --- status ----------------------------------------------------------------


@dataclass(frozen=True)
class StatusEntry:
    """
    Status of one path.

    None in an index/repo field means the report has no such side.
    A zero mode or sha is what git printed and is kept as-is.
    """
    path: str
    type: str | None = None
    stage: str | None = None
    untracked: bool = False
    mode_index: str | None = None
    sha_index: str | None = None
    mode_repo: str | None = None
    sha_repo: str | None = None
    mode_worktree: str | None = None
    xy: str | None = None
    orig_path: str | None = None
    score: str | None = None
    submodule: str | None = None
    unmerged_stages: tuple[tuple[str, str], ...] | None = None
    ignored: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StatusReport:
    entries: dict[str, StatusEntry] = field(default_factory=dict)
    branch_oid: str | None = None
    branch_head: str | None = None
    branch_upstream: str | None = None
    ahead: int | None = None
    behind: int | None = None

    def __getitem__(self, path: str) -> StatusEntry:
        return self.entries[path]

    def __contains__(self, path: object) -> bool:
        return path in self.entries

    def __iter__(self) -> Iterator[StatusEntry]:
        return iter(self.entries.values())

    def __len__(self) -> int:
        return len(self.entries)

    def _select(self, pred) -> dict[str, StatusEntry]:
        return {p: e for p, e in self.entries.items() if pred(e)}

    @property
    def changed(self) -> dict[str, StatusEntry]:
        return self._select(lambda e: e.type == "M")

    @property
    def added(self) -> dict[str, StatusEntry]:
        return self._select(lambda e: e.type == "A")

    @property
    def deleted(self) -> dict[str, StatusEntry]:
        return self._select(lambda e: e.type == "D")

    @property
    def unmerged(self) -> dict[str, StatusEntry]:
        return self._select(lambda e: e.type == "U")

    @property
    def untracked(self) -> dict[str, StatusEntry]:
        return self._select(lambda e: e.untracked)

    @property
    def ignored(self) -> dict[str, StatusEntry]:
        return self._select(lambda e: e.ignored)

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch": {
                "oid": self.branch_oid,
                "head": self.branch_head,
                "upstream": self.branch_upstream,
                "ahead": self.ahead,
                "behind": self.behind,
            },
            "entries": [e.to_dict() for e in self.entries.values()],
        }


# --- fsck ------------------------------------------------------------------


@dataclass(frozen=True)
class FsckObject:
    type: str
    sha: str
    name: str | None = None
    message: str | None = None
    in_sha: str | None = None

    def __str__(self) -> str:
        return self.sha


@dataclass(frozen=True)
class FsckResult:
    dangling: tuple[FsckObject, ...] = ()
    missing: tuple[FsckObject, ...] = ()
    unreachable: tuple[FsckObject, ...] = ()
    warnings: tuple[FsckObject, ...] = ()
    root: tuple[FsckObject, ...] = ()
    tagged: tuple[FsckObject, ...] = ()

    @property
    def any_issues(self) -> bool:
        return any((self.dangling, self.missing, self.unreachable, self.warnings))

    @property
    def all_objects(self) -> tuple[FsckObject, ...]:
        return self.dangling + self.missing + self.unreachable + self.warnings

    @property
    def count(self) -> int:
        return len(self.all_objects)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
