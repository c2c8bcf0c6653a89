from .git_tools import (
    DiffOptions,
    FsckOptions,
    StatusOptions,
    diff_numstat,
    diff_patch,
    diff_raw,
    fsck,
    index_status,
    status,
)

__all__ = [
    "DiffOptions",
    "FsckOptions",
    "StatusOptions",
    "diff_raw",
    "diff_numstat",
    "diff_patch",
    "status",
    "index_status",
    "fsck",
]
