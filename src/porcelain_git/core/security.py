from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .errors import GitArgumentError, InvalidRootError


def resolve_root(root: str | Path) -> Path:
    """Resolve and validate root directory for local-repo operations."""
    p = Path(root).expanduser().resolve()

    if not p.exists():
        raise InvalidRootError(f"Root does not exist: {p}")
    if not p.is_dir():
        raise InvalidRootError(f"Root is not a directory: {p}")

    return p


def normalize_relpath(path: str) -> str:
    """
    Normalize a user-provided relative path to a consistent form: forward
    slashes, no leading "./". Surrounding whitespace is part of the name.
    """
    s = (path or "").replace("\\", "/")
    while s.startswith("./"):
        s = s[2:]
    return s


def assert_args_are_not_options(arg_name: str, *args: str | None) -> None:
    """
    Refuse revisions/refs that git would read as flags (e.g. "--output=/tmp/x").
    None entries are skipped.
    """
    invalid = [a for a in args if a is not None and str(a).startswith("-")]
    if invalid:
        raise GitArgumentError(f"Invalid {arg_name}: {', '.join(repr(a) for a in invalid)}")


def pathspec_args(paths: Iterable[str] | str | None) -> list[str]:
    """
    ["--", *paths] so paths starting with "-" are never parsed as options.
    Returns [] when there is nothing to limit.
    """
    if paths is None:
        return []
    if isinstance(paths, str):
        paths = [paths]
    cleaned = [normalize_relpath(p) for p in paths if p]
    return ["--", *cleaned] if cleaned else []
