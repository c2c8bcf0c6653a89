from __future__ import annotations

import logging
import sys

from mcp.server.fastmcp import FastMCP

from porcelain_git.tools import (
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

mcp = FastMCP("porcelain-git")


def _diff_options(
    cached: bool,
    merge_base: bool,
    find_copies: bool,
    dirstat: bool,
    pathspecs: list[str] | None,
    timeout: float | None,
) -> DiffOptions:
    return DiffOptions(
        cached=cached,
        merge_base=merge_base,
        find_copies=find_copies,
        dirstat=dirstat,
        pathspecs=tuple(pathspecs or ()),
        timeout=timeout,
    )


@mcp.tool()
def diff_raw_tool(
    root: str = ".",
    commit1: str | None = None,
    commit2: str | None = None,
    cached: bool = False,
    merge_base: bool = False,
    find_copies: bool = False,
    dirstat: bool = False,
    pathspecs: list[str] | None = None,
    timeout: float | None = None,
) -> dict:
    opts = _diff_options(cached, merge_base, find_copies, dirstat, pathspecs, timeout)
    return diff_raw(root=root, commit1=commit1, commit2=commit2, options=opts).to_dict()


@mcp.tool()
def diff_numstat_tool(
    root: str = ".",
    commit1: str | None = None,
    commit2: str | None = None,
    cached: bool = False,
    dirstat: bool = False,
    pathspecs: list[str] | None = None,
    timeout: float | None = None,
) -> dict:
    opts = _diff_options(cached, False, False, dirstat, pathspecs, timeout)
    return diff_numstat(root=root, commit1=commit1, commit2=commit2, options=opts).to_dict()


@mcp.tool()
def diff_patch_tool(
    root: str = ".",
    commit1: str | None = None,
    commit2: str | None = None,
    cached: bool = False,
    pathspecs: list[str] | None = None,
    timeout: float | None = None,
) -> dict:
    opts = _diff_options(cached, False, False, False, pathspecs, timeout)
    return diff_patch(root=root, commit1=commit1, commit2=commit2, options=opts).to_dict()


@mcp.tool()
def status_tool(
    root: str = ".",
    untracked: str = "all",
    ignored: bool = False,
    pathspecs: list[str] | None = None,
    timeout: float | None = None,
) -> dict:
    opts = StatusOptions(untracked=untracked, ignored=ignored, pathspecs=tuple(pathspecs or ()), timeout=timeout)
    return status(root=root, options=opts).to_dict()


@mcp.tool()
def index_status_tool(root: str = ".", timeout: float | None = None) -> dict:
    return index_status(root=root, timeout=timeout).to_dict()


@mcp.tool()
def fsck_tool(
    root: str = ".",
    objects: list[str] | None = None,
    unreachable: bool = False,
    root_commits: bool = False,
    tags: bool = False,
    name_objects: bool = False,
    strict: bool = False,
    timeout: float | None = None,
) -> dict:
    opts = FsckOptions(
        unreachable=unreachable,
        root=root_commits,
        tags=tags,
        name_objects=name_objects,
        strict=strict,
        timeout=timeout,
    )
    return fsck(root=root, objects=tuple(objects or ()), options=opts).to_dict()


def main() -> None:
    # stdout carries the MCP stdio transport; logs go to stderr
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    mcp.run()


if __name__ == "__main__":
    main()
