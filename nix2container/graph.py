"""File tree of a tar stream, built before anything is written."""

from __future__ import annotations

import os
import stat
from collections.abc import Callable
from dataclasses import dataclass, field

from nix2container.paths import (
    file_path_to_tar_path,
    join_path,
    remove_nix_case_hack_suffix,
    split_path,
)
from nix2container.types import PathOptions

# Set when store paths come from a case-insensitive filesystem where
# Nix suffixes names to avoid collisions.
USE_NIX_CASE_HACK = False

WalkFn = Callable[[str, str, "os.stat_result | None", "PathOptions | None"], None]


class GraphError(ValueError):
    """A file is added twice to the graph with conflicting attributes."""


@dataclass(eq=False)
class FileNode:
    """A file of the tar stream; ``info`` is None for implicit directories."""

    src_path: str = ""
    info: os.stat_result | None = None
    options: PathOptions | None = None
    contents: dict[str, FileNode] = field(default_factory=dict)


def init_graph() -> FileNode:
    """Return an empty graph root."""
    return FileNode()


def add_file_to_graph(
    root: FileNode,
    path: str,
    info: os.stat_result | None,
    options: PathOptions | None,
) -> None:
    """Add a file and all its parent directories to the graph.

    The path is transformed into its tar path first; a path rewritten
    to the empty string is not added.
    """
    dst_path = remove_nix_case_hack_suffix(path) if USE_NIX_CASE_HACK else path
    dst_path = file_path_to_tar_path(dst_path, options)
    if dst_path == "":
        return

    current = root
    for part in split_path(dst_path):
        current = current.contents.setdefault(part, FileNode())

    if current.info is not None and info is not None:
        if current.info.st_mode != info.st_mode:
            raise GraphError(
                f"The file '{dst_path}' already exists in the graph with mode "
                f"'{stat.filemode(current.info.st_mode)}' from '{current.src_path}' "
                f"while it is added again with mode '{stat.filemode(info.st_mode)}' by '{path}'"
            )
        if stat.S_ISREG(current.info.st_mode) and current.info.st_size != info.st_size:
            raise GraphError(
                f"The file '{dst_path}' already exists in the graph with size "
                f"'{current.info.st_size}' from '{current.src_path}' while it is added "
                f"again with size '{info.st_size}' by '{path}'"
            )
    current.info = info

    new_perms = options.perms if options is not None else []
    if current.options is not None and current.options.perms != new_perms:
        raise GraphError(
            f"The file '{dst_path}' already exists in the tar with perms "
            f"{current.options.perms!r} but is overridden with perms {new_perms!r}"
        )
    current.options = options
    current.src_path = path


def walk_graph(root: FileNode, walk_fn: WalkFn) -> None:
    """Call ``walk_fn(src_path, dst_path, info, options)`` for every node.

    Nodes are visited depth first, parents before children, siblings in
    sorted order of their tar names. Exceptions from ``walk_fn`` stop
    the walk.
    """
    _walk("", root, walk_fn)


def _walk(base: str, node: FileNode, walk_fn: WalkFn) -> None:
    for name in sorted(node.contents):
        child = node.contents[name]
        dst_path = join_path(base, name) if name else "/"
        walk_fn(child.src_path, dst_path, child.info, child.options)
        _walk(dst_path, child, walk_fn)